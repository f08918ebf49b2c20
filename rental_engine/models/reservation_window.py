"""
Reservation Window Model

A committed claim on N units of a product for an inclusive date interval.
Only ACTIVE windows count against availability.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Date, DateTime, Integer, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class WindowStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class ReservationWindow(Base):
    __tablename__ = "reservation_windows"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    # Partition key: every window lives and dies with its booking
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    line_item_id = Column(String(36), ForeignKey("booking_line_items.id", ondelete="CASCADE"), nullable=True)

    # Inclusive on both ends
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=WindowStatus.ACTIVE.value)
    released_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    product = relationship("Product", back_populates="windows")
    booking = relationship("Booking", back_populates="windows")
    line_item = relationship("BookingLineItem", back_populates="window")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_window_quantity_positive"),
        CheckConstraint("start_date <= end_date", name="ck_window_dates_ordered"),
        Index("ix_window_product_status_dates", "product_id", "status", "start_date", "end_date"),
        Index("ix_window_booking", "booking_id"),
    )

    def __repr__(self):
        return f"<ReservationWindow {self.product_id} {self.start_date}..{self.end_date} x{self.quantity} {self.status}>"
