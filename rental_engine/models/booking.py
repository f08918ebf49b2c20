import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, Numeric, Text, ForeignKey, DateTime, Index, Integer, CheckConstraint
from sqlalchemy.orm import relationship
from ..database import Base
import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    RETURNED = "returned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed moves of the booking state machine
BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.ACTIVE, BookingStatus.CANCELLED},
    BookingStatus.ACTIVE: {BookingStatus.RETURNED},
    BookingStatus.RETURNED: {BookingStatus.COMPLETED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number = Column(String(50), nullable=False, unique=True)
    customer_id = Column(String(36), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    actual_pickup_date = Column(Date, nullable=True)
    actual_return_date = Column(Date, nullable=True)

    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Bumped whenever a writer takes the booking lock
    lock_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # The aggregate: line items and windows are created and released together
    line_items = relationship(
        "BookingLineItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingLineItem.position",
    )
    windows = relationship(
        "ReservationWindow",
        back_populates="booking",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_booking_customer", "customer_id"),
        Index("ix_booking_status", "status"),
        Index("ix_booking_dates", "start_date", "end_date"),
    )

    def can_transition_to(self, new_status: BookingStatus) -> bool:
        return new_status in BOOKING_TRANSITIONS[BookingStatus(self.status)]

    def __repr__(self):
        return f"<Booking {self.order_number} {self.status}>"


class BookingLineItem(Base):
    __tablename__ = "booking_line_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    quantity = Column(Integer, nullable=False)
    unit_rate = Column(Numeric(10, 2), nullable=False)
    duration_days = Column(Integer, nullable=False)
    line_total = Column(Numeric(12, 2), nullable=False)

    booking = relationship("Booking", back_populates="line_items")
    product = relationship("Product")
    window = relationship("ReservationWindow", back_populates="line_item", uselist=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_line_item_quantity_positive"),
        Index("ix_line_item_booking", "booking_id"),
        Index("ix_line_item_product", "product_id"),
    )

    def __repr__(self):
        return f"<BookingLineItem {self.product_id} x{self.quantity}>"
