import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Numeric, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class Product(Base):
    """
    A rentable product and its physical stock.

    Only ``total_quantity`` and ``maintenance_quantity`` are stored; reserved
    and available counts are derived from ACTIVE reservation windows.
    """
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=False)

    # Inventory
    total_quantity = Column(Integer, nullable=False, default=0)
    maintenance_quantity = Column(Integer, nullable=False, default=0)

    # Pricing (per day)
    base_rate = Column(Numeric(10, 2), nullable=False, default=0)

    # Rental limits in days, max_duration NULL means unbounded
    min_duration = Column(Integer, nullable=False, default=1)
    max_duration = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_rentable = Column(Boolean, default=True, nullable=False)

    # Bumped whenever a writer takes the product lock
    lock_version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    windows = relationship("ReservationWindow", back_populates="product")

    __table_args__ = (
        CheckConstraint("total_quantity >= 0", name="ck_product_total_non_negative"),
        CheckConstraint("maintenance_quantity >= 0", name="ck_product_maintenance_non_negative"),
        CheckConstraint("maintenance_quantity <= total_quantity", name="ck_product_maintenance_le_total"),
    )

    @property
    def rentable_capacity(self) -> int:
        """Units that may be promised to customers."""
        return max(0, (self.total_quantity or 0) - (self.maintenance_quantity or 0))

    @property
    def can_be_booked(self) -> bool:
        return bool(self.is_active and self.is_rentable)

    def __repr__(self):
        return f"<Product {self.sku} total={self.total_quantity}>"
