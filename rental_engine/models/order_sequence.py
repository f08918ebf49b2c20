from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime
from ..database import Base


class OrderSequence(Base):
    """
    One counter row per order-number scope (``YYYYMM``).

    Incremented atomically inside the booking transaction and never
    decremented, so numbers are not reused after cancellations.
    """
    __tablename__ = "order_sequences"

    scope_key = Column(String(6), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<OrderSequence {self.scope_key}={self.last_value}>"
