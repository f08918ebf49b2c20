"""
Availability Calculator

Pure read: how many units of a product are free over an inclusive date range.
"""

from dataclasses import dataclass
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session

from ..exceptions import InvalidRange, ProductNotFound
from ..models.product import Product
from .reservation_index import ReservationWindowIndex


@dataclass(frozen=True)
class AvailabilityResult:
    product_id: str
    start_date: date
    end_date: date
    available: int
    requested: int

    @property
    def is_available(self) -> bool:
        return self.available >= self.requested


class AvailabilityCalculator:
    """
    Free quantity = rentable capacity - units held by overlapping ACTIVE windows.

    No side effects; safe to call repeatedly and concurrently. The booking
    coordinator calls it after locking the product so the answer cannot go
    stale before the new windows are written.
    """

    def __init__(self, db: Session, index: Optional[ReservationWindowIndex] = None):
        self.db = db
        self.index = index or ReservationWindowIndex(db)

    def available_quantity(
        self,
        product_id: str,
        start: date,
        end: date,
        exclude_booking_id: Optional[str] = None,
        product: Optional[Product] = None
    ) -> int:
        if start > end:
            raise InvalidRange("Start date must not be after end date", start=start, end=end)

        if product is None:
            product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            raise ProductNotFound(product_id)

        reserved = self.index.reserved_quantity(product_id, start, end, exclude_booking_id)

        # Never negative, even if stock was cut below existing reservations
        return max(0, product.rentable_capacity - reserved)

    def check(
        self,
        product_id: str,
        start: date,
        end: date,
        requested: int = 1,
        exclude_booking_id: Optional[str] = None
    ) -> AvailabilityResult:
        available = self.available_quantity(product_id, start, end, exclude_booking_id)
        return AvailabilityResult(
            product_id=product_id,
            start_date=start,
            end_date=end,
            available=available,
            requested=requested,
        )
