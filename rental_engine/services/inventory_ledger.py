"""
Inventory Ledger

Authoritative stock per product. Total and maintenance counts are stored;
reserved and available counts are derived from ACTIVE reservation windows,
so they can never drift from the windows that justify them.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from ..exceptions import InsufficientInventory, InvalidRange, ProductNotFound
from ..models.product import Product
from ..utils.db_helpers import acquire_row_lock
from .reservation_index import ReservationWindowIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    product_id: str
    on_date: date
    total_quantity: int
    reserved_quantity: int
    maintenance_quantity: int
    available_quantity: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["on_date"] = self.on_date.isoformat()
        return data


class InventoryLedger:
    """
    Service for reading and adjusting product stock.

    Key responsibilities:
    - Register products (catalog seeding)
    - Report reserved units on a given day
    - Snapshot total / reserved / maintenance / available
    - Change stock without stranding existing reservations
    """

    def __init__(self, db: Session, index: Optional[ReservationWindowIndex] = None):
        self.db = db
        self.index = index or ReservationWindowIndex(db)

    def register_product(
        self,
        sku: str,
        name: str,
        total_quantity: int,
        base_rate: Decimal,
        min_duration: int = 1,
        max_duration: Optional[int] = None,
        maintenance_quantity: int = 0
    ) -> Product:
        """Add a product to the ledger. Caller commits."""
        if total_quantity < 0 or maintenance_quantity < 0:
            raise ValueError("Quantities cannot be negative")
        if maintenance_quantity > total_quantity:
            raise ValueError("Maintenance quantity cannot exceed total quantity")
        if min_duration < 1:
            raise InvalidRange("Minimum rental duration must be at least 1 day")
        if max_duration is not None and max_duration < min_duration:
            raise InvalidRange("Maximum rental duration is shorter than the minimum")

        product = Product(
            sku=sku,
            name=name,
            total_quantity=total_quantity,
            maintenance_quantity=maintenance_quantity,
            base_rate=Decimal(str(base_rate)),
            min_duration=min_duration,
            max_duration=max_duration,
        )
        self.db.add(product)
        self.db.flush()

        logger.info(f"Registered product {sku} ({product.id}) with {total_quantity} units")
        return product

    def get_product(self, product_id: str) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFound(product_id)
        return product

    def quantity_reserved_at(self, product_id: str, instant: date) -> int:
        """Units held by ACTIVE windows that cover the given day."""
        self.get_product(product_id)
        return self.index.reserved_quantity(product_id, instant, instant)

    def snapshot(self, product_id: str, instant: date) -> LedgerSnapshot:
        product = self.get_product(product_id)
        reserved = self.index.reserved_quantity(product_id, instant, instant)
        available = max(
            0, product.total_quantity - reserved - product.maintenance_quantity
        )
        return LedgerSnapshot(
            product_id=product.id,
            on_date=instant,
            total_quantity=product.total_quantity,
            reserved_quantity=reserved,
            maintenance_quantity=product.maintenance_quantity,
            available_quantity=available,
        )

    def adjust_stock(
        self,
        product_id: str,
        total_quantity: Optional[int] = None,
        maintenance_quantity: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> Product:
        """
        Change total and/or maintenance units under the product lock.

        Rejected with InsufficientInventory when the new rentable capacity
        is below the peak reservation of any day from ``as_of`` onwards.
        Caller commits.
        """
        product = acquire_row_lock(self.db, Product, Product.id == product_id)
        if not product:
            raise ProductNotFound(product_id)

        new_total = product.total_quantity if total_quantity is None else total_quantity
        new_maintenance = (
            product.maintenance_quantity if maintenance_quantity is None else maintenance_quantity
        )
        if new_total < 0 or new_maintenance < 0:
            raise ValueError("Quantities cannot be negative")
        if new_maintenance > new_total:
            raise ValueError("Maintenance quantity cannot exceed total quantity")

        peak = self.index.peak_quantity(product_id, as_of or date.today())
        capacity = new_total - new_maintenance
        if capacity < peak:
            raise InsufficientInventory(product_id, available=capacity, requested=peak)

        old_total, old_maintenance = product.total_quantity, product.maintenance_quantity
        product.total_quantity = new_total
        product.maintenance_quantity = new_maintenance
        self.db.flush()

        logger.info(
            f"Adjusted stock for {product.sku}: total {old_total}->{new_total}, "
            f"maintenance {old_maintenance}->{new_maintenance}"
        )
        return product
