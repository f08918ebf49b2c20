"""
Order Number Generator

Human-readable booking numbers: {PREFIX}{YYYYMM}{sequence:04d}, e.g. RO2026080001.
The sequence restarts every month and comes from an atomic counter row,
never from "read the highest number and add one".
"""

import re
import logging
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session

from ..config import settings
from ..models.order_sequence import OrderSequence
from ..utils.db_helpers import AtomicCounter

logger = logging.getLogger(__name__)

SCOPE_KEY_RE = re.compile(r"^\d{4}(0[1-9]|1[0-2])$")


def scope_for(day: date) -> str:
    """Month scope key for a date, e.g. 2026-08-14 -> '202608'."""
    return f"{day.year:04d}{day.month:02d}"


class OrderNumberGenerator:

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix or settings.order_number_prefix

    def next(self, db: Session, scope_key: str) -> str:
        """
        Reserve the next number in ``scope_key``.

        Runs inside the caller's transaction: if the booking rolls back, so
        does the increment. Two concurrent callers block on the counter row
        and always get different values.
        """
        if not SCOPE_KEY_RE.match(scope_key or ""):
            raise ValueError(f"Invalid order number scope '{scope_key}', expected YYYYMM")

        sequence = AtomicCounter.upsert_increment(
            db, OrderSequence, "scope_key", scope_key, "last_value"
        )
        order_number = self.format(scope_key, sequence)
        logger.debug(f"Issued order number {order_number}")
        return order_number

    def format(self, scope_key: str, sequence: int) -> str:
        return f"{self.prefix}{scope_key}{sequence:04d}"

    def current(self, db: Session, scope_key: str) -> int:
        """Last sequence value issued in a scope (0 if none)."""
        row = db.query(OrderSequence).filter(OrderSequence.scope_key == scope_key).first()
        return row.last_value if row else 0
