"""
Inventory engine error taxonomy.

Every error carries a machine-readable ``reason`` (the class name), a
human-readable message, an HTTP status for the API layer and a ``details``
dict so callers can adjust and resubmit a rejected request.
"""

from datetime import date
from typing import Any, Dict, Optional


class InventoryEngineError(Exception):
    """Base class for all errors raised by the reservation engine."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def reason(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "message": self.message,
            "details": self.details,
        }


class InvalidRange(InventoryEngineError):
    """Dates out of order, or a duration outside a product's rental limits."""

    status_code = 400

    def __init__(
        self,
        message: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        product_id: Optional[str] = None,
    ):
        details: Dict[str, Any] = {}
        if start is not None:
            details["start_date"] = start.isoformat()
        if end is not None:
            details["end_date"] = end.isoformat()
        if product_id is not None:
            details["product_id"] = product_id
        super().__init__(message, details)


class InvalidRequest(InventoryEngineError):
    """Malformed booking request: no customer, no items, bad quantity or status."""

    status_code = 400

    def __init__(self, message: str, field: str, **details: Any):
        super().__init__(message, {"field": field, **details})


class ProductNotFound(InventoryEngineError):
    status_code = 404

    def __init__(self, product_id: str, message: Optional[str] = None):
        self.product_id = product_id
        super().__init__(
            message or f"Product {product_id} not found",
            {"product_id": product_id},
        )


class BookingNotFound(InventoryEngineError):
    status_code = 404

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found", {"booking_id": booking_id})


class InsufficientInventory(InventoryEngineError):
    """Business rejection: not enough free units. Never retried automatically."""

    status_code = 409

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient quantity for product {product_id}. "
            f"Available: {available}, Requested: {requested}",
            {"product_id": product_id, "available": available, "requested": requested},
        )


class InvalidStatusTransition(InventoryEngineError):
    status_code = 409

    def __init__(self, booking_id: str, current: str, requested: str):
        self.booking_id = booking_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Booking {booking_id} cannot move from '{current}' to '{requested}'",
            {"booking_id": booking_id, "current_status": current, "requested_status": requested},
        )


class ConcurrencyConflict(InventoryEngineError):
    """Transient lock contention; the whole booking attempt may be retried."""

    status_code = 409

    def __init__(self, message: str = "Inventory is busy with another request, please retry",
                 attempts: Optional[int] = None):
        details = {"attempts": attempts} if attempts is not None else {}
        super().__init__(message, details)


class PersistenceFailure(InventoryEngineError):
    """Storage layer unavailable. Nothing was written."""

    status_code = 503

    def __init__(self, message: str = "Storage is unavailable"):
        super().__init__(message)
