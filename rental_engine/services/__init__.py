# Services package
from .reservation_index import ReservationWindowIndex
from .availability import AvailabilityCalculator, AvailabilityResult
from .inventory_ledger import InventoryLedger, LedgerSnapshot
from .order_numbers import OrderNumberGenerator, scope_for
from .pricing import TaxPolicy, FlatRateTax, NoTax, PriceBreakdown, PricedLine
from .booking_coordinator import BookingCoordinator, LineItemRequest

__all__ = [
    "ReservationWindowIndex",
    "AvailabilityCalculator", "AvailabilityResult",
    "InventoryLedger", "LedgerSnapshot",
    "OrderNumberGenerator", "scope_for",
    "TaxPolicy", "FlatRateTax", "NoTax", "PriceBreakdown", "PricedLine",
    "BookingCoordinator", "LineItemRequest",
]
