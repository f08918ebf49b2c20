# Models package
from .product import Product
from .booking import Booking, BookingLineItem, BookingStatus, BOOKING_TRANSITIONS
from .reservation_window import ReservationWindow, WindowStatus
from .order_sequence import OrderSequence

__all__ = [
    "Product",
    "Booking", "BookingLineItem", "BookingStatus", "BOOKING_TRANSITIONS",
    "ReservationWindow", "WindowStatus",
    "OrderSequence",
]
