"""
Booking Transaction Coordinator

Commits a multi-line booking against inventory as one atomic unit:
- lock every referenced product (ascending id order)
- check availability of every line item
- price the booking
- take an order number
- write booking, line items and one reservation window per line

Any failure rolls the whole unit back. Lock contention is retried with
exponential backoff; business rejections are returned to the caller as-is.
"""

import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from ..config import settings
from ..exceptions import (
    BookingNotFound,
    ConcurrencyConflict,
    InsufficientInventory,
    InvalidRange,
    InvalidRequest,
    InvalidStatusTransition,
    InventoryEngineError,
    PersistenceFailure,
    ProductNotFound,
)
from ..models.booking import Booking, BookingLineItem, BookingStatus
from ..models.product import Product
from ..models.reservation_window import WindowStatus
from ..utils.db_helpers import acquire_row_lock, is_lock_contention, lock_rows_for_write
from ..utils.logging_config import get_logger
from .availability import AvailabilityCalculator
from .order_numbers import OrderNumberGenerator, scope_for
from .pricing import FlatRateTax, PricedLine, TaxPolicy, price_line, price_lines, rental_days
from .reservation_index import ReservationWindowIndex

logger = get_logger(__name__)

T = TypeVar("T")

# A booking may only be created in one of these
INITIAL_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


@dataclass
class LineItemRequest:
    product_id: str
    quantity: int
    unit_price: Optional[Decimal] = None


class BookingCoordinator:

    def __init__(
        self,
        db: Session,
        tax_policy: Optional[TaxPolicy] = None,
        order_numbers: Optional[OrderNumberGenerator] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        max_backoff_seconds: Optional[float] = None,
        clock: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.index = ReservationWindowIndex(db)
        self.calculator = AvailabilityCalculator(db, self.index)
        self.tax_policy = tax_policy or FlatRateTax(settings.tax_rate)
        self.order_numbers = order_numbers or OrderNumberGenerator()
        self.max_retries = settings.booking_max_retries if max_retries is None else max_retries
        self.backoff_seconds = (
            settings.booking_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.max_backoff_seconds = (
            settings.booking_retry_max_backoff_seconds
            if max_backoff_seconds is None else max_backoff_seconds
        )
        self.clock = clock
        self.sleep = sleep

    # ================================
    # Transaction runner
    # ================================

    def _run_in_transaction(self, operation: str, work: Callable[[], T]) -> T:
        """
        Run ``work`` and commit, retrying the whole unit on lock contention.

        Engine errors and any other exception roll back and propagate
        untouched. Lock contention is retried up to ``max_retries`` times,
        then surfaces as ConcurrencyConflict. Any other database error is a
        PersistenceFailure.
        """
        attempt = 0
        while True:
            try:
                result = work()
                self.db.commit()
                return result
            except InventoryEngineError:
                self.db.rollback()
                raise
            except DBAPIError as e:
                self.db.rollback()
                if not is_lock_contention(e):
                    logger.error(f"{operation} failed: {e}")
                    raise PersistenceFailure(f"{operation} could not be saved") from e
                if attempt >= self.max_retries:
                    logger.warning(f"{operation} gave up after {attempt + 1} attempts: {e}")
                    raise ConcurrencyConflict(attempts=attempt + 1) from e

                delay = min(self.backoff_seconds * (2 ** attempt), self.max_backoff_seconds)
                logger.warning(f"{operation} hit lock contention, retrying in {delay:.3f}s")
                self.sleep(delay)
                attempt += 1
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"{operation} failed: {e}")
                raise PersistenceFailure(f"{operation} could not be saved") from e
            except Exception:
                self.db.rollback()
                raise

    # ================================
    # Create
    # ================================

    def create_booking(
        self,
        customer_id: str,
        start: date,
        end: date,
        line_items: Iterable[LineItemRequest],
        notes: Optional[str] = None,
        status: BookingStatus = BookingStatus.CONFIRMED
    ) -> Booking:
        """
        Reserve every line item for [start, end] or nothing at all.

        Raises InvalidRequest, InvalidRange, ProductNotFound,
        InsufficientInventory, ConcurrencyConflict or PersistenceFailure.
        """
        started = time.time()
        items = self._validate_request(customer_id, start, end, line_items, status)

        # Read-only checks first, so validation errors never touch a lock
        self._validate_products(self._load_products(items.keys()), items, start, end)

        attempts = {"count": 0}

        def work() -> Booking:
            attempts["count"] += 1
            return self._create_once(customer_id, start, end, items, notes, status)

        booking = self._run_in_transaction("create_booking", work)

        logger.booking_created(
            booking.id,
            booking.order_number,
            float(booking.total_amount),
            attempts=attempts["count"],
            duration_ms=round((time.time() - started) * 1000, 2),
        )
        return booking

    def _validate_request(
        self,
        customer_id: str,
        start: date,
        end: date,
        line_items: Iterable[LineItemRequest],
        status: BookingStatus
    ) -> Dict[str, LineItemRequest]:
        """Shape checks. Returns line items keyed by product, duplicates merged."""
        if not customer_id:
            raise InvalidRequest("A customer is required", field="customer_id")
        if end <= start:
            raise InvalidRange("End date must be after start date", start=start, end=end)
        try:
            initial = BookingStatus(status)
        except ValueError:
            raise InvalidRequest(f"Unknown booking status '{status}'", field="status", status=str(status))
        if initial not in INITIAL_STATUSES:
            raise InvalidRequest(
                f"A booking cannot be created as '{initial.value}'",
                field="status",
                status=initial.value,
                allowed=[s.value for s in INITIAL_STATUSES],
            )

        merged: Dict[str, LineItemRequest] = {}
        for item in line_items:
            if item.quantity is None or item.quantity <= 0:
                raise InvalidRequest(
                    f"Quantity for product {item.product_id} must be positive",
                    field="quantity",
                    product_id=item.product_id,
                )
            if item.unit_price is not None and Decimal(str(item.unit_price)) < 0:
                raise InvalidRequest(
                    f"Unit price for product {item.product_id} cannot be negative",
                    field="unit_price",
                    product_id=item.product_id,
                )
            if item.product_id in merged:
                existing = merged[item.product_id]
                merged[item.product_id] = LineItemRequest(
                    product_id=item.product_id,
                    quantity=existing.quantity + item.quantity,
                    unit_price=existing.unit_price if existing.unit_price is not None else item.unit_price,
                )
            else:
                merged[item.product_id] = item

        if not merged:
            raise InvalidRequest("A booking needs at least one line item", field="line_items")
        return merged

    def _load_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        products = self.db.query(Product).filter(Product.id.in_(list(product_ids))).all()
        return {p.id: p for p in products}

    def _validate_products(
        self,
        products: Dict[str, Product],
        items: Dict[str, LineItemRequest],
        start: date,
        end: date
    ) -> None:
        days = rental_days(start, end)
        for product_id in items:
            product = products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)
            if not product.can_be_booked:
                raise ProductNotFound(product_id, f"Product {product_id} is not available for rent")
            if days < product.min_duration or (
                product.max_duration is not None and days > product.max_duration
            ):
                limit = f"{product.min_duration}-{product.max_duration or 'unlimited'}"
                raise InvalidRange(
                    f"Rental of {days} days is outside the allowed {limit} days for product {product_id}",
                    start=start, end=end, product_id=product_id,
                )

    def _create_once(
        self,
        customer_id: str,
        start: date,
        end: date,
        items: Dict[str, LineItemRequest],
        notes: Optional[str],
        status: BookingStatus
    ) -> Booking:
        # Serializes every other booking touching these products until commit
        locked = {p.id: p for p in lock_rows_for_write(self.db, Product, items.keys())}
        self._validate_products(locked, items, start, end)

        priced: List[PricedLine] = []
        for product_id, item in items.items():
            product = locked[product_id]
            available = self.calculator.available_quantity(product_id, start, end, product=product)
            if available < item.quantity:
                logger.booking_rejected(
                    "InsufficientInventory",
                    product_id=product_id,
                    available=available,
                    requested=item.quantity,
                )
                raise InsufficientInventory(product_id, available=available, requested=item.quantity)

            unit_rate = item.unit_price if item.unit_price is not None else product.base_rate
            priced.append(price_line(product_id, item.quantity, unit_rate, start, end))

        breakdown = price_lines(priced, self.tax_policy)

        order_number = self.order_numbers.next(self.db, scope_for(self.clock()))

        booking = Booking(
            order_number=order_number,
            customer_id=customer_id,
            start_date=start,
            end_date=end,
            status=BookingStatus(status).value,
            subtotal=breakdown.subtotal,
            tax_amount=breakdown.tax,
            total_amount=breakdown.total,
            notes=notes,
        )
        self.db.add(booking)

        for position, line in enumerate(breakdown.lines):
            line_item = BookingLineItem(
                product_id=line.product_id,
                position=position,
                quantity=line.quantity,
                unit_rate=line.unit_rate,
                duration_days=line.duration_days,
                line_total=line.line_total,
            )
            booking.line_items.append(line_item)
            self.index.add_window(booking, line_item)

        self.db.flush()
        return booking

    # ================================
    # Read
    # ================================

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.db.query(Booking).filter(Booking.id == booking_id).first()
        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    # ================================
    # Status changes
    # ================================

    def _lock_booking(self, booking_id: str) -> Booking:
        booking = acquire_row_lock(self.db, Booking, Booking.id == booking_id)
        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    def _move(self, booking: Booking, new_status: BookingStatus, released: int = 0) -> None:
        if not booking.can_transition_to(new_status):
            raise InvalidStatusTransition(booking.id, booking.status, new_status.value)
        old_status = booking.status
        booking.status = new_status.value
        logger.booking_status_changed(booking.id, old_status, new_status.value, windows_released=released)

    def cancel_booking(self, booking_id: str, reason: Optional[str] = None) -> Booking:
        """
        Cancel a pending or confirmed booking and release all its windows.

        Cancelling an already cancelled booking is a no-op success.
        """
        def work() -> Booking:
            booking = self._lock_booking(booking_id)
            if booking.status == BookingStatus.CANCELLED.value:
                return booking
            if not booking.can_transition_to(BookingStatus.CANCELLED):
                raise InvalidStatusTransition(booking.id, booking.status, BookingStatus.CANCELLED.value)

            released = self.index.release(booking.id, WindowStatus.CANCELLED)
            booking.cancellation_reason = reason
            booking.cancelled_at = datetime.utcnow()
            self._move(booking, BookingStatus.CANCELLED, released)
            return booking

        return self._run_in_transaction("cancel_booking", work)

    def confirm_booking(self, booking_id: str) -> Booking:
        def work() -> Booking:
            booking = self._lock_booking(booking_id)
            self._move(booking, BookingStatus.CONFIRMED)
            return booking

        return self._run_in_transaction("confirm_booking", work)

    def record_pickup(self, booking_id: str, pickup_date: Optional[date] = None) -> Booking:
        """Customer collected the equipment: confirmed -> active."""
        def work() -> Booking:
            booking = self._lock_booking(booking_id)
            self._move(booking, BookingStatus.ACTIVE)
            booking.actual_pickup_date = pickup_date or self.clock()
            return booking

        return self._run_in_transaction("record_pickup", work)

    def record_return(
        self,
        booking_id: str,
        product_ids: Optional[Iterable[str]] = None,
        return_date: Optional[date] = None
    ) -> Booking:
        """
        Release the windows of returned products.

        Without product_ids every line item is returned. The booking becomes
        RETURNED once no ACTIVE window is left; partial returns keep it ACTIVE.
        """
        def work() -> Booking:
            booking = self._lock_booking(booking_id)
            if booking.status != BookingStatus.ACTIVE.value:
                raise InvalidStatusTransition(booking.id, booking.status, BookingStatus.RETURNED.value)

            wanted = None
            if product_ids is not None:
                wanted = set(product_ids)
                booked = {item.product_id for item in booking.line_items}
                unknown = sorted(wanted - booked)
                if unknown:
                    raise ProductNotFound(unknown[0], f"Product {unknown[0]} is not part of booking {booking.id}")

            released = self.index.release(booking.id, WindowStatus.RETURNED, wanted)
            if not self.index.for_booking(booking.id, status=WindowStatus.ACTIVE):
                booking.actual_return_date = return_date or self.clock()
                self._move(booking, BookingStatus.RETURNED, released)
            return booking

        return self._run_in_transaction("record_return", work)

    def complete_booking(self, booking_id: str) -> Booking:
        """Post-return reconciliation done: returned -> completed."""
        def work() -> Booking:
            booking = self._lock_booking(booking_id)
            self._move(booking, BookingStatus.COMPLETED)
            return booking

        return self._run_in_transaction("complete_booking", work)

    def transition_status(self, booking_id: str, new_status: BookingStatus) -> Booking:
        """Dispatch a generic status change to the matching operation."""
        try:
            new_status = BookingStatus(new_status)
        except ValueError:
            raise InvalidRequest(f"Unknown booking status '{new_status}'", field="status", status=str(new_status))
        handlers = {
            BookingStatus.CONFIRMED: self.confirm_booking,
            BookingStatus.ACTIVE: self.record_pickup,
            BookingStatus.RETURNED: self.record_return,
            BookingStatus.COMPLETED: self.complete_booking,
            BookingStatus.CANCELLED: self.cancel_booking,
        }
        handler = handlers.get(new_status)
        if handler is None:
            booking = self.get_booking(booking_id)
            raise InvalidStatusTransition(booking.id, booking.status, new_status.value)
        return handler(booking_id)
