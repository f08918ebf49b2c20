"""
Tests for the Booking Transaction Coordinator

Test Coverage:
1. The Tent scenarios (reserve, reject with available vs requested, cancel)
2. All-or-nothing multi-item bookings
3. Validation before any write (dates, duration limits, unknown products)
4. Pricing: rate x quantity x days, pluggable tax
5. Status machine: confirm, pickup, (partial) return, complete, cancel
6. Retry on lock contention, never on business rejections
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError

from rental_engine.exceptions import (
    BookingNotFound,
    ConcurrencyConflict,
    InsufficientInventory,
    InvalidRange,
    InvalidRequest,
    InvalidStatusTransition,
    PersistenceFailure,
    ProductNotFound,
)
from rental_engine.models.booking import Booking, BookingStatus
from rental_engine.models.reservation_window import ReservationWindow, WindowStatus
from rental_engine.services.availability import AvailabilityCalculator
from rental_engine.services.booking_coordinator import LineItemRequest
from rental_engine.services.pricing import NoTax


AUG = lambda day: date(2026, 8, day)  # noqa: E731


def tent_items(tent, quantity):
    return [LineItemRequest(product_id=tent.id, quantity=quantity)]


class TestTentScenario:
    """Tent: 5 units. A takes 3 for [Aug 1, Aug 10]."""

    @pytest.fixture
    def booking_a(self, coordinator, tent):
        return coordinator.create_booking("cust-a", AUG(1), AUG(10), tent_items(tent, 3))

    def test_availability_after_a(self, db, tent, booking_a):
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(5), AUG(15)) == 2

    def test_b_is_rejected_with_quantities(self, db, tent, coordinator, booking_a):
        with pytest.raises(InsufficientInventory) as exc_info:
            coordinator.create_booking("cust-b", AUG(8), AUG(20), tent_items(tent, 3))

        error = exc_info.value
        assert error.product_id == tent.id
        assert error.available == 2
        assert error.requested == 3
        assert error.to_dict()["reason"] == "InsufficientInventory"
        assert db.query(Booking).count() == 1

    def test_c_succeeds_and_sells_out_day(self, db, tent, coordinator, booking_a):
        booking_c = coordinator.create_booking("cust-c", AUG(8), AUG(20), tent_items(tent, 2))

        assert booking_c.status == BookingStatus.CONFIRMED.value
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(9), AUG(9)) == 0

    def test_cancel_a_restores_availability(self, db, tent, coordinator, booking_a):
        coordinator.cancel_booking(booking_a.id, reason="Plans changed")

        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(5), AUG(15)) == 5

    def test_no_false_negative(self, db, tent, coordinator, booking_a):
        available = AvailabilityCalculator(db).available_quantity(tent.id, AUG(2), AUG(6))

        booking = coordinator.create_booking("cust-d", AUG(2), AUG(6), tent_items(tent, available))

        assert booking.line_items[0].quantity == available


class TestCreateBooking:

    def test_creates_aggregate(self, db, tent, camera, coordinator):
        booking = coordinator.create_booking(
            "cust-1", AUG(1), AUG(4),
            [
                LineItemRequest(product_id=tent.id, quantity=2),
                LineItemRequest(product_id=camera.id, quantity=1),
            ],
            notes="Camping trip",
        )

        assert booking.order_number == "RO2026080001"
        assert booking.customer_id == "cust-1"
        assert booking.notes == "Camping trip"
        assert [item.product_id for item in booking.line_items] == [tent.id, camera.id]
        assert len(booking.windows) == 2
        for window in booking.windows:
            assert window.status == WindowStatus.ACTIVE.value
            assert window.start_date == AUG(1)
            assert window.end_date == AUG(4)
            assert window.quantity == window.line_item.quantity

    def test_pricing_with_tax(self, db, tent, camera, coordinator):
        booking = coordinator.create_booking(
            "cust-1", AUG(1), AUG(4),
            [
                LineItemRequest(product_id=tent.id, quantity=2),
                LineItemRequest(product_id=camera.id, quantity=1, unit_price=Decimal("35.50")),
            ],
        )

        tent_line, camera_line = booking.line_items
        assert tent_line.duration_days == 3
        assert tent_line.unit_rate == Decimal("25.00")
        assert tent_line.line_total == Decimal("150.00")
        assert camera_line.unit_rate == Decimal("35.50")
        assert camera_line.line_total == Decimal("106.50")
        assert booking.subtotal == Decimal("256.50")
        assert booking.tax_amount == Decimal("25.65")
        assert booking.total_amount == Decimal("282.15")

    def test_no_tax_policy(self, db, tent, make_coordinator):
        coordinator = make_coordinator(db, tax_policy=NoTax())

        booking = coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

        assert booking.tax_amount == Decimal("0.00")
        assert booking.total_amount == booking.subtotal == Decimal("50.00")

    def test_duplicate_products_are_merged(self, db, tent, coordinator):
        booking = coordinator.create_booking(
            "cust-1", AUG(1), AUG(3),
            [
                LineItemRequest(product_id=tent.id, quantity=1),
                LineItemRequest(product_id=tent.id, quantity=2),
            ],
        )

        assert len(booking.line_items) == 1
        assert booking.line_items[0].quantity == 3

    def test_pending_initial_status_holds_inventory(self, db, tent, coordinator):
        booking = coordinator.create_booking(
            "cust-1", AUG(1), AUG(3), tent_items(tent, 5), status=BookingStatus.PENDING
        )

        assert booking.status == BookingStatus.PENDING.value
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(2), AUG(2)) == 0

    def test_rejects_non_initial_status(self, db, tent, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(3), tent_items(tent, 1), status=BookingStatus.ACTIVE
            )

        assert exc_info.value.details["field"] == "status"
        assert exc_info.value.details["status"] == "active"
        assert exc_info.value.details["allowed"] == ["pending", "confirmed"]

    def test_rejects_unknown_status_string(self, db, tent, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1), status="shipped")

        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {"field": "status", "status": "shipped"}


class TestAllOrNothing:

    def test_second_item_short_leaves_no_writes(self, db, tent, camera, coordinator):
        with pytest.raises(InsufficientInventory) as exc_info:
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(4),
                [
                    LineItemRequest(product_id=tent.id, quantity=2),
                    LineItemRequest(product_id=camera.id, quantity=3),
                ],
            )

        assert exc_info.value.product_id == camera.id
        assert exc_info.value.available == 2
        assert db.query(Booking).count() == 0
        assert db.query(ReservationWindow).count() == 0
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(1), AUG(4)) == 5

    def test_rejection_does_not_consume_order_number(self, db, tent, coordinator):
        with pytest.raises(InsufficientInventory):
            coordinator.create_booking("cust-1", AUG(1), AUG(4), tent_items(tent, 6))

        booking = coordinator.create_booking("cust-1", AUG(1), AUG(4), tent_items(tent, 1))

        assert booking.order_number == "RO2026080001"


class TestValidation:

    def test_end_must_be_after_start(self, db, tent, coordinator):
        with pytest.raises(InvalidRange):
            coordinator.create_booking("cust-1", AUG(5), AUG(5), tent_items(tent, 1))
        with pytest.raises(InvalidRange):
            coordinator.create_booking("cust-1", AUG(5), AUG(1), tent_items(tent, 1))

    def test_quantity_must_be_positive(self, db, tent, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 0))

        assert exc_info.value.details == {"field": "quantity", "product_id": tent.id}

    def test_needs_line_items(self, db, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.create_booking("cust-1", AUG(1), AUG(3), [])

        assert exc_info.value.details["field"] == "line_items"

    def test_needs_customer(self, db, tent, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.create_booking("", AUG(1), AUG(3), tent_items(tent, 1))

        assert exc_info.value.reason == "InvalidRequest"
        assert exc_info.value.details == {"field": "customer_id"}

    def test_negative_unit_price(self, db, tent, coordinator):
        with pytest.raises(InvalidRequest):
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(3),
                [LineItemRequest(product_id=tent.id, quantity=1, unit_price=Decimal("-1"))],
            )

    def test_unknown_product(self, db, tent, coordinator):
        with pytest.raises(ProductNotFound) as exc_info:
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(3),
                [
                    LineItemRequest(product_id=tent.id, quantity=1),
                    LineItemRequest(product_id="no-such-product", quantity=1),
                ],
            )

        assert exc_info.value.product_id == "no-such-product"
        assert db.query(Booking).count() == 0

    def test_inactive_product_cannot_be_booked(self, db, tent, coordinator):
        tent.is_rentable = False
        db.commit()

        with pytest.raises(ProductNotFound):
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

    def test_below_min_duration(self, db, camera, coordinator):
        with pytest.raises(InvalidRange) as exc_info:
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(2), [LineItemRequest(product_id=camera.id, quantity=1)]
            )

        assert exc_info.value.details["product_id"] == camera.id

    def test_above_max_duration(self, db, camera, coordinator):
        with pytest.raises(InvalidRange):
            coordinator.create_booking(
                "cust-1", AUG(1), AUG(20), [LineItemRequest(product_id=camera.id, quantity=1)]
            )

    def test_validation_never_locks(self, db, tent, make_coordinator):
        with patch("rental_engine.services.booking_coordinator.lock_rows_for_write") as lock_mock:
            with pytest.raises(InvalidRange):
                make_coordinator(db).create_booking("cust-1", AUG(3), AUG(1), tent_items(tent, 1))

        lock_mock.assert_not_called()


class TestCancellation:

    def test_cancel_releases_all_windows(self, db, tent, camera, coordinator):
        booking = coordinator.create_booking(
            "cust-1", AUG(1), AUG(4),
            [
                LineItemRequest(product_id=tent.id, quantity=5),
                LineItemRequest(product_id=camera.id, quantity=2),
            ],
        )

        cancelled = coordinator.cancel_booking(booking.id, reason="Weather")

        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancellation_reason == "Weather"
        assert cancelled.cancelled_at is not None
        assert {w.status for w in cancelled.windows} == {WindowStatus.CANCELLED.value}
        assert all(w.released_at is not None for w in cancelled.windows)

    def test_cancel_twice_is_noop(self, db, tent, coordinator):
        booking = coordinator.create_booking("cust-1", AUG(1), AUG(4), tent_items(tent, 2))
        first = coordinator.cancel_booking(booking.id, reason="first")
        cancelled_at = first.cancelled_at

        second = coordinator.cancel_booking(booking.id, reason="second")

        assert second.status == BookingStatus.CANCELLED.value
        assert second.cancellation_reason == "first"
        assert second.cancelled_at == cancelled_at

    def test_cannot_cancel_active_booking(self, db, tent, coordinator):
        booking = coordinator.create_booking("cust-1", AUG(1), AUG(4), tent_items(tent, 2))
        coordinator.record_pickup(booking.id)

        with pytest.raises(InvalidStatusTransition) as exc_info:
            coordinator.cancel_booking(booking.id)

        assert exc_info.value.current == BookingStatus.ACTIVE.value

    def test_cancel_unknown_booking(self, db, coordinator):
        with pytest.raises(BookingNotFound):
            coordinator.cancel_booking("missing")


class TestLifecycle:

    @pytest.fixture
    def booking(self, tent, camera, coordinator):
        return coordinator.create_booking(
            "cust-1", AUG(1), AUG(4),
            [
                LineItemRequest(product_id=tent.id, quantity=2),
                LineItemRequest(product_id=camera.id, quantity=1),
            ],
            status=BookingStatus.PENDING,
        )

    def test_full_lifecycle(self, db, tent, booking, coordinator):
        assert coordinator.confirm_booking(booking.id).status == BookingStatus.CONFIRMED.value

        picked_up = coordinator.record_pickup(booking.id, pickup_date=AUG(1))
        assert picked_up.status == BookingStatus.ACTIVE.value
        assert picked_up.actual_pickup_date == AUG(1)

        returned = coordinator.record_return(booking.id, return_date=AUG(4))
        assert returned.status == BookingStatus.RETURNED.value
        assert returned.actual_return_date == AUG(4)
        assert {w.status for w in returned.windows} == {WindowStatus.RETURNED.value}
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(1), AUG(4)) == 5

        assert coordinator.complete_booking(booking.id).status == BookingStatus.COMPLETED.value

    def test_partial_return_keeps_booking_active(self, db, tent, camera, booking, coordinator):
        coordinator.confirm_booking(booking.id)
        coordinator.record_pickup(booking.id)

        partial = coordinator.record_return(booking.id, product_ids=[tent.id])

        assert partial.status == BookingStatus.ACTIVE.value
        assert AvailabilityCalculator(db).available_quantity(tent.id, AUG(2), AUG(2)) == 5
        assert AvailabilityCalculator(db).available_quantity(camera.id, AUG(2), AUG(2)) == 1

        finished = coordinator.record_return(booking.id, product_ids=[camera.id])
        assert finished.status == BookingStatus.RETURNED.value

    def test_return_of_product_not_in_booking(self, db, booking, coordinator):
        coordinator.confirm_booking(booking.id)
        coordinator.record_pickup(booking.id)

        with pytest.raises(ProductNotFound):
            coordinator.record_return(booking.id, product_ids=["other-product"])

    def test_return_before_pickup_is_rejected(self, db, booking, coordinator):
        with pytest.raises(InvalidStatusTransition):
            coordinator.record_return(booking.id)

    def test_pickup_requires_confirmation(self, db, booking, coordinator):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            coordinator.record_pickup(booking.id)

        assert exc_info.value.current == BookingStatus.PENDING.value
        assert exc_info.value.requested == BookingStatus.ACTIVE.value

    def test_transition_status_dispatch(self, db, booking, coordinator):
        coordinator.transition_status(booking.id, BookingStatus.CONFIRMED)
        coordinator.transition_status(booking.id, BookingStatus.ACTIVE)
        coordinator.transition_status(booking.id, BookingStatus.RETURNED)
        completed = coordinator.transition_status(booking.id, BookingStatus.COMPLETED)

        assert completed.status == BookingStatus.COMPLETED.value

    def test_transition_back_to_pending_is_rejected(self, db, booking, coordinator):
        coordinator.confirm_booking(booking.id)

        with pytest.raises(InvalidStatusTransition):
            coordinator.transition_status(booking.id, BookingStatus.PENDING)

    def test_unknown_status_string(self, db, booking, coordinator):
        with pytest.raises(InvalidRequest) as exc_info:
            coordinator.transition_status(booking.id, "lost")

        assert exc_info.value.details == {"field": "status", "status": "lost"}

    def test_completed_is_terminal(self, db, booking, coordinator):
        for status in (BookingStatus.CONFIRMED, BookingStatus.ACTIVE,
                       BookingStatus.RETURNED, BookingStatus.COMPLETED):
            coordinator.transition_status(booking.id, status)

        with pytest.raises(InvalidStatusTransition):
            coordinator.cancel_booking(booking.id)

    def test_get_booking(self, db, booking, coordinator):
        assert coordinator.get_booking(booking.id).order_number == booking.order_number
        with pytest.raises(BookingNotFound):
            coordinator.get_booking("missing")


def locked_error():
    return OperationalError("UPDATE products ...", {}, Exception("database is locked"))


class TestRetries:

    def test_retries_on_lock_contention(self, db, tent, make_coordinator):
        sleeps = []
        coordinator = make_coordinator(
            db, max_retries=3, backoff_seconds=0.1, max_backoff_seconds=0.15, sleep=sleeps.append
        )
        real_create = coordinator._create_once
        calls = {"count": 0}

        def flaky(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] < 3:
                raise locked_error()
            return real_create(*args, **kwargs)

        coordinator._create_once = flaky
        booking = coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

        assert booking.order_number == "RO2026080001"
        assert calls["count"] == 3
        assert sleeps == [0.1, 0.15]

    def test_gives_up_with_concurrency_conflict(self, db, tent, make_coordinator):
        sleep = MagicMock()
        coordinator = make_coordinator(db, max_retries=2, sleep=sleep)
        coordinator._create_once = MagicMock(side_effect=locked_error())

        with pytest.raises(ConcurrencyConflict) as exc_info:
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

        assert exc_info.value.details == {"attempts": 3}
        assert coordinator._create_once.call_count == 3
        assert sleep.call_count == 2

    def test_business_rejection_is_not_retried(self, db, tent, make_coordinator):
        sleep = MagicMock()
        coordinator = make_coordinator(db, sleep=sleep)

        with pytest.raises(InsufficientInventory):
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 9))

        sleep.assert_not_called()

    def test_other_database_errors_are_persistence_failures(self, db, tent, make_coordinator):
        sleep = MagicMock()
        coordinator = make_coordinator(db, sleep=sleep)
        coordinator._create_once = MagicMock(
            side_effect=OperationalError("INSERT ...", {}, Exception("disk I/O error"))
        )

        with pytest.raises(PersistenceFailure) as exc_info:
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

        assert exc_info.value.status_code == 503
        sleep.assert_not_called()


class FailingTax:
    """Tax policy that blows up after the products are already locked."""

    def compute(self, subtotal):
        raise ArithmeticError("tax service unavailable")


class TestRollbackOnUnexpectedErrors:

    def test_failing_tax_policy_releases_the_lock(self, db, session_factory, tent, make_coordinator):
        tent_id = tent.id

        with pytest.raises(ArithmeticError):
            make_coordinator(db, tax_policy=FailingTax()).create_booking(
                "cust-1", AUG(1), AUG(3), [LineItemRequest(product_id=tent_id, quantity=1)]
            )

        assert db.in_transaction() is False

        other = session_factory()
        try:
            booking = make_coordinator(other, max_retries=0).create_booking(
                "cust-2", AUG(1), AUG(3), [LineItemRequest(product_id=tent_id, quantity=5)]
            )
            assert booking.order_number == "RO2026080001"
        finally:
            other.close()

        assert db.query(Booking).count() == 1
        assert db.query(ReservationWindow).count() == 1

    def test_unexpected_error_is_not_wrapped_or_retried(self, db, tent, make_coordinator):
        sleep = MagicMock()
        coordinator = make_coordinator(db, sleep=sleep)
        coordinator._create_once = MagicMock(side_effect=KeyError("boom"))

        with pytest.raises(KeyError):
            coordinator.create_booking("cust-1", AUG(1), AUG(3), tent_items(tent, 1))

        assert coordinator._create_once.call_count == 1
        assert db.in_transaction() is False
        sleep.assert_not_called()
