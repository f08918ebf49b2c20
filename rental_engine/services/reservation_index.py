"""
Reservation Window Index

Per-product set of committed date-range reservations.
Owns the one overlap predicate every availability check goes through.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional
from sqlalchemy.orm import Session, Query
from sqlalchemy import and_, func

from ..models.booking import Booking, BookingLineItem
from ..models.reservation_window import ReservationWindow, WindowStatus

logger = logging.getLogger(__name__)


class ReservationWindowIndex:
    """
    Query and mutate reservation windows.

    Key responsibilities:
    - Find ACTIVE windows overlapping an inclusive date range
    - Sum reserved quantity for a range
    - Create one window per booking line item
    - Release windows on return or cancellation
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def overlap_clause(start: date, end: date):
        """
        Inclusive overlap of a window with [start, end].

        [Jan 1, Jan 5] and [Jan 5, Jan 10] overlap: both claim Jan 5.
        """
        return and_(
            ReservationWindow.start_date <= end,
            ReservationWindow.end_date >= start,
        )

    def overlapping(
        self,
        product_id: str,
        start: date,
        end: date,
        exclude_booking_id: Optional[str] = None
    ) -> Query:
        """ACTIVE windows of a product that overlap [start, end]."""
        query = self.db.query(ReservationWindow).filter(
            ReservationWindow.product_id == product_id,
            ReservationWindow.status == WindowStatus.ACTIVE.value,
            self.overlap_clause(start, end),
        )

        if exclude_booking_id:
            query = query.filter(ReservationWindow.booking_id != exclude_booking_id)

        return query

    def reserved_quantity(
        self,
        product_id: str,
        start: date,
        end: date,
        exclude_booking_id: Optional[str] = None
    ) -> int:
        """Sum of quantities of ACTIVE windows overlapping [start, end]."""
        query = self.db.query(func.coalesce(func.sum(ReservationWindow.quantity), 0)).filter(
            ReservationWindow.product_id == product_id,
            ReservationWindow.status == WindowStatus.ACTIVE.value,
            self.overlap_clause(start, end),
        )

        if exclude_booking_id:
            query = query.filter(ReservationWindow.booking_id != exclude_booking_id)

        return int(query.scalar() or 0)

    def for_booking(self, booking_id: str, status: Optional[WindowStatus] = None) -> List[ReservationWindow]:
        query = self.db.query(ReservationWindow).filter(ReservationWindow.booking_id == booking_id)
        if status is not None:
            query = query.filter(ReservationWindow.status == status.value)
        return query.order_by(ReservationWindow.created_at, ReservationWindow.id).all()

    def add_window(self, booking: Booking, line_item: BookingLineItem) -> ReservationWindow:
        """Claim ``line_item.quantity`` units for the booking's whole date range."""
        window = ReservationWindow(
            product_id=line_item.product_id,
            booking=booking,
            line_item=line_item,
            start_date=booking.start_date,
            end_date=booking.end_date,
            quantity=line_item.quantity,
            status=WindowStatus.ACTIVE.value,
        )
        self.db.add(window)
        return window

    def release(
        self,
        booking_id: str,
        status: WindowStatus,
        product_ids: Optional[Iterable[str]] = None
    ) -> int:
        """
        Move ACTIVE windows of a booking to RETURNED or CANCELLED.

        If product_ids provided, only windows for those products are released.
        Returns count of windows released.
        """
        if status == WindowStatus.ACTIVE:
            raise ValueError("release() needs a terminal window status")

        windows = self.for_booking(booking_id, status=WindowStatus.ACTIVE)
        if product_ids is not None:
            wanted = set(product_ids)
            windows = [w for w in windows if w.product_id in wanted]

        now = datetime.utcnow()
        for window in windows:
            window.status = status.value
            window.released_at = now
        self.db.flush()

        logger.info(f"Released {len(windows)} windows of booking {booking_id} as {status.value}")
        return len(windows)

    def peak_quantity(self, product_id: str, start: date, end: Optional[date] = None) -> int:
        """
        Highest reserved quantity on any single day in [start, end].

        ``end=None`` means "from start onwards". Sweeps window boundaries
        instead of walking every day.
        """
        query = self.db.query(ReservationWindow).filter(
            ReservationWindow.product_id == product_id,
            ReservationWindow.status == WindowStatus.ACTIVE.value,
            ReservationWindow.end_date >= start,
        )
        if end is not None:
            query = query.filter(ReservationWindow.start_date <= end)

        events = []
        for window in query.all():
            first_day = max(window.start_date, start)
            events.append((first_day, window.quantity))
            events.append((window.end_date + timedelta(days=1), -window.quantity))

        # Releases sort before claims on the same day
        events.sort(key=lambda e: (e[0], e[1]))

        peak = current = 0
        for _, delta in events:
            current += delta
            peak = max(peak, current)
        return peak
