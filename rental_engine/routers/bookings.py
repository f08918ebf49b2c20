from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.booking import Booking, BookingStatus as BookingStatusEnum
from ..schemas.booking import (
    BookingResponse, BookingCreate, BookingCancel, BookingPickup,
    BookingReturn, BookingStatusUpdate, RejectionResponse
)
from ..services.booking_coordinator import BookingCoordinator, LineItemRequest
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])

REJECTIONS = {
    400: {"model": RejectionResponse, "description": "InvalidRange / InvalidRequest"},
    404: {"model": RejectionResponse, "description": "ProductNotFound / BookingNotFound"},
    409: {"model": RejectionResponse, "description": "InsufficientInventory / InvalidStatusTransition / ConcurrencyConflict"},
    503: {"model": RejectionResponse, "description": "PersistenceFailure"},
}


def get_coordinator(db: Session = Depends(get_db)) -> BookingCoordinator:
    return BookingCoordinator(db)


def to_booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse.model_validate(booking)


# Endpoints are plain functions: lock waits and retry backoff block, so they
# run in the threadpool instead of on the event loop.

@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse, responses=REJECTIONS)
@router.post("/", status_code=status.HTTP_201_CREATED, response_model=BookingResponse,
             responses=REJECTIONS, include_in_schema=False)
@limiter.limit(get_rate_limit("booking_create"))
def create_booking(
    request: Request,
    booking_data: BookingCreate,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    """
    Reserve every requested item for the date range, or nothing.

    - 201 with the committed booking and its order number
    - 409 InsufficientInventory names the product and available vs requested
    """
    booking = coordinator.create_booking(
        customer_id=booking_data.customer_id,
        start=booking_data.start_date,
        end=booking_data.end_date,
        line_items=[
            LineItemRequest(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
            )
            for item in booking_data.items
        ],
        notes=booking_data.notes,
        status=BookingStatusEnum(booking_data.status.value),
    )
    return to_booking_response(booking)


@router.get("/{booking_id}", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_get"))
def get_booking(
    request: Request,
    booking_id: str,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    return to_booking_response(coordinator.get_booking(booking_id))


@router.post("/{booking_id}/cancel", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_cancel"))
def cancel_booking(
    request: Request,
    booking_id: str,
    cancel_data: BookingCancel = None,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    """Release every reservation of the booking. Cancelling twice is a no-op."""
    reason = cancel_data.reason if cancel_data else None
    return to_booking_response(coordinator.cancel_booking(booking_id, reason=reason))


@router.post("/{booking_id}/pickup", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_update"))
def record_pickup(
    request: Request,
    booking_id: str,
    pickup_data: BookingPickup = None,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    pickup_date = pickup_data.pickup_date if pickup_data else None
    return to_booking_response(coordinator.record_pickup(booking_id, pickup_date=pickup_date))


@router.post("/{booking_id}/return", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_update"))
def record_return(
    request: Request,
    booking_id: str,
    return_data: BookingReturn = None,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    """Return all items, or only ``product_ids`` for a partial return."""
    product_ids = return_data.product_ids if return_data else None
    return_date = return_data.return_date if return_data else None
    booking = coordinator.record_return(booking_id, product_ids=product_ids, return_date=return_date)
    return to_booking_response(booking)


@router.post("/{booking_id}/complete", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_update"))
def complete_booking(
    request: Request,
    booking_id: str,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    return to_booking_response(coordinator.complete_booking(booking_id))


@router.patch("/{booking_id}/status", response_model=BookingResponse, responses=REJECTIONS)
@limiter.limit(get_rate_limit("booking_update"))
def update_booking_status(
    request: Request,
    booking_id: str,
    status_data: BookingStatusUpdate,
    coordinator: BookingCoordinator = Depends(get_coordinator)
):
    """Generic status change following the booking state machine"""
    booking = coordinator.transition_status(booking_id, BookingStatusEnum(status_data.status.value))
    return to_booking_response(booking)
