from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from datetime import date
from typing import Optional

from ..database import get_db
from ..schemas.availability import AvailabilityResponse, LedgerSnapshotResponse
from ..schemas.booking import RejectionResponse
from ..services.availability import AvailabilityCalculator
from ..services.inventory_ledger import InventoryLedger
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api", tags=["Availability"])


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    responses={400: {"model": RejectionResponse}, 404: {"model": RejectionResponse}},
)
@limiter.limit(get_rate_limit("availability"))
def check_availability(
    request: Request,
    product_id: str = Query(..., min_length=1),
    start_date: date = Query(...),
    end_date: date = Query(...),
    quantity: int = Query(1, gt=0),
    exclude_booking_id: Optional[str] = Query(None, description="Ignore this booking's own reservations"),
    db: Session = Depends(get_db)
):
    """Free units of a product over an inclusive date range. Read only."""
    result = AvailabilityCalculator(db).check(
        product_id, start_date, end_date,
        requested=quantity,
        exclude_booking_id=exclude_booking_id,
    )
    return AvailabilityResponse(
        product_id=result.product_id,
        start_date=result.start_date,
        end_date=result.end_date,
        available_quantity=result.available,
        requested_quantity=result.requested,
        is_available=result.is_available,
    )


@router.get(
    "/products/{product_id}/ledger",
    response_model=LedgerSnapshotResponse,
    responses={404: {"model": RejectionResponse}},
)
@limiter.limit(get_rate_limit("availability"))
def get_ledger_snapshot(
    request: Request,
    product_id: str,
    on: Optional[date] = Query(None, description="Day to report, defaults to today"),
    db: Session = Depends(get_db)
):
    snapshot = InventoryLedger(db).snapshot(product_id, on or date.today())
    return LedgerSnapshotResponse(**snapshot.to_dict())
