from pydantic import BaseModel
from datetime import date


class AvailabilityResponse(BaseModel):
    product_id: str
    start_date: date
    end_date: date
    available_quantity: int
    requested_quantity: int
    is_available: bool


class LedgerSnapshotResponse(BaseModel):
    product_id: str
    on_date: date
    total_quantity: int
    reserved_quantity: int
    maintenance_quantity: int
    available_quantity: int
