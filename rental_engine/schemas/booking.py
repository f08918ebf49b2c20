from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
import re


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    RETURNED = "returned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InitialStatus(str, Enum):
    """Statuses a booking may be created in"""
    PENDING = "pending"
    CONFIRMED = "confirmed"


class LineItemCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(..., gt=0)
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Overrides the product's base rate")


class BookingCreate(BaseModel):
    customer_id: str = Field(..., min_length=1, max_length=36)
    start_date: date
    end_date: date
    items: List[LineItemCreate] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)
    status: InitialStatus = InitialStatus.CONFIRMED

    @field_validator('notes', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        """Strip script tags and inline event handlers"""
        if v is None:
            return v
        if isinstance(v, str):
            v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
            v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
        return v


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class BookingPickup(BaseModel):
    pickup_date: Optional[date] = None


class BookingReturn(BaseModel):
    product_ids: Optional[List[str]] = Field(None, min_length=1)
    return_date: Optional[date] = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class LineItemResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_rate: Decimal
    duration_days: int
    line_total: Decimal

    class Config:
        from_attributes = True


class ReservationWindowResponse(BaseModel):
    id: str
    product_id: str
    start_date: date
    end_date: date
    quantity: int
    status: str
    released_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    id: str
    order_number: str
    customer_id: str
    start_date: date
    end_date: date
    status: BookingStatus
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    actual_pickup_date: Optional[date] = None
    actual_return_date: Optional[date] = None
    line_items: List[LineItemResponse] = []
    windows: List[ReservationWindowResponse] = []
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RejectionResponse(BaseModel):
    reason: str
    message: str
    details: dict = {}
