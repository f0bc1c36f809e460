"""
Pydantic schemas for booking request/response validation.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StrictRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BookingCreate(StrictRequest):
    equipment_id: int
    start_date: datetime
    end_date: datetime
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalise_dates(cls, value):
        return as_utc(value)


class BookingUpdate(StrictRequest):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalise_dates(cls, value):
        return as_utc(value)


class BookingStatusUpdate(StrictRequest):
    status: Literal["CONFIRMED", "ACTIVE", "COMPLETED", "CANCELLED", "PENDING"]


class BookingCancel(StrictRequest):
    cancellation_reason: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    id: int
    equipment_id: int
    farmer_id: int
    start_date: datetime
    end_date: datetime
    total_days: int
    price_per_day: int
    total_price: int
    status: str
    payment_status: str
    notes: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int
