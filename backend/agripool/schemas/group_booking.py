"""
Pydantic schemas for group booking request/response validation.

Participant bounds and expiry are checked by the coordinator, not here, so
that rule violations come back as domain validation errors.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from agripool.schemas.booking import StrictRequest, as_utc


class GroupBookingCreate(StrictRequest):
    equipment_id: int
    start_date: datetime
    end_date: datetime
    min_participants: int
    max_participants: int
    is_public: bool = True
    expires_at: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_date", "end_date", "expires_at")
    @classmethod
    def normalise_dates(cls, value):
        return as_utc(value)


class GroupJoin(StrictRequest):
    notes: Optional[str] = Field(None, max_length=1000)


class GroupStatusUpdate(StrictRequest):
    status: Literal["CONFIRMED", "ACTIVE", "COMPLETED", "CANCELLED"]


class GroupCancel(StrictRequest):
    reason: Optional[str] = Field(None, max_length=1000)


class GroupParticipantResponse(BaseModel):
    id: int
    group_booking_id: int
    farmer_id: int
    share_amount: int
    payment_status: str
    amount_paid: Optional[int] = None
    joined_at: datetime
    notes: Optional[str]

    model_config = {"from_attributes": True}


class GroupBookingResponse(BaseModel):
    id: int
    equipment_id: int
    initiator_id: int
    start_date: datetime
    end_date: datetime
    total_days: int
    price_per_day: int
    total_price: int
    min_participants: int
    max_participants: int
    participant_count: int
    is_public: bool
    expires_at: Optional[datetime]
    status: str
    ready_for_confirmation: bool
    notes: Optional[str]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    created_at: datetime
    participants: list[GroupParticipantResponse]

    model_config = {"from_attributes": True}


class GroupBookingListResponse(BaseModel):
    group_bookings: list[GroupBookingResponse]
    total: int
    page: int
    page_size: int


class GroupLeaveResponse(BaseModel):
    message: str
    group_booking_id: int
    status: str
