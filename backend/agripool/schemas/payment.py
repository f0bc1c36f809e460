"""
Pydantic schemas for payment initialization, verification and webhooks.
"""

from typing import Any, Optional

from pydantic import BaseModel, EmailStr

from agripool.schemas.booking import StrictRequest


class PaymentInitializeRequest(StrictRequest):
    email: EmailStr


class PaymentInitializeResponse(BaseModel):
    authorization_url: str
    access_code: Optional[str] = None
    reference: str
    amount: int


class PaymentApplicationResponse(BaseModel):
    reference: str
    target: str  # booking, participant
    target_id: int
    applied: bool
    payment_status: str
    ready_for_confirmation: Optional[bool] = None


class WebhookEvent(BaseModel):
    """Gateway webhook envelope. Extra fields are tolerated: the provider owns this shape."""
    event: str
    data: dict[str, Any]
