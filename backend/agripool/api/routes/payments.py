"""
Payment endpoints: initialize, verify, and the gateway webhook.
"""

import pydantic
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.api.deps import get_gateway, get_locks, get_notifications
from agripool.core.config import get_settings
from agripool.core.errors import ValidationError
from agripool.core.logging import get_logger
from agripool.core.security import get_current_actor
from agripool.db.session import get_db
from agripool.domain.actors import Actor
from agripool.infrastructure.paystack import verify_webhook_signature
from agripool.schemas.payment import (
    PaymentApplicationResponse,
    PaymentInitializeRequest,
    PaymentInitializeResponse,
    WebhookEvent,
)
from agripool.services import payment_service
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.payment import PaymentGateway
from agripool.services.interfaces.reservation_lock import ReservationLock

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/bookings/{booking_id}/initialize", response_model=PaymentInitializeResponse)
async def initialize_booking_payment(
    booking_id: int,
    payment_data: PaymentInitializeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    result = await payment_service.initialize_booking_payment(
        db, booking_id, actor, payment_data.email, gateway
    )
    return PaymentInitializeResponse(**result)


@router.post("/group-bookings/{group_booking_id}/initialize", response_model=PaymentInitializeResponse)
async def initialize_group_payment(
    group_booking_id: int,
    payment_data: PaymentInitializeRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Pay your current share of a group booking."""
    result = await payment_service.initialize_group_payment(
        db, group_booking_id, actor, payment_data.email, gateway
    )
    return PaymentInitializeResponse(**result)


@router.get("/verify/{reference}", response_model=PaymentApplicationResponse)
async def verify_payment(
    reference: str,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """
    Called by the payment redirect page. Safe to call repeatedly: the
    payment is applied once, later calls report applied=false.
    """
    application = await payment_service.verify_payment(db, reference, gateway, locks, notifications)
    return PaymentApplicationResponse(**vars(application))


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    locks: ReservationLock = Depends(get_locks),
    notifications: NotificationSink = Depends(get_notifications),
):
    """
    Paystack webhook. Deliveries are at-least-once; unknown references and
    event types are acknowledged so the provider stops retrying.
    """
    body = await request.body()
    signature = request.headers.get("x-paystack-signature")
    if not verify_webhook_signature(body, signature, settings.PAYSTACK_SECRET_KEY):
        logger.warning("webhook_signature_invalid")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = WebhookEvent.model_validate_json(body)
    except pydantic.ValidationError:
        raise ValidationError("Malformed webhook payload")

    reference = event.data.get("reference")
    if not reference:
        raise ValidationError("Webhook payload has no reference")

    if event.event == "charge.success":
        amount = event.data.get("amount")
        await payment_service.on_payment_verified(
            db,
            reference,
            True,
            locks,
            notifications,
            amount=int(amount) if amount is not None else None,
        )
    elif event.event == "charge.failed":
        await payment_service.on_payment_verified(db, reference, False, locks, notifications)
    else:
        logger.info("webhook_event_ignored", webhook_event=event.event, reference=reference)

    return {"status": "success"}
