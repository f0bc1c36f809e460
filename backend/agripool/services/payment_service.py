"""
Payment initialization and application of verified payments.

Gateway calls are network I/O and never run inside a database transaction:
we read what we need, end the transaction, call the gateway, then open a
short transaction to record the outcome. A gateway failure therefore leaves
every booking and participant exactly as it was.

Applying a payment is idempotent per reference:

  UPDATE ... SET payment_status = 'PAID'
  WHERE payment_reference = :reference AND payment_status = 'PENDING'

The first delivery flips the row and notifies; any retry of the same webhook
matches zero rows and is reported as a duplicate with no side effects.
"""

import secrets
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.core.config import get_settings
from agripool.core.errors import AlreadyPaid, Forbidden, InvalidStateTransition, NotFound
from agripool.core.logging import get_logger
from agripool.core.metrics import record_payment_event
from agripool.db.base import utcnow
from agripool.domain.actors import Actor
from agripool.domain.lifecycle import GROUP_JOINABLE_STATUSES, BookingStatus, GroupBookingStatus, PaymentStatus
from agripool.models.booking import Booking
from agripool.models.group_booking import GroupBooking, GroupParticipant
from agripool.services.booking_service import get_equipment
from agripool.services.group_booking_service import load_group
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.payment import PaymentGateway
from agripool.services.interfaces.reservation_lock import ReservationLock, group_key
from agripool.services.notification_service import Outbox, dispatch_notifications

logger = get_logger(__name__)
settings = get_settings()


@dataclass
class PaymentApplication:
    reference: str
    target: str  # booking, participant
    target_id: int
    applied: bool
    payment_status: str
    ready_for_confirmation: Optional[bool] = None


def generate_reference(prefix: str) -> str:
    """e.g. BOOKING-1718000000000-042917"""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(1_000_000):06d}"


async def initialize_booking_payment(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    email: str,
    gateway: PaymentGateway,
) -> dict:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found", booking_id=booking_id)
    if booking.farmer_id != actor.user_id and not actor.is_admin:
        raise Forbidden("You can only pay for your own bookings")
    if booking.payment_status == PaymentStatus.PAID.value:
        raise AlreadyPaid("Booking is already paid")
    if booking.status in (BookingStatus.CANCELLED.value, BookingStatus.COMPLETED.value):
        raise InvalidStateTransition(
            "Cannot pay for a cancelled or completed booking",
            current_status=booking.status,
        )

    amount = booking.total_price
    reference = generate_reference("BOOKING")
    await db.rollback()

    init = await gateway.initialize(
        amount=amount,
        reference=reference,
        email=email,
        metadata={"booking_id": booking_id, "type": "booking"},
        callback_url=f"{settings.FRONTEND_URL}/bookings/payment/verify?reference={reference}",
    )

    stored = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.payment_status == PaymentStatus.PENDING.value)
        .values(payment_reference=init.reference)
        .execution_options(synchronize_session=False)
    )
    if stored.rowcount == 0:
        await db.rollback()
        raise AlreadyPaid("Booking is already paid")
    await db.commit()

    logger.info("payment_initialized", target="booking", target_id=booking_id, reference=init.reference, amount=amount)
    return {
        "authorization_url": init.authorization_url,
        "access_code": init.access_code,
        "reference": init.reference,
        "amount": amount,
    }


async def initialize_group_payment(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    email: str,
    gateway: PaymentGateway,
) -> dict:
    """Start payment of what the actor still owes on their share of a group booking."""
    group = await load_group(db, group_booking_id)
    participant = next((p for p in group.participants if p.farmer_id == actor.user_id), None)
    if participant is None:
        raise NotFound("You are not a participant of this group booking")
    if participant.payment_status == PaymentStatus.PAID.value:
        raise AlreadyPaid("Your share is already paid")
    if group.status not in GROUP_JOINABLE_STATUSES:
        raise InvalidStateTransition(
            "This group booking is no longer accepting payments",
            current_status=group.status,
        )

    participant_id = participant.id
    amount = participant.balance_due
    reference = generate_reference("GROUP")
    await db.rollback()

    init = await gateway.initialize(
        amount=amount,
        reference=reference,
        email=email,
        metadata={
            "group_booking_id": group_booking_id,
            "participant_id": participant_id,
            "type": "group_booking",
        },
        callback_url=f"{settings.FRONTEND_URL}/group-bookings/payment/verify?reference={reference}",
    )

    stored = await db.execute(
        update(GroupParticipant)
        .where(
            GroupParticipant.id == participant_id,
            GroupParticipant.payment_status == PaymentStatus.PENDING.value,
        )
        .values(payment_reference=init.reference)
        .execution_options(synchronize_session=False)
    )
    if stored.rowcount == 0:
        # Paid in the meantime, or left the group while we were at the gateway.
        await db.rollback()
        raise AlreadyPaid("Your share is already paid")
    await db.commit()

    logger.info(
        "payment_initialized",
        target="participant",
        target_id=participant_id,
        group_booking_id=group_booking_id,
        reference=init.reference,
        amount=amount,
    )
    return {
        "authorization_url": init.authorization_url,
        "access_code": init.access_code,
        "reference": init.reference,
        "amount": amount,
    }


async def verify_payment(
    db: AsyncSession,
    reference: str,
    gateway: PaymentGateway,
    locks: ReservationLock,
    notifications: NotificationSink,
) -> PaymentApplication:
    """Ask the gateway about `reference` and apply the answer."""
    verification = await gateway.verify(reference)
    application = await on_payment_verified(
        db,
        reference,
        verification.paid,
        locks,
        notifications,
        amount=verification.amount,
    )
    if application is None:
        raise NotFound("Payment reference not found", reference=reference)
    return application


async def on_payment_verified(
    db: AsyncSession,
    reference: str,
    paid: bool,
    locks: ReservationLock,
    notifications: NotificationSink,
    amount: Optional[int] = None,
) -> Optional[PaymentApplication]:
    """
    Apply a gateway verdict to whatever `reference` belongs to.
    Returns None for references we never issued.
    """
    result = await db.execute(select(Booking.id).where(Booking.payment_reference == reference))
    booking_id = result.scalar_one_or_none()
    if booking_id is not None:
        return await _apply_booking_payment(db, booking_id, reference, paid, amount, notifications)

    result = await db.execute(
        select(GroupParticipant.group_booking_id).where(GroupParticipant.payment_reference == reference)
    )
    group_booking_id = result.scalar_one_or_none()
    if group_booking_id is not None:
        outbox = Outbox()
        async with locks.hold(group_key(group_booking_id)):
            application = await _apply_participant_payment(
                db, group_booking_id, reference, paid, amount, outbox
            )
        await dispatch_notifications(notifications, outbox)
        return application

    logger.warning("payment_reference_unknown", reference=reference)
    return None


async def _apply_booking_payment(
    db: AsyncSession,
    booking_id: int,
    reference: str,
    paid: bool,
    amount: Optional[int],
    notifications: NotificationSink,
) -> PaymentApplication:
    booking = (
        await db.execute(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )
    ).scalar_one()

    if not paid:
        record_payment_event("booking", "unpaid")
        logger.info("payment_not_successful", target="booking", target_id=booking_id, reference=reference)
        return PaymentApplication(reference, "booking", booking_id, False, booking.payment_status)

    if amount is not None and amount != booking.total_price:
        logger.warning(
            "payment_amount_mismatch",
            target="booking",
            target_id=booking_id,
            expected=booking.total_price,
            received=amount,
        )

    applied = await db.execute(
        update(Booking)
        .where(
            Booking.payment_reference == reference,
            Booking.payment_status == PaymentStatus.PENDING.value,
        )
        .values(
            payment_status=PaymentStatus.PAID.value,
            amount_paid=amount if amount is not None else booking.total_price,
            paid_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if applied.rowcount == 0:
        await db.rollback()
        record_payment_event("booking", "duplicate")
        logger.info("payment_already_applied", target="booking", target_id=booking_id, reference=reference)
        return PaymentApplication(reference, "booking", booking_id, False, PaymentStatus.PAID.value)

    await db.commit()
    record_payment_event("booking", "applied")
    logger.info("payment_applied", target="booking", target_id=booking_id, reference=reference, amount=amount)

    equipment = await get_equipment(db, booking.equipment_id)
    outbox = Outbox()
    outbox.add(
        equipment.owner_id,
        "BOOKING_PAID",
        booking_id=booking_id,
        equipment_id=equipment.id,
        farmer_id=booking.farmer_id,
        amount=amount,
    )
    await dispatch_notifications(notifications, outbox)
    return PaymentApplication(reference, "booking", booking_id, True, PaymentStatus.PAID.value)


async def _apply_participant_payment(
    db: AsyncSession,
    group_booking_id: int,
    reference: str,
    paid: bool,
    amount: Optional[int],
    outbox: Outbox,
) -> Optional[PaymentApplication]:
    group = await load_group(db, group_booking_id)
    participant = next((p for p in group.participants if p.payment_reference == reference), None)
    if participant is None:
        # Left the group between lookup and lock.
        logger.warning("payment_for_departed_participant", group_booking_id=group_booking_id, reference=reference)
        return None
    participant_id = participant.id

    if not paid:
        record_payment_event("participant", "unpaid")
        logger.info("payment_not_successful", target="participant", target_id=participant_id, reference=reference)
        return PaymentApplication(
            reference, "participant", participant_id, False, participant.payment_status,
            group.ready_for_confirmation,
        )

    balance = participant.balance_due
    received = amount if amount is not None else balance
    if received != balance:
        logger.warning(
            "payment_amount_mismatch",
            target="participant",
            target_id=participant_id,
            expected=balance,
            received=amount,
        )
    if group.status == GroupBookingStatus.CANCELLED.value:
        logger.warning("payment_for_cancelled_group", group_booking_id=group_booking_id, reference=reference)

    was_ready = group.ready_for_confirmation
    applied = await db.execute(
        update(GroupParticipant)
        .where(
            GroupParticipant.payment_reference == reference,
            GroupParticipant.payment_status == PaymentStatus.PENDING.value,
        )
        .values(
            payment_status=PaymentStatus.PAID.value,
            amount_paid=(participant.amount_paid or 0) + received,
            paid_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if applied.rowcount == 0:
        await db.rollback()
        record_payment_event("participant", "duplicate")
        logger.info("payment_already_applied", target="participant", target_id=participant_id, reference=reference)
        group = await load_group(db, group_booking_id)
        return PaymentApplication(
            reference, "participant", participant_id, False, PaymentStatus.PAID.value,
            group.ready_for_confirmation,
        )

    # Confirmation validates its read against this version.
    await db.execute(
        update(GroupBooking)
        .where(GroupBooking.id == group_booking_id)
        .values(version=GroupBooking.version + 1)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    group = await load_group(db, group_booking_id)
    ready = group.ready_for_confirmation
    record_payment_event("participant", "applied")
    logger.info(
        "payment_applied",
        target="participant",
        target_id=participant_id,
        group_booking_id=group_booking_id,
        reference=reference,
        amount=amount,
        ready_for_confirmation=ready,
    )

    if participant.farmer_id != group.initiator_id:
        outbox.add(
            group.initiator_id,
            "GROUP_PARTICIPANT_PAID",
            group_booking_id=group_booking_id,
            farmer_id=participant.farmer_id,
        )
    if ready and not was_ready:
        equipment = await get_equipment(db, group.equipment_id)
        outbox.add(
            equipment.owner_id,
            "GROUP_BOOKING_READY",
            group_booking_id=group_booking_id,
            equipment_id=group.equipment_id,
            status=group.status,
            participant_count=group.participant_count,
        )
    return PaymentApplication(reference, "participant", participant_id, True, PaymentStatus.PAID.value, ready)
