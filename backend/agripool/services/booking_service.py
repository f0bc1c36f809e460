"""
Single-party bookings: creation, lifecycle transitions and date edits.

CONCURRENCY STRATEGY
====================

Every write that reads the equipment calendar runs under the equipment's
ReservationLock and finishes with an optimistic calendar claim (see
conflict_service). Status writes are additionally compare-and-swap on the
status we read:

  UPDATE bookings SET status = :new, ...
  WHERE id = :booking_id AND status = :seen_status

so two owners clicking "confirm" and "cancel" at once cannot both win.
On a lost CAS the transaction is rolled back and the whole read-check-write
is retried, up to MAX_RETRY_ATTEMPTS, then ConcurrentModification.

Notifications are collected during the transaction and dispatched after
commit, once the lock is released.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.core.config import get_settings
from agripool.core.errors import (
    ConcurrentModification,
    Forbidden,
    InvalidStateTransition,
    NotFound,
    ScheduleConflict,
    ValidationError,
)
from agripool.core.logging import get_logger
from agripool.core.metrics import (
    record_booking_attempt,
    record_retry,
    record_transition,
    reservation_latency,
)
from agripool.db.base import utcnow
from agripool.domain.actors import Actor, Party
from agripool.domain.intervals import total_days, validate_interval
from agripool.domain.lifecycle import BOOKING_TRANSITIONS, BookingStatus, PaymentStatus
from agripool.models.booking import Booking
from agripool.models.equipment import Equipment
from agripool.schemas.booking import BookingCreate, BookingUpdate
from agripool.services.cache_service import (
    get_cached_availability,
    invalidate_availability_cache,
    set_cached_availability,
)
from agripool.services.conflict_service import (
    claim_equipment_calendar,
    find_schedule_conflicts,
    list_reserved_intervals,
)
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.reservation_lock import ReservationLock, equipment_key
from agripool.services.notification_service import Outbox, dispatch_notifications

logger = get_logger(__name__)
settings = get_settings()


async def get_equipment(db: AsyncSession, equipment_id: int) -> Equipment:
    """Fresh read of the equipment row, including its calendar version."""
    result = await db.execute(
        select(Equipment)
        .where(Equipment.id == equipment_id)
        .execution_options(populate_existing=True)
    )
    equipment = result.scalar_one_or_none()
    if not equipment:
        raise NotFound("Equipment not found", equipment_id=equipment_id)
    return equipment


async def _load_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


def booking_parties(booking: Booking, owner_id: int, actor: Actor) -> set:
    """Capacities in which `actor` relates to `booking`."""
    parties = set()
    if booking.farmer_id == actor.user_id:
        parties.add(Party.RENTER)
    if owner_id == actor.user_id:
        parties.add(Party.OWNER)
    if actor.is_admin:
        parties.add(Party.ADMIN)
    return parties


def _payload(booking: Booking, **extra) -> dict:
    return {
        "booking_id": booking.id,
        "equipment_id": booking.equipment_id,
        "status": booking.status,
        **extra,
    }


async def create_booking(
    db: AsyncSession,
    actor: Actor,
    data: BookingCreate,
    locks: ReservationLock,
    notifications: NotificationSink,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Create a PENDING booking for `actor`.

    The request is rejected with ScheduleConflict if the interval overlaps
    anything currently holding the equipment's calendar.
    """
    now = now or utcnow()
    validate_interval(data.start_date, data.end_date, now)
    outbox = Outbox()

    with reservation_latency.labels(operation="create_booking").time():
        async with locks.hold(equipment_key(data.equipment_id)):
            booking = await _create_booking_locked(db, actor, data, outbox)

    await invalidate_availability_cache(booking.equipment_id)
    await dispatch_notifications(notifications, outbox)
    return booking


async def _create_booking_locked(
    db: AsyncSession,
    actor: Actor,
    data: BookingCreate,
    outbox: Outbox,
) -> Booking:
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        equipment = await get_equipment(db, data.equipment_id)
        if not equipment.is_available:
            record_booking_attempt("booking", "rejected")
            raise ValidationError("Equipment is not available", equipment_id=equipment.id)

        conflicts = await find_schedule_conflicts(db, equipment.id, data.start_date, data.end_date)
        if conflicts:
            record_booking_attempt("booking", "conflict")
            logger.warning(
                "booking_conflict",
                equipment_id=equipment.id,
                start_date=data.start_date.isoformat(),
                end_date=data.end_date.isoformat(),
                conflicts=len(conflicts),
            )
            raise ScheduleConflict(conflicts)

        if not await claim_equipment_calendar(db, equipment):
            record_retry("equipment")
            logger.info(
                "reservation_retry",
                operation="create_booking",
                equipment_id=equipment.id,
                attempt=attempt,
                reason="version_conflict",
            )
            await db.rollback()
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise ConcurrentModification()
            continue

        days = total_days(data.start_date, data.end_date)
        booking = Booking(
            equipment_id=equipment.id,
            farmer_id=actor.user_id,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=days,
            price_per_day=equipment.price_per_day,
            total_price=equipment.price_per_day * days,
            status=BookingStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            notes=data.notes,
        )
        db.add(booking)
        await db.commit()
        await db.refresh(booking)

        record_booking_attempt("booking", "created")
        logger.info(
            "booking_created",
            booking_id=booking.id,
            farmer_id=actor.user_id,
            equipment_id=equipment.id,
            total_price=booking.total_price,
            attempt=attempt,
        )
        outbox.add(equipment.owner_id, "BOOKING_CREATED", **_payload(booking, farmer_id=actor.user_id))
        return booking

    raise ConcurrentModification()


async def set_booking_status(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    new_status: str,
    locks: ReservationLock,
    notifications: NotificationSink,
    reason: Optional[str] = None,
) -> Booking:
    """
    Move a booking along its lifecycle.

    Raises Forbidden if the actor has no relation to the booking,
    InvalidStateTransition if the move is not in the table, and Forbidden if
    the actor's relation does not allow this particular move.
    """
    booking = await _load_booking(db, booking_id)
    equipment = await get_equipment(db, booking.equipment_id)
    owner_id = equipment.owner_id
    equipment_id = equipment.id

    if not booking_parties(booking, owner_id, actor):
        raise Forbidden("You do not have access to this booking")

    outbox = Outbox()
    with reservation_latency.labels(operation="booking_transition").time():
        async with locks.hold(equipment_key(equipment_id)):
            booking = await _transition_locked(db, booking_id, owner_id, actor, new_status, reason, outbox)

    await invalidate_availability_cache(equipment_id)
    await dispatch_notifications(notifications, outbox)
    return booking


async def _transition_locked(
    db: AsyncSession,
    booking_id: int,
    owner_id: int,
    actor: Actor,
    new_status: str,
    reason: Optional[str],
    outbox: Outbox,
) -> Booking:
    target = BookingStatus(new_status)

    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        booking = await _load_booking(db, booking_id)
        parties = booking_parties(booking, owner_id, actor)
        BOOKING_TRANSITIONS.check(booking.status, target, parties)

        seen_status = booking.status
        now = utcnow()
        values = {"status": target.value}

        if target == BookingStatus.CONFIRMED:
            conflicts = await find_schedule_conflicts(
                db,
                booking.equipment_id,
                booking.start_date,
                booking.end_date,
                exclude_booking_id=booking.id,
            )
            if conflicts:
                logger.warning("booking_confirm_conflict", booking_id=booking.id, conflicts=len(conflicts))
                raise ScheduleConflict(conflicts)
            equipment = await get_equipment(db, booking.equipment_id)
            if not await claim_equipment_calendar(db, equipment):
                record_retry("equipment")
                logger.info(
                    "reservation_retry",
                    operation="confirm_booking",
                    booking_id=booking_id,
                    attempt=attempt,
                    reason="version_conflict",
                )
                await db.rollback()
                if attempt == settings.MAX_RETRY_ATTEMPTS:
                    raise ConcurrentModification()
                continue
            values["confirmed_at"] = now
        elif target == BookingStatus.COMPLETED:
            values["completed_at"] = now
        elif target == BookingStatus.CANCELLED:
            values["cancelled_at"] = now
            values["cancellation_reason"] = reason

        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == seen_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            record_retry("booking")
            logger.info(
                "reservation_retry",
                operation="booking_transition",
                booking_id=booking_id,
                attempt=attempt,
                reason="status_changed",
            )
            await db.rollback()
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise ConcurrentModification()
            continue

        await db.commit()
        booking = await _load_booking(db, booking_id)

        record_transition("booking", target.value)
        logger.info(
            "booking_status_changed",
            booking_id=booking.id,
            from_status=seen_status,
            to_status=target.value,
            actor_id=actor.user_id,
        )
        _notify_transition(outbox, booking, owner_id, actor, parties, reason)
        return booking

    raise ConcurrentModification()


def _notify_transition(
    outbox: Outbox,
    booking: Booking,
    owner_id: int,
    actor: Actor,
    parties: set,
    reason: Optional[str],
) -> None:
    """Tell the other side of the booking; completion and admin moves tell both."""
    event = f"BOOKING_{booking.status}"
    payload = _payload(booking, actor_id=actor.user_id)
    if reason:
        payload["reason"] = reason

    if booking.status == BookingStatus.COMPLETED.value or Party.ADMIN in parties:
        recipients = [booking.farmer_id, owner_id]
    elif Party.OWNER in parties:
        recipients = [booking.farmer_id]
    else:
        recipients = [owner_id]
    outbox.add_many(recipients, event, **payload)


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    locks: ReservationLock,
    notifications: NotificationSink,
    reason: Optional[str] = None,
) -> Booking:
    """Cancel a PENDING or CONFIRMED booking. Completed bookings stay completed."""
    return await set_booking_status(
        db,
        booking_id,
        actor,
        BookingStatus.CANCELLED.value,
        locks,
        notifications,
        reason=reason,
    )


async def update_booking(
    db: AsyncSession,
    booking_id: int,
    actor: Actor,
    data: BookingUpdate,
    locks: ReservationLock,
    notifications: NotificationSink,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Edit dates and notes of a pending, unpaid booking.
    New dates are validated and conflict-checked like a fresh request; the
    price is recomputed from the snapshotted daily price.
    """
    now = now or utcnow()
    booking = await _load_booking(db, booking_id)
    equipment = await get_equipment(db, booking.equipment_id)
    owner_id = equipment.owner_id
    equipment_id = equipment.id

    parties = booking_parties(booking, owner_id, actor)
    if not parties:
        raise Forbidden("You do not have access to this booking")
    if not parties & {Party.RENTER, Party.ADMIN}:
        raise Forbidden("Only the renter can edit this booking")

    outbox = Outbox()
    async with locks.hold(equipment_key(equipment_id)):
        booking = await _update_locked(db, booking_id, owner_id, actor, data, now, outbox)

    await invalidate_availability_cache(equipment_id)
    await dispatch_notifications(notifications, outbox)
    return booking


async def _update_locked(
    db: AsyncSession,
    booking_id: int,
    owner_id: int,
    actor: Actor,
    data: BookingUpdate,
    now: datetime,
    outbox: Outbox,
) -> Booking:
    fields = data.model_fields_set

    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        booking = await _load_booking(db, booking_id)
        if (
            booking.status != BookingStatus.PENDING.value
            or booking.payment_status != PaymentStatus.PENDING.value
        ):
            raise InvalidStateTransition(
                "Only pending, unpaid bookings can be edited",
                current_status=booking.status,
                payment_status=booking.payment_status,
            )

        values = {}
        if "notes" in fields:
            values["notes"] = data.notes

        start = data.start_date if data.start_date is not None else booking.start_date
        end = data.end_date if data.end_date is not None else booking.end_date
        dates_changed = start != booking.start_date or end != booking.end_date

        if dates_changed:
            validate_interval(start, end, now)
            conflicts = await find_schedule_conflicts(
                db, booking.equipment_id, start, end, exclude_booking_id=booking.id
            )
            if conflicts:
                raise ScheduleConflict(conflicts)
            equipment = await get_equipment(db, booking.equipment_id)
            if not await claim_equipment_calendar(db, equipment):
                record_retry("equipment")
                logger.info(
                    "reservation_retry",
                    operation="update_booking",
                    booking_id=booking_id,
                    attempt=attempt,
                    reason="version_conflict",
                )
                await db.rollback()
                if attempt == settings.MAX_RETRY_ATTEMPTS:
                    raise ConcurrentModification()
                continue
            days = total_days(start, end)
            values.update(
                start_date=start,
                end_date=end,
                total_days=days,
                total_price=booking.price_per_day * days,
            )

        if not values:
            return booking

        result = await db.execute(
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.payment_status == PaymentStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            record_retry("booking")
            await db.rollback()
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise ConcurrentModification()
            continue

        await db.commit()
        booking = await _load_booking(db, booking_id)
        logger.info(
            "booking_updated",
            booking_id=booking.id,
            actor_id=actor.user_id,
            dates_changed=dates_changed,
        )
        if dates_changed:
            outbox.add(owner_id, "BOOKING_UPDATED", **_payload(
                booking,
                start_date=booking.start_date.isoformat(),
                end_date=booking.end_date.isoformat(),
                total_price=booking.total_price,
            ))
        return booking

    raise ConcurrentModification()


async def get_booking(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    booking = await _load_booking(db, booking_id)
    equipment = await get_equipment(db, booking.equipment_id)
    if not booking_parties(booking, equipment.owner_id, actor):
        raise Forbidden("You do not have access to this booking")
    return booking


async def list_bookings(
    db: AsyncSession,
    actor: Actor,
    status: Optional[str] = None,
    equipment_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Booking], int]:
    """
    Bookings visible to `actor`: their own rentals plus bookings on equipment
    they own. Admins see everything.
    """
    query = select(Booking).join(Equipment, Equipment.id == Booking.equipment_id)
    if not actor.is_admin:
        query = query.where(
            or_(Booking.farmer_id == actor.user_id, Equipment.owner_id == actor.user_id)
        )
    if status:
        query = query.where(Booking.status == status)
    if equipment_id is not None:
        query = query.where(Booking.equipment_id == equipment_id)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar() or 0

    offset = (page - 1) * page_size
    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).offset(offset).limit(page_size)
    )
    return list(result.scalars().all()), total


async def get_equipment_availability(
    db: AsyncSession,
    equipment_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict:
    """Reserved slots of one equipment unit, served from cache when possible."""
    cached = await get_cached_availability(equipment_id, start, end)
    if cached:
        cached["cached"] = True
        return cached

    equipment = await get_equipment(db, equipment_id)
    reserved = await list_reserved_intervals(db, equipment.id, start, end)
    response = {
        "equipment_id": equipment.id,
        "is_available": equipment.is_available and not reserved,
        "reserved": [slot.as_dict() for slot in reserved],
        "cached": False,
    }
    await set_cached_availability(equipment_id, start, end, response)
    return response
