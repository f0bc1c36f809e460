"""
Group booking coordinator: pooled reservations with a shared cost.

CONCURRENCY STRATEGY: Per-group lock + Optimistic group version
===============================================================

Problem:
  Two farmers join a group with one slot left. Both read
  participant_count = max - 1, both insert a participant.
  Result: an over-filled group, and shares that no longer sum to the total.

Solution:
  Join, leave, confirm, cancel and payment application all run under the
  group's ReservationLock and write through one conditional UPDATE:

    UPDATE group_bookings
    SET participant_count = :new_count, status = :new_status, version = version + 1
    WHERE id = :group_id AND version = :seen_version
      AND participant_count < max_participants          -- join only

  rows_affected == 0 -> someone changed the group since our read -> rollback
  and retry. The unique (group_booking_id, farmer_id) constraint and the
  participant_count CHECK are the final safety nets.

  Because every payment application bumps the version too, confirm's
  "quorum reached and everybody paid" check is validated against the same
  snapshot it commits from: a payment landing mid-check forces a retry.

Expiry is lazy: an OPEN group past its expires_at rejects joins and stops
holding the equipment calendar, without any background sweep.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agripool.core.config import get_settings
from agripool.core.errors import (
    AlreadyJoined,
    AlreadyPaid,
    CapacityExceeded,
    ConcurrentModification,
    Forbidden,
    GroupExpired,
    InvalidStateTransition,
    NotAllPaid,
    NotFound,
    QuorumNotMet,
    ScheduleConflict,
    ValidationError,
)
from agripool.core.logging import get_logger
from agripool.core.metrics import (
    record_booking_attempt,
    record_join_attempt,
    record_retry,
    record_transition,
    reservation_latency,
)
from agripool.db.base import utcnow
from agripool.domain.actors import Actor, Party
from agripool.domain.intervals import total_days, validate_interval
from agripool.domain.lifecycle import (
    GROUP_JOINABLE_STATUSES,
    GROUP_TRANSITIONS,
    GroupBookingStatus,
    PaymentStatus,
)
from agripool.models.equipment import Equipment
from agripool.models.group_booking import GroupBooking, GroupParticipant
from agripool.schemas.group_booking import GroupBookingCreate, GroupJoin
from agripool.services.booking_service import get_equipment
from agripool.services.cache_service import invalidate_availability_cache
from agripool.services.conflict_service import claim_equipment_calendar, find_schedule_conflicts
from agripool.services.interfaces.notification import NotificationSink
from agripool.services.interfaces.reservation_lock import ReservationLock, equipment_key, group_key
from agripool.services.notification_service import Outbox, dispatch_notifications
from agripool.services.share_ledger import recompute_shares

logger = get_logger(__name__)
settings = get_settings()


async def load_group(db: AsyncSession, group_booking_id: int) -> GroupBooking:
    """Fresh read of a group and its participants (joined_at order)."""
    result = await db.execute(
        select(GroupBooking)
        .where(GroupBooking.id == group_booking_id)
        .options(selectinload(GroupBooking.participants))
        .execution_options(populate_existing=True)
    )
    group = result.scalar_one_or_none()
    if not group:
        raise NotFound("Group booking not found", group_booking_id=group_booking_id)
    return group


def find_participant(group: GroupBooking, farmer_id: int) -> Optional[GroupParticipant]:
    for participant in group.participants:
        if participant.farmer_id == farmer_id:
            return participant
    return None


def group_parties(group: GroupBooking, owner_id: int, actor: Actor) -> set:
    parties = set()
    if owner_id == actor.user_id:
        parties.add(Party.OWNER)
    if group.initiator_id == actor.user_id:
        parties.add(Party.INITIATOR)
    if find_participant(group, actor.user_id) is not None:
        parties.add(Party.PARTICIPANT)
    if actor.is_admin:
        parties.add(Party.ADMIN)
    return parties


def _payload(group: GroupBooking, **extra) -> dict:
    return {
        "group_booking_id": group.id,
        "equipment_id": group.equipment_id,
        "status": group.status,
        **extra,
    }


def _members(group: GroupBooking) -> list[int]:
    """Everyone with a stake in the group: participants then the initiator."""
    return [p.farmer_id for p in group.participants] + [group.initiator_id]


def _retry_or_give_up(operation: str, group_booking_id: int, attempt: int, reason: str) -> None:
    record_retry("group_booking")
    logger.info(
        "reservation_retry",
        operation=operation,
        group_booking_id=group_booking_id,
        attempt=attempt,
        reason=reason,
    )
    if attempt == settings.MAX_RETRY_ATTEMPTS:
        raise ConcurrentModification()


def _validate_group_request(data: GroupBookingCreate, now: datetime) -> None:
    if data.min_participants < 2:
        raise ValidationError("Minimum participants must be at least 2", field="min_participants")
    if data.max_participants < data.min_participants:
        raise ValidationError(
            "Maximum participants must be greater than or equal to minimum participants",
            field="max_participants",
        )
    validate_interval(data.start_date, data.end_date, now)
    if data.expires_at is not None:
        if data.expires_at <= now:
            raise ValidationError("Expiry date cannot be in the past", field="expires_at")
        if data.expires_at > data.start_date:
            raise ValidationError("Expiry date must be before the start date", field="expires_at")


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------

async def create_group_booking(
    db: AsyncSession,
    actor: Actor,
    data: GroupBookingCreate,
    locks: ReservationLock,
    notifications: NotificationSink,
    now: Optional[datetime] = None,
) -> GroupBooking:
    """
    Open a group booking. It holds the equipment calendar from creation, so it
    goes through the same conflict check and calendar claim as a confirmation.
    """
    now = now or utcnow()
    _validate_group_request(data, now)
    outbox = Outbox()

    with reservation_latency.labels(operation="create_group_booking").time():
        async with locks.hold(equipment_key(data.equipment_id)):
            group = await _create_locked(db, actor, data, outbox)

    await invalidate_availability_cache(group.equipment_id)
    await dispatch_notifications(notifications, outbox)
    return group


async def _create_locked(
    db: AsyncSession,
    actor: Actor,
    data: GroupBookingCreate,
    outbox: Outbox,
) -> GroupBooking:
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        equipment = await get_equipment(db, data.equipment_id)
        if not equipment.is_available:
            record_booking_attempt("group", "rejected")
            raise ValidationError("Equipment is not available", equipment_id=equipment.id)

        conflicts = await find_schedule_conflicts(db, equipment.id, data.start_date, data.end_date)
        if conflicts:
            record_booking_attempt("group", "conflict")
            logger.warning(
                "group_booking_conflict",
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
                operation="create_group_booking",
                equipment_id=equipment.id,
                attempt=attempt,
                reason="version_conflict",
            )
            await db.rollback()
            if attempt == settings.MAX_RETRY_ATTEMPTS:
                raise ConcurrentModification()
            continue

        days = total_days(data.start_date, data.end_date)
        group = GroupBooking(
            equipment_id=equipment.id,
            initiator_id=actor.user_id,
            start_date=data.start_date,
            end_date=data.end_date,
            total_days=days,
            price_per_day=equipment.price_per_day,
            total_price=equipment.price_per_day * days,
            min_participants=data.min_participants,
            max_participants=data.max_participants,
            participant_count=0,
            is_public=data.is_public,
            expires_at=data.expires_at,
            status=GroupBookingStatus.OPEN.value,
            notes=data.notes,
        )
        db.add(group)
        await db.commit()
        group = await load_group(db, group.id)

        record_booking_attempt("group", "created")
        logger.info(
            "group_booking_created",
            group_booking_id=group.id,
            initiator_id=actor.user_id,
            equipment_id=equipment.id,
            total_price=group.total_price,
            attempt=attempt,
        )
        outbox.add(equipment.owner_id, "GROUP_BOOKING_CREATED", **_payload(group, initiator_id=actor.user_id))
        return group

    raise ConcurrentModification()


# ---------------------------------------------------------------------------
# join / leave
# ---------------------------------------------------------------------------

async def join_group(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    locks: ReservationLock,
    notifications: NotificationSink,
    data: Optional[GroupJoin] = None,
    now: Optional[datetime] = None,
) -> GroupParticipant:
    """Add `actor` to the group and re-split the cost across all participants."""
    outbox = Outbox()
    with reservation_latency.labels(operation="join_group").time():
        async with locks.hold(group_key(group_booking_id)):
            participant = await _join_locked(db, group_booking_id, actor, data, now, outbox)

    await dispatch_notifications(notifications, outbox)
    return participant


async def _join_locked(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    data: Optional[GroupJoin],
    now: Optional[datetime],
    outbox: Outbox,
) -> GroupParticipant:
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        current = now or utcnow()
        group = await load_group(db, group_booking_id)

        if group.status not in GROUP_JOINABLE_STATUSES:
            record_join_attempt("wrong_state")
            raise InvalidStateTransition(
                "This group booking is no longer accepting participants",
                current_status=group.status,
            )
        if group.is_expired(current):
            record_join_attempt("expired")
            raise GroupExpired(expires_at=group.expires_at.isoformat())
        if find_participant(group, actor.user_id) is not None:
            record_join_attempt("already_joined")
            raise AlreadyJoined()
        if group.participant_count >= group.max_participants:
            record_join_attempt("full")
            raise CapacityExceeded(max_participants=group.max_participants)

        seen_version = group.version
        seen_status = group.status
        new_count = group.participant_count + 1
        new_status = (
            GroupBookingStatus.FILLED.value
            if new_count == group.max_participants
            else seen_status
        )

        result = await db.execute(
            update(GroupBooking)
            .where(
                GroupBooking.id == group_booking_id,
                GroupBooking.version == seen_version,
                GroupBooking.participant_count < GroupBooking.max_participants,
            )
            .values(
                participant_count=new_count,
                status=new_status,
                version=GroupBooking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            _retry_or_give_up("join_group", group_booking_id, attempt, "version_conflict")
            continue

        participant = GroupParticipant(
            group_booking_id=group_booking_id,
            farmer_id=actor.user_id,
            share_amount=0,
            payment_status=PaymentStatus.PENDING.value,
            notes=data.notes if data else None,
        )
        db.add(participant)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            record_join_attempt("already_joined")
            raise AlreadyJoined()

        await recompute_shares(db, group_booking_id, group.total_price)
        await db.commit()

        group = await load_group(db, group_booking_id)
        participant = find_participant(group, actor.user_id)

        record_join_attempt("joined")
        if new_status != seen_status:
            record_transition("group", new_status)
        logger.info(
            "group_joined",
            group_booking_id=group_booking_id,
            farmer_id=actor.user_id,
            participant_count=new_count,
            status=new_status,
            share_amount=participant.share_amount,
            attempt=attempt,
        )
        if group.initiator_id != actor.user_id:
            outbox.add(
                group.initiator_id,
                "GROUP_BOOKING_JOINED",
                **_payload(
                    group,
                    farmer_id=actor.user_id,
                    participant_count=group.participant_count,
                    filled=new_status == GroupBookingStatus.FILLED.value,
                ),
            )
        return participant

    raise ConcurrentModification()


async def leave_group(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    locks: ReservationLock,
    notifications: NotificationSink,
) -> GroupBooking:
    """
    Remove `actor` from the group before they paid and before confirmation.
    A FILLED group with a free slot goes back to OPEN.
    """
    outbox = Outbox()
    with reservation_latency.labels(operation="leave_group").time():
        async with locks.hold(group_key(group_booking_id)):
            group = await _leave_locked(db, group_booking_id, actor, outbox)

    await dispatch_notifications(notifications, outbox)
    return group


async def _leave_locked(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    outbox: Outbox,
) -> GroupBooking:
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        group = await load_group(db, group_booking_id)
        participant = find_participant(group, actor.user_id)

        if participant is None:
            raise NotFound("You are not a participant of this group booking")
        if participant.payment_status == PaymentStatus.PAID.value or participant.amount_paid:
            raise AlreadyPaid("Cannot leave after payment. Please contact support for refund.")
        if group.status not in GROUP_JOINABLE_STATUSES:
            raise InvalidStateTransition(
                "Cannot leave a confirmed or active group booking",
                current_status=group.status,
            )

        was_ready = group.ready_for_confirmation
        seen_status = group.status
        new_count = group.participant_count - 1
        new_status = seen_status
        if seen_status == GroupBookingStatus.FILLED.value and new_count < group.max_participants:
            new_status = GroupBookingStatus.OPEN.value

        result = await db.execute(
            update(GroupBooking)
            .where(
                GroupBooking.id == group_booking_id,
                GroupBooking.version == group.version,
            )
            .values(
                participant_count=new_count,
                status=new_status,
                version=GroupBooking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            _retry_or_give_up("leave_group", group_booking_id, attempt, "version_conflict")
            continue

        await db.delete(participant)
        await db.flush()
        await recompute_shares(db, group_booking_id, group.total_price)
        await db.commit()

        group = await load_group(db, group_booking_id)
        reopened = new_status != seen_status
        if reopened:
            record_transition("group", new_status)
        logger.info(
            "group_left",
            group_booking_id=group_booking_id,
            farmer_id=actor.user_id,
            participant_count=new_count,
            reopened=reopened,
        )

        if group.initiator_id != actor.user_id:
            outbox.add(
                group.initiator_id,
                "GROUP_BOOKING_LEFT",
                **_payload(
                    group,
                    farmer_id=actor.user_id,
                    participant_count=group.participant_count,
                    reopened=reopened,
                ),
            )
        if not was_ready and group.ready_for_confirmation:
            equipment = await get_equipment(db, group.equipment_id)
            outbox.add(equipment.owner_id, "GROUP_BOOKING_READY", **_payload(group))
        return group

    raise ConcurrentModification()


# ---------------------------------------------------------------------------
# confirm / cancel / status
# ---------------------------------------------------------------------------

async def _authorize(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
) -> tuple[GroupBooking, int]:
    group = await load_group(db, group_booking_id)
    equipment = await get_equipment(db, group.equipment_id)
    if not group_parties(group, equipment.owner_id, actor):
        raise Forbidden("You do not have permission to update this group booking")
    return group, equipment.owner_id


async def confirm_group(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    locks: ReservationLock,
    notifications: NotificationSink,
    now: Optional[datetime] = None,
) -> GroupBooking:
    """
    Owner confirmation. Quorum and "everybody paid" are evaluated on one read
    that the version check then validates at commit.
    """
    group, owner_id = await _authorize(db, group_booking_id, actor)
    outbox = Outbox()

    with reservation_latency.labels(operation="confirm_group").time():
        async with locks.hold(group_key(group_booking_id)):
            group = await _confirm_locked(db, group_booking_id, owner_id, actor, now, outbox)

    await invalidate_availability_cache(group.equipment_id)
    await dispatch_notifications(notifications, outbox)
    return group


async def _confirm_locked(
    db: AsyncSession,
    group_booking_id: int,
    owner_id: int,
    actor: Actor,
    now: Optional[datetime],
    outbox: Outbox,
) -> GroupBooking:
    for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
        current = now or utcnow()
        group = await load_group(db, group_booking_id)
        GROUP_TRANSITIONS.check(
            group.status,
            GroupBookingStatus.CONFIRMED,
            group_parties(group, owner_id, actor),
        )

        # A lapsed OPEN group already gave up its calendar slot.
        if group.status == GroupBookingStatus.OPEN.value and group.is_expired(current):
            raise GroupExpired(expires_at=group.expires_at.isoformat())

        participants = list(group.participants)
        if len(participants) < group.min_participants:
            raise QuorumNotMet(
                participant_count=len(participants),
                min_participants=group.min_participants,
            )
        unpaid = [p.farmer_id for p in participants if p.payment_status != PaymentStatus.PAID.value]
        if unpaid:
            raise NotAllPaid(unpaid_farmer_ids=unpaid)

        seen_status = group.status
        result = await db.execute(
            update(GroupBooking)
            .where(
                GroupBooking.id == group_booking_id,
                GroupBooking.version == group.version,
                GroupBooking.status == seen_status,
            )
            .values(
                status=GroupBookingStatus.CONFIRMED.value,
                confirmed_at=current,
                version=GroupBooking.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            _retry_or_give_up("confirm_group", group_booking_id, attempt, "version_conflict")
            continue

        await db.commit()
        group = await load_group(db, group_booking_id)

        record_transition("group", GroupBookingStatus.CONFIRMED.value)
        logger.info(
            "group_booking_confirmed",
            group_booking_id=group_booking_id,
            from_status=seen_status,
            participants=len(participants),
            actor_id=actor.user_id,
        )
        outbox.add_many(_members(group), "GROUP_BOOKING_CONFIRMED", **_payload(group))
        return group

    raise ConcurrentModification()


async def cancel_group(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    locks: ReservationLock,
    notifications: NotificationSink,
    reason: Optional[str] = None,
) -> GroupBooking:
    """Initiator or admin cancels from any live state; the owner may cancel a CONFIRMED group."""
    return await _set_status(
        db,
        group_booking_id,
        actor,
        GroupBookingStatus.CANCELLED,
        locks,
        notifications,
        reason=reason,
    )


async def set_group_status(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    new_status: str,
    locks: ReservationLock,
    notifications: NotificationSink,
    reason: Optional[str] = None,
) -> GroupBooking:
    target = GroupBookingStatus(new_status)
    if target == GroupBookingStatus.CONFIRMED:
        return await confirm_group(db, group_booking_id, actor, locks, notifications)
    return await _set_status(db, group_booking_id, actor, target, locks, notifications, reason=reason)


async def _set_status(
    db: AsyncSession,
    group_booking_id: int,
    actor: Actor,
    target: GroupBookingStatus,
    locks: ReservationLock,
    notifications: NotificationSink,
    reason: Optional[str] = None,
) -> GroupBooking:
    group, owner_id = await _authorize(db, group_booking_id, actor)
    outbox = Outbox()

    async with locks.hold(group_key(group_booking_id)):
        for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
            group = await load_group(db, group_booking_id)
            parties = group_parties(group, owner_id, actor)
            GROUP_TRANSITIONS.check(group.status, target, parties)

            now = utcnow()
            seen_status = group.status
            values = {"status": target.value, "version": GroupBooking.version + 1}
            if target == GroupBookingStatus.COMPLETED:
                values["completed_at"] = now
            elif target == GroupBookingStatus.CANCELLED:
                values["cancelled_at"] = now
                values["cancellation_reason"] = reason

            result = await db.execute(
                update(GroupBooking)
                .where(
                    GroupBooking.id == group_booking_id,
                    GroupBooking.version == group.version,
                    GroupBooking.status == seen_status,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                _retry_or_give_up("group_transition", group_booking_id, attempt, "version_conflict")
                continue

            await db.commit()
            group = await load_group(db, group_booking_id)

            record_transition("group", target.value)
            paid = [p.farmer_id for p in group.participants if p.payment_status == PaymentStatus.PAID.value]
            if target == GroupBookingStatus.CANCELLED and paid:
                logger.warning(
                    "group_cancelled_with_payments",
                    group_booking_id=group_booking_id,
                    paid_farmer_ids=paid,
                )
            logger.info(
                "group_booking_status_changed",
                group_booking_id=group_booking_id,
                from_status=seen_status,
                to_status=target.value,
                actor_id=actor.user_id,
            )

            payload = _payload(group, actor_id=actor.user_id)
            if reason:
                payload["reason"] = reason
            recipients = _members(group)
            if Party.OWNER not in parties:
                recipients.append(owner_id)
            outbox.add_many(recipients, f"GROUP_BOOKING_{target.value}", **payload)
            break
        else:
            raise ConcurrentModification()

    await invalidate_availability_cache(group.equipment_id)
    await dispatch_notifications(notifications, outbox)
    return group


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------

async def get_group_booking(db: AsyncSession, group_booking_id: int, actor: Actor) -> GroupBooking:
    group = await load_group(db, group_booking_id)
    if group.is_public:
        return group
    equipment = await get_equipment(db, group.equipment_id)
    if not group_parties(group, equipment.owner_id, actor):
        raise Forbidden("You do not have permission to view this group booking")
    return group


async def list_group_bookings(
    db: AsyncSession,
    actor: Actor,
    status: Optional[str] = None,
    equipment_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[GroupBooking], int]:
    """
    Groups visible to `actor`: ones they started, joined, or that sit on their
    equipment, plus public groups still open for joining. Admins see all.
    """
    query = select(GroupBooking).join(Equipment, Equipment.id == GroupBooking.equipment_id)
    if not actor.is_admin:
        joined = exists().where(
            GroupParticipant.group_booking_id == GroupBooking.id,
            GroupParticipant.farmer_id == actor.user_id,
        )
        query = query.where(
            or_(
                GroupBooking.initiator_id == actor.user_id,
                Equipment.owner_id == actor.user_id,
                joined,
                and_(GroupBooking.is_public.is_(True), GroupBooking.status == GroupBookingStatus.OPEN.value),
            )
        )
    if status:
        query = query.where(GroupBooking.status == status)
    if equipment_id is not None:
        query = query.where(GroupBooking.equipment_id == equipment_id)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar() or 0

    offset = (page - 1) * page_size
    result = await db.execute(
        query.options(selectinload(GroupBooking.participants))
        .order_by(GroupBooking.created_at.desc(), GroupBooking.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def list_available_group_bookings(
    db: AsyncSession,
    equipment_id: int,
    now: Optional[datetime] = None,
) -> list[GroupBooking]:
    """Public groups on one equipment unit that can still be joined."""
    now = now or utcnow()
    result = await db.execute(
        select(GroupBooking)
        .where(
            GroupBooking.equipment_id == equipment_id,
            GroupBooking.is_public.is_(True),
            GroupBooking.status == GroupBookingStatus.OPEN.value,
            or_(GroupBooking.expires_at.is_(None), GroupBooking.expires_at > now),
            GroupBooking.participant_count < GroupBooking.max_participants,
        )
        .options(selectinload(GroupBooking.participants))
        .order_by(GroupBooking.start_date)
    )
    return list(result.scalars().all())
