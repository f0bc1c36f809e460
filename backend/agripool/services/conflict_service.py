"""
Equipment calendar: conflict lookup and calendar claims.

CONCURRENCY STRATEGY: Per-equipment lock + Optimistic calendar version
=====================================================================

Problem:
  Two renters ask for overlapping dates on the same tractor at the same time.
  Both run the conflict query, both see a free calendar, both insert.
  Result: Double booking.

Solution:
  1. Callers hold the equipment's ReservationLock for the whole
     check-then-write sequence, so competing requests queue up
  2. Read the equipment (and its `version`), run the conflict query
  3. Claim the calendar:
       UPDATE equipment SET version = version + 1
       WHERE id = :equipment_id AND version = :seen_version
  4. rows_affected == 0 means another writer changed the calendar between our
     read and our write (e.g. another process without the shared lock) -> the
     caller rolls back and retries from step 2

  The lock keeps the common case to a single attempt; the version claim is
  what actually guarantees that two reservations holding the calendar can
  never be committed from the same read.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agripool.core.logging import get_logger
from agripool.db.base import utcnow
from agripool.domain.intervals import Interval, ReservedInterval, find_conflicts
from agripool.domain.lifecycle import (
    BOOKING_HOLDING_STATUSES,
    GROUP_HOLDING_STATUSES,
    GroupBookingStatus,
)
from agripool.models.booking import Booking
from agripool.models.equipment import Equipment
from agripool.models.group_booking import GroupBooking

logger = get_logger(__name__)


async def find_schedule_conflicts(
    db: AsyncSession,
    equipment_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
    exclude_group_booking_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[ReservedInterval]:
    """
    Reservations holding the equipment's calendar that overlap [start, end).

    Bookings hold while CONFIRMED or ACTIVE. Group bookings hold while OPEN,
    FILLED, CONFIRMED or ACTIVE, except an OPEN group whose expiry passed.
    """
    now = now or utcnow()

    booking_query = select(Booking.id, Booking.status, Booking.start_date, Booking.end_date).where(
        Booking.equipment_id == equipment_id,
        Booking.status.in_(BOOKING_HOLDING_STATUSES),
        Booking.start_date < end,
        Booking.end_date > start,
    )
    if exclude_booking_id is not None:
        booking_query = booking_query.where(Booking.id != exclude_booking_id)

    group_query = select(
        GroupBooking.id,
        GroupBooking.status,
        GroupBooking.start_date,
        GroupBooking.end_date,
        GroupBooking.expires_at,
    ).where(
        GroupBooking.equipment_id == equipment_id,
        GroupBooking.status.in_(GROUP_HOLDING_STATUSES),
        GroupBooking.start_date < end,
        GroupBooking.end_date > start,
    )
    if exclude_group_booking_id is not None:
        group_query = group_query.where(GroupBooking.id != exclude_group_booking_id)

    held = [
        ReservedInterval(
            start=row.start_date,
            end=row.end_date,
            kind="booking",
            reservation_id=row.id,
            status=row.status,
        )
        for row in (await db.execute(booking_query)).all()
    ]
    for row in (await db.execute(group_query)).all():
        lapsed = (
            row.status == GroupBookingStatus.OPEN.value
            and row.expires_at is not None
            and now > row.expires_at
        )
        if lapsed:
            continue
        held.append(
            ReservedInterval(
                start=row.start_date,
                end=row.end_date,
                kind="group_booking",
                reservation_id=row.id,
                status=row.status,
            )
        )

    return find_conflicts(Interval(start, end), held)


async def has_conflict(
    db: AsyncSession,
    equipment_id: int,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    conflicts = await find_schedule_conflicts(
        db, equipment_id, start, end, exclude_booking_id=exclude_booking_id
    )
    return bool(conflicts)


async def list_reserved_intervals(
    db: AsyncSession,
    equipment_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[ReservedInterval]:
    """Everything currently holding the calendar, optionally within a window."""
    return await find_schedule_conflicts(
        db,
        equipment_id,
        start or datetime.min.replace(tzinfo=timezone.utc),
        end or datetime.max.replace(tzinfo=timezone.utc),
    )


async def claim_equipment_calendar(db: AsyncSession, equipment: Equipment) -> bool:
    """
    Compare-and-swap on the equipment's calendar version.
    Returns False when someone else claimed the calendar since `equipment` was read.
    """
    seen_version = equipment.version
    result = await db.execute(
        update(Equipment)
        .where(
            Equipment.id == equipment.id,
            Equipment.version == seen_version,
        )
        .values(version=Equipment.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info(
            "calendar_claim_lost",
            equipment_id=equipment.id,
            seen_version=seen_version,
        )
        return False
    return True
