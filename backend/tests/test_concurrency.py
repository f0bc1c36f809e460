"""
Concurrency tests: competing requests each run in their own session, like
separate API requests, and race through asyncio.gather.
"""

import asyncio

import pytest

from agripool.core.errors import CapacityExceeded, ScheduleConflict
from agripool.domain.lifecycle import BookingStatus
from agripool.models.group_booking import GroupBooking
from agripool.schemas.booking import BookingCreate
from agripool.schemas.group_booking import GroupBookingCreate
from agripool.services import booking_service, group_booking_service
from agripool.services.booking_service import get_equipment
from agripool.services.conflict_service import claim_equipment_calendar
from agripool.services.group_booking_service import load_group


async def new_group(session_factory, actor, equipment_id, start, end, max_participants, locks, notifications):
    async with session_factory() as session:
        group = await group_booking_service.create_group_booking(
            session,
            actor,
            GroupBookingCreate(
                equipment_id=equipment_id,
                start_date=start,
                end_date=end,
                min_participants=2,
                max_participants=max_participants,
            ),
            locks,
            notifications,
        )
        return group.id


@pytest.mark.asyncio
async def test_last_slot_goes_to_exactly_one_farmer(
    session_factory, equipment, farmers, day, locks, notifications
):
    """Two farmers race for the last slot: one joins, the other sees a full group."""
    group_id = await new_group(session_factory, farmers[0], equipment.id, day(0), day(2), 2, locks, notifications)
    async with session_factory() as session:
        await group_booking_service.join_group(session, group_id, farmers[1], locks, notifications)

    async def attempt(actor):
        async with session_factory() as session:
            try:
                await group_booking_service.join_group(session, group_id, actor, locks, notifications)
                return "joined"
            except CapacityExceeded:
                return "full"

    results = await asyncio.gather(attempt(farmers[2]), attempt(farmers[3]))
    assert sorted(results) == ["full", "joined"]

    async with session_factory() as session:
        group = await load_group(session, group_id)
        assert group.participant_count == 2
        assert len(group.participants) == 2
        assert group.status == "FILLED"
        assert sum(p.share_amount for p in group.participants) == group.total_price


@pytest.mark.asyncio
async def test_join_stampede_never_overfills(
    session_factory, equipment, farmers, day, locks, notifications
):
    """Five simultaneous joins on a group of three."""
    group_id = await new_group(session_factory, farmers[0], equipment.id, day(0), day(3), 3, locks, notifications)

    async def attempt(actor):
        async with session_factory() as session:
            try:
                participant = await group_booking_service.join_group(
                    session, group_id, actor, locks, notifications
                )
                return participant.farmer_id
            except CapacityExceeded:
                return None

    results = await asyncio.gather(*(attempt(actor) for actor in farmers))
    joined = [farmer_id for farmer_id in results if farmer_id is not None]
    assert len(joined) == 3

    async with session_factory() as session:
        group = await load_group(session, group_id)
        assert group.participant_count == 3
        assert sorted(p.farmer_id for p in group.participants) == sorted(joined)
        assert sum(p.share_amount for p in group.participants) == group.total_price


@pytest.mark.asyncio
async def test_overlapping_group_creations(
    session_factory, equipment, farmers, day, locks, notifications
):
    """Two groups for overlapping dates opened at once: only one holds the slot."""

    async def attempt(actor, start, end):
        try:
            return await new_group(session_factory, actor, equipment.id, start, end, 3, locks, notifications)
        except ScheduleConflict:
            return None

    results = await asyncio.gather(
        attempt(farmers[0], day(0), day(4)),
        attempt(farmers[1], day(2), day(6)),
    )
    assert len([group_id for group_id in results if group_id is not None]) == 1


@pytest.mark.asyncio
async def test_overlapping_confirmations(
    session_factory, equipment, farmers, owner, day, locks, notifications
):
    """The owner confirms two overlapping requests at once: only one wins."""
    booking_ids = []
    for actor, start, end in ((farmers[0], day(0), day(4)), (farmers[1], day(3), day(6))):
        async with session_factory() as session:
            booking = await booking_service.create_booking(
                session,
                actor,
                BookingCreate(equipment_id=equipment.id, start_date=start, end_date=end),
                locks,
                notifications,
            )
            booking_ids.append(booking.id)

    async def confirm(booking_id):
        async with session_factory() as session:
            try:
                await booking_service.set_booking_status(
                    session, booking_id, owner, BookingStatus.CONFIRMED.value, locks, notifications
                )
                return True
            except ScheduleConflict:
                return False

    results = await asyncio.gather(*(confirm(booking_id) for booking_id in booking_ids))
    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_stale_calendar_claim_is_rejected(session_factory, equipment):
    """A claim based on an outdated read loses to the writer that got there first."""
    async with session_factory() as stale, session_factory() as fresh:
        stale_view = await get_equipment(stale, equipment.id)

        fresh_view = await get_equipment(fresh, equipment.id)
        assert await claim_equipment_calendar(fresh, fresh_view) is True
        await fresh.commit()

        assert await claim_equipment_calendar(stale, stale_view) is False
        await stale.rollback()


@pytest.mark.asyncio
async def test_group_version_moves_with_every_membership_change(
    session_factory, equipment, farmers, day, locks, notifications
):
    group_id = await new_group(session_factory, farmers[0], equipment.id, day(0), day(2), 3, locks, notifications)
    async with session_factory() as session:
        before = (await load_group(session, group_id)).version

    async with session_factory() as session:
        await group_booking_service.join_group(session, group_id, farmers[1], locks, notifications)
    async with session_factory() as session:
        await group_booking_service.leave_group(session, group_id, farmers[1], locks, notifications)

    async with session_factory() as session:
        group = await session.get(GroupBooking, group_id)
        assert group.version == before + 2
        assert group.participant_count == 0
