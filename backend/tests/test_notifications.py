"""
Tests for post-commit notification dispatch and the Redis-backed strategies
running without Redis.
"""

import pytest
from httpx import AsyncClient

from agripool.api.deps import get_notifications
from agripool.infrastructure.redis_lock import RedisReservationLock
from agripool.infrastructure.redis_notifications import RedisNotificationSink
from agripool.main import app
from agripool.schemas.booking import BookingCreate
from agripool.services import booking_service
from agripool.services.interfaces.notification import LogNotificationSink, NotificationSink
from agripool.services.notification_service import Outbox, dispatch_notifications
from conftest import OWNER_ID, RecordingNotificationSink


class BrokenSink(NotificationSink):
    async def notify(self, user_id, event, payload):
        raise RuntimeError("smtp down")


def test_outbox_deduplicates_recipients():
    outbox = Outbox()
    outbox.add_many([1, 2, 1, 3], "GROUP_BOOKING_CONFIRMED", group_booking_id=7)
    assert [n.user_id for n in outbox] == [1, 2, 3]
    assert all(n.payload == {"group_booking_id": 7} for n in outbox)


@pytest.mark.asyncio
async def test_dispatch_delivers_and_empties_outbox():
    sink = RecordingNotificationSink()
    outbox = Outbox()
    outbox.add(1, "BOOKING_CREATED", booking_id=1)
    outbox.add(2, "BOOKING_CONFIRMED", booking_id=1)

    assert await dispatch_notifications(sink, outbox) == 2
    assert sink.events() == ["BOOKING_CREATED", "BOOKING_CONFIRMED"]
    assert len(outbox) == 0


@pytest.mark.asyncio
async def test_dispatch_swallows_sink_failures():
    outbox = Outbox()
    outbox.add(1, "BOOKING_CREATED")
    assert await dispatch_notifications(BrokenSink(), outbox) == 0


@pytest.mark.asyncio
async def test_failing_sink_does_not_undo_booking(session_factory, equipment, farmers, day, locks):
    """The booking is committed even when nobody can be told about it."""
    data = BookingCreate(equipment_id=equipment.id, start_date=day(0), end_date=day(2))
    async with session_factory() as session:
        booking = await booking_service.create_booking(session, farmers[0], data, locks, BrokenSink())

    async with session_factory() as session:
        stored = await booking_service.get_booking(session, booking.id, farmers[0])
        assert stored.status == "PENDING"


@pytest.mark.asyncio
async def test_redis_sink_without_redis_is_a_dropped_notification(
    session_factory, equipment, farmers, day, locks
):
    data = BookingCreate(equipment_id=equipment.id, start_date=day(0), end_date=day(2))
    async with session_factory() as session:
        booking = await booking_service.create_booking(
            session, farmers[0], data, locks, RedisNotificationSink()
        )
    assert booking.id is not None


@pytest.mark.asyncio
async def test_redis_lock_degrades_to_local_lock(session_factory, equipment, farmers, day):
    """With Redis disabled the shared lock still serializes in-process."""
    notifications = RecordingNotificationSink()
    data = BookingCreate(equipment_id=equipment.id, start_date=day(0), end_date=day(2))
    async with session_factory() as session:
        await booking_service.create_booking(
            session, farmers[0], data, RedisReservationLock(), notifications
        )
    assert notifications.events(OWNER_ID) == ["BOOKING_CREATED"]


@pytest.mark.asyncio
async def test_log_sink_accepts_notifications():
    await LogNotificationSink().notify(1, "BOOKING_CREATED", {"booking_id": 1})


@pytest.mark.asyncio
async def test_default_sink_serves_booking_lifecycle(
    client: AsyncClient, farmer_headers, owner_headers, equipment, day
):
    """Requests succeed through the configured log sink, not just the recorder."""
    app.dependency_overrides.pop(get_notifications)

    created = await client.post(
        "/api/v1/bookings/",
        json={
            "equipment_id": equipment.id,
            "start_date": day(0).isoformat(),
            "end_date": day(2).isoformat(),
        },
        headers=farmer_headers,
    )
    assert created.status_code == 201

    confirmed = await client.patch(
        f"/api/v1/bookings/{created.json()['id']}/status",
        json={"status": "CONFIRMED"},
        headers=owner_headers,
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "CONFIRMED"
