"""
Tests for payment initialization, verification and the webhook.
"""

import hashlib
import hmac
import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from agripool.models.booking import Booking
from agripool.models.group_booking import GroupParticipant
from conftest import FARMER_IDS, OWNER_ID, PRICE_PER_DAY

WEBHOOK_SECRET = "sk_test_secret"


def signed(payload: dict) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode()
    signature = hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()
    return body, {"x-paystack-signature": signature, "Content-Type": "application/json"}


async def send_webhook(client: AsyncClient, event: str, reference: str, **data):
    body, headers = signed({"event": event, "data": {"reference": reference, **data}})
    return await client.post("/api/v1/payments/webhook", content=body, headers=headers)


async def pending_booking(client: AsyncClient, headers: dict, equipment_id: int, day) -> int:
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "equipment_id": equipment_id,
            "start_date": day(0).isoformat(),
            "end_date": day(2).isoformat(),
        },
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"]


async def start_payment(client: AsyncClient, headers: dict, booking_id: int):
    return await client.post(
        f"/api/v1/payments/bookings/{booking_id}/initialize",
        json={"email": "farmer@example.com"},
        headers=headers,
    )


@pytest.mark.asyncio
async def test_initialize_booking_payment(client: AsyncClient, farmer_headers, equipment, day, gateway):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)

    response = await start_payment(client, farmer_headers, booking_id)
    assert response.status_code == 200
    data = response.json()
    assert data["amount"] == 2 * PRICE_PER_DAY
    assert data["reference"].startswith("BOOKING-")
    assert data["authorization_url"].endswith(data["reference"])
    assert gateway.initialized == {data["reference"]: 2 * PRICE_PER_DAY}


@pytest.mark.asyncio
async def test_initialize_rules(
    client: AsyncClient, farmer_headers, owner_headers, equipment, day
):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)

    # Only the renter pays
    assert (await start_payment(client, owner_headers, booking_id)).status_code == 403
    assert (await start_payment(client, farmer_headers, 999)).status_code == 404

    bad_email = await client.post(
        f"/api/v1/payments/bookings/{booking_id}/initialize",
        json={"email": "not-an-email"},
        headers=farmer_headers,
    )
    assert bad_email.status_code == 422

    await client.patch(f"/api/v1/bookings/{booking_id}/cancel", json={}, headers=farmer_headers)
    cancelled = await start_payment(client, farmer_headers, booking_id)
    assert cancelled.status_code == 409
    assert cancelled.json()["detail"]["code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_verify_applies_payment_once(
    client: AsyncClient, farmer_headers, equipment, day, notifications
):
    """Repeated verification reports applied=false and notifies only once."""
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    reference = (await start_payment(client, farmer_headers, booking_id)).json()["reference"]

    first = await client.get(f"/api/v1/payments/verify/{reference}")
    assert first.status_code == 200
    assert first.json() == {
        "reference": reference,
        "target": "booking",
        "target_id": booking_id,
        "applied": True,
        "payment_status": "PAID",
        "ready_for_confirmation": None,
    }

    second = await client.get(f"/api/v1/payments/verify/{reference}")
    assert second.json()["applied"] is False
    assert second.json()["payment_status"] == "PAID"
    assert notifications.events(OWNER_ID).count("BOOKING_PAID") == 1

    # Paying does not confirm the booking
    booking = await client.get(f"/api/v1/bookings/{booking_id}", headers=farmer_headers)
    assert booking.json()["payment_status"] == "PAID"
    assert booking.json()["status"] == "PENDING"

    # And a paid booking cannot be paid again
    again = await start_payment(client, farmer_headers, booking_id)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "already_paid"


@pytest.mark.asyncio
async def test_verify_failed_payment(client: AsyncClient, farmer_headers, equipment, day, gateway):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    reference = (await start_payment(client, farmer_headers, booking_id)).json()["reference"]
    gateway.outcomes[reference] = False

    response = await client.get(f"/api/v1/payments/verify/{reference}")
    assert response.status_code == 200
    assert response.json()["applied"] is False
    assert response.json()["payment_status"] == "PENDING"


@pytest.mark.asyncio
async def test_verify_unknown_reference(client: AsyncClient):
    response = await client.get("/api/v1/payments/verify/BOOKING-0-000000")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_gateway_unavailable_changes_nothing(
    client: AsyncClient, farmer_headers, equipment, day, gateway, session_factory
):
    """A gateway outage is a 503 and the booking keeps no reference."""
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    gateway.unavailable = True

    response = await start_payment(client, farmer_headers, booking_id)
    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "payment_gateway_unavailable"

    async with session_factory() as session:
        booking = (await session.execute(select(Booking).where(Booking.id == booking_id))).scalar_one()
        assert booking.payment_reference is None
        assert booking.payment_status == "PENDING"


@pytest.mark.asyncio
async def test_webhook_applies_booking_payment(
    client: AsyncClient, farmer_headers, equipment, day, notifications
):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    reference = (await start_payment(client, farmer_headers, booking_id)).json()["reference"]

    response = await send_webhook(client, "charge.success", reference, amount=2 * PRICE_PER_DAY)
    assert response.status_code == 200
    assert response.json() == {"status": "success"}

    # Paystack retries deliveries; the second one is a no-op
    retry = await send_webhook(client, "charge.success", reference, amount=2 * PRICE_PER_DAY)
    assert retry.status_code == 200
    assert notifications.events(OWNER_ID).count("BOOKING_PAID") == 1

    booking = await client.get(f"/api/v1/bookings/{booking_id}", headers=farmer_headers)
    assert booking.json()["payment_status"] == "PAID"


@pytest.mark.asyncio
async def test_webhook_underpayment_is_still_recorded(
    client: AsyncClient, farmer_headers, equipment, day, session_factory
):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    reference = (await start_payment(client, farmer_headers, booking_id)).json()["reference"]

    await send_webhook(client, "charge.success", reference, amount=100)

    async with session_factory() as session:
        booking = (await session.execute(select(Booking).where(Booking.id == booking_id))).scalar_one()
        assert booking.payment_status == "PAID"
        assert booking.amount_paid == 100


@pytest.mark.asyncio
async def test_webhook_failed_charge(client: AsyncClient, farmer_headers, equipment, day):
    booking_id = await pending_booking(client, farmer_headers, equipment.id, day)
    reference = (await start_payment(client, farmer_headers, booking_id)).json()["reference"]

    response = await send_webhook(client, "charge.failed", reference)
    assert response.status_code == 200

    booking = await client.get(f"/api/v1/bookings/{booking_id}", headers=farmer_headers)
    assert booking.json()["payment_status"] == "PENDING"


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client: AsyncClient):
    body = json.dumps({"event": "charge.success", "data": {"reference": "X"}}).encode()

    unsigned = await client.post("/api/v1/payments/webhook", content=body)
    assert unsigned.status_code == 401

    forged = await client.post(
        "/api/v1/payments/webhook",
        content=body,
        headers={"x-paystack-signature": "0" * 128},
    )
    assert forged.status_code == 401


@pytest.mark.asyncio
async def test_webhook_acknowledges_unknown_events(client: AsyncClient):
    """Unknown references and event types are acknowledged."""
    unknown_reference = await send_webhook(client, "charge.success", "NOPE-1", amount=100)
    assert unknown_reference.status_code == 200

    other_event = await send_webhook(client, "transfer.success", "NOPE-2")
    assert other_event.status_code == 200


@pytest.mark.asyncio
async def test_webhook_malformed_payload(client: AsyncClient):
    body, headers = signed({"data": {"reference": "X"}})
    response = await client.post("/api/v1/payments/webhook", content=body, headers=headers)
    assert response.status_code == 400

    body, headers = signed({"event": "charge.success", "data": {}})
    response = await client.post("/api/v1/payments/webhook", content=body, headers=headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_group_share_payment_via_webhook(
    client: AsyncClient, farmer_headers, headers_for, equipment, day, notifications, session_factory
):
    """Participants pay their current share; the initiator is told."""
    created = await client.post(
        "/api/v1/group-bookings/",
        json={
            "equipment_id": equipment.id,
            "start_date": day(0).isoformat(),
            "end_date": day(2).isoformat(),
            "min_participants": 2,
            "max_participants": 2,
        },
        headers=farmer_headers,
    )
    group_id = created.json()["id"]
    payer = headers_for(FARMER_IDS[1])
    await client.post(f"/api/v1/group-bookings/{group_id}/join", headers=payer)
    await client.post(f"/api/v1/group-bookings/{group_id}/join", headers=headers_for(FARMER_IDS[2]))

    # Strangers have no share to pay
    stranger = await client.post(
        f"/api/v1/payments/group-bookings/{group_id}/initialize",
        json={"email": "x@example.com"},
        headers=headers_for(FARMER_IDS[4]),
    )
    assert stranger.status_code == 404

    init = await client.post(
        f"/api/v1/payments/group-bookings/{group_id}/initialize",
        json={"email": "payer@example.com"},
        headers=payer,
    )
    assert init.status_code == 200
    assert init.json()["amount"] == PRICE_PER_DAY
    reference = init.json()["reference"]
    assert reference.startswith("GROUP-")

    response = await send_webhook(client, "charge.success", reference, amount=PRICE_PER_DAY)
    assert response.status_code == 200
    assert "GROUP_PARTICIPANT_PAID" in notifications.events(FARMER_IDS[0])

    async with session_factory() as session:
        participant = (
            await session.execute(
                select(GroupParticipant).where(GroupParticipant.payment_reference == reference)
            )
        ).scalar_one()
        assert participant.payment_status == "PAID"
        assert participant.amount_paid == PRICE_PER_DAY

    # One of two paid: not ready yet
    verified = await client.get(f"/api/v1/payments/verify/{reference}")
    assert verified.json()["applied"] is False
    assert verified.json()["ready_for_confirmation"] is False
