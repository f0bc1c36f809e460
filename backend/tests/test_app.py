"""
Tests for health, metrics and request correlation.
"""

import pytest
from httpx import AsyncClient

from agripool.core.config import get_settings
from agripool.core.logging import add_service_info


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["environment"] == "test"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    """An incoming X-Request-ID is reused; otherwise one is generated."""
    response = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-Response-Time" in response.headers

    generated = await client.get("/")
    assert generated.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_metrics_exposes_booking_counters(client: AsyncClient, farmer_headers, equipment, day):
    await client.post(
        "/api/v1/bookings/",
        json={
            "equipment_id": equipment.id,
            "start_date": day(0).isoformat(),
            "end_date": day(1).isoformat(),
        },
        headers=farmer_headers,
    )
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "booking_attempts_total" in response.text


def test_log_records_carry_service_identity():
    settings = get_settings()
    record = add_service_info(None, "info", {"event": "booking_created"})
    assert record["service"] == settings.APP_NAME
    assert record["version"] == settings.APP_VERSION
    assert record["event"] == "booking_created"
