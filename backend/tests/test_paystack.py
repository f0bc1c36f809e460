"""
Tests for the Paystack adapter against a mocked HTTP API.
"""

import hashlib
import hmac
import json

import httpx
import pytest
import respx

from agripool.core.errors import PaymentGateUnavailable
from agripool.infrastructure.paystack import PaystackGateway, verify_webhook_signature

BASE_URL = "https://paystack.test"


@pytest.fixture
def paystack() -> PaystackGateway:
    return PaystackGateway(secret_key="sk_test_secret", base_url=BASE_URL, timeout=1.0)


@pytest.mark.asyncio
async def test_initialize(paystack):
    with respx.mock(base_url=BASE_URL) as mock:
        route = mock.post("/transaction/initialize").mock(
            return_value=httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": "https://checkout.paystack.com/abc",
                        "access_code": "abc",
                        "reference": "BOOKING-1-000001",
                    },
                },
            )
        )
        init = await paystack.initialize(
            amount=15000,
            reference="BOOKING-1-000001",
            email="farmer@example.com",
            metadata={"booking_id": 1},
        )

    assert init.authorization_url == "https://checkout.paystack.com/abc"
    assert init.access_code == "abc"
    assert init.reference == "BOOKING-1-000001"

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer sk_test_secret"
    assert json.loads(request.content) == {
        "email": "farmer@example.com",
        "amount": 15000,
        "reference": "BOOKING-1-000001",
        "metadata": {"booking_id": 1},
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("gateway_status,paid", [("success", True), ("abandoned", False), ("failed", False)])
async def test_verify(paystack, gateway_status, paid):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/transaction/verify/REF-9").mock(
            return_value=httpx.Response(
                200,
                json={"status": True, "data": {"status": gateway_status, "reference": "REF-9", "amount": 5000}},
            )
        )
        verification = await paystack.verify("REF-9")

    assert verification.paid is paid
    assert verification.amount == 5000
    assert verification.status == gateway_status


@pytest.mark.asyncio
async def test_timeout_is_unavailable(paystack):
    """A timeout never turns into a guessed outcome."""
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/transaction/verify/REF-1").mock(side_effect=httpx.ConnectTimeout("timed out"))
        with pytest.raises(PaymentGateUnavailable):
            await paystack.verify("REF-1")


@pytest.mark.asyncio
async def test_server_error_is_unavailable(paystack):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/transaction/initialize").mock(return_value=httpx.Response(502, text="Bad Gateway"))
        with pytest.raises(PaymentGateUnavailable):
            await paystack.initialize(amount=100, reference="R", email="a@example.com")


@pytest.mark.asyncio
async def test_rejected_request_carries_provider_message(paystack):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.post("/transaction/initialize").mock(
            return_value=httpx.Response(400, json={"status": False, "message": "Duplicate Transaction Reference"})
        )
        with pytest.raises(PaymentGateUnavailable) as exc:
            await paystack.initialize(amount=100, reference="R", email="a@example.com")

    assert exc.value.detail["message"] == "Duplicate Transaction Reference"


@pytest.mark.asyncio
async def test_unreadable_response_is_unavailable(paystack):
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/transaction/verify/REF-1").mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(PaymentGateUnavailable):
            await paystack.verify("REF-1")


def test_webhook_signature():
    body = b'{"event":"charge.success"}'
    signature = hmac.new(b"sk_test_secret", body, hashlib.sha512).hexdigest()

    assert verify_webhook_signature(body, signature, "sk_test_secret")
    assert not verify_webhook_signature(body + b" ", signature, "sk_test_secret")
    assert not verify_webhook_signature(body, signature, "other_secret")
    assert not verify_webhook_signature(body, None, "sk_test_secret")
    assert not verify_webhook_signature(body, signature, "")
