"""
Paystack payment gateway adapter.

Amounts are already kobo (minor units), which is what Paystack expects.
Transport failures and timeouts raise PaymentGateUnavailable; we never infer
success from a failed call.
"""

import hashlib
import hmac
from typing import Any, Optional

import httpx

from agripool.core.config import get_settings
from agripool.core.errors import PaymentGateUnavailable
from agripool.core.logging import get_logger
from agripool.core.metrics import payment_gateway_errors
from agripool.services.interfaces.payment import (
    PaymentGateway,
    PaymentInitialization,
    PaymentVerification,
)

logger = get_logger(__name__)
settings = get_settings()


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Paystack signs the raw request body with HMAC-SHA512 of the secret key."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackGateway(PaymentGateway):
    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYMENT_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            payment_gateway_errors.labels(operation=operation).inc()
            logger.error("paystack_request_failed", operation=operation, error=str(e))
            raise PaymentGateUnavailable()

        if response.status_code >= 500:
            payment_gateway_errors.labels(operation=operation).inc()
            logger.error("paystack_server_error", operation=operation, status_code=response.status_code)
            raise PaymentGateUnavailable()

        try:
            body = response.json()
        except ValueError:
            payment_gateway_errors.labels(operation=operation).inc()
            raise PaymentGateUnavailable("Payment provider returned an unreadable response")

        if response.status_code >= 400 or not body.get("status"):
            payment_gateway_errors.labels(operation=operation).inc()
            logger.warning(
                "paystack_request_rejected",
                operation=operation,
                status_code=response.status_code,
                message=body.get("message"),
            )
            raise PaymentGateUnavailable(body.get("message") or "Payment provider rejected the request")

        return body.get("data") or {}

    async def initialize(
        self,
        amount: int,
        reference: str,
        email: str,
        metadata: Optional[dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> PaymentInitialization:
        payload: dict[str, Any] = {"email": email, "amount": amount, "reference": reference}
        if metadata:
            payload["metadata"] = metadata
        if callback_url:
            payload["callback_url"] = callback_url

        data = await self._request("initialize", "POST", "/transaction/initialize", json=payload)
        logger.info("paystack_payment_initialized", reference=reference, amount=amount)
        return PaymentInitialization(
            authorization_url=data["authorization_url"],
            reference=data.get("reference", reference),
            access_code=data.get("access_code"),
        )

    async def verify(self, reference: str) -> PaymentVerification:
        data = await self._request("verify", "GET", f"/transaction/verify/{reference}")
        status = data.get("status", "")
        return PaymentVerification(
            reference=data.get("reference", reference),
            paid=status == "success",
            amount=int(data.get("amount") or 0),
            status=status,
        )
