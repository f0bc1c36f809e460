"""
Payment gateway interface.
The engine only needs to start a payment and ask whether it went through.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class PaymentInitialization:
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


@dataclass(frozen=True)
class PaymentVerification:
    reference: str
    paid: bool
    amount: int  # minor units
    status: str = ""


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations must raise PaymentGateUnavailable on timeouts and transport
    errors rather than guessing an outcome.
    """

    @abstractmethod
    async def initialize(
        self,
        amount: int,
        reference: str,
        email: str,
        metadata: Optional[dict[str, Any]] = None,
        callback_url: Optional[str] = None,
    ) -> PaymentInitialization:
        """
        Start a payment and return where to send the payer.

        Args:
            amount: Amount in minor units
            reference: Unique reference we will later verify by
            email: Payer email
            metadata: Provider-side metadata
            callback_url: Where the provider redirects after payment
        """
        pass

    @abstractmethod
    async def verify(self, reference: str) -> PaymentVerification:
        """
        Ask the provider for the outcome of a payment.

        Args:
            reference: Reference passed to initialize

        Returns:
            PaymentVerification with paid=True only on a settled payment
        """
        pass
