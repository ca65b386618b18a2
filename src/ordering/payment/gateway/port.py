"""Payment gateway port (abstract interface).

The order core only needs one thing from the payment provider: a payment
intent for a known amount. Capture is reported back later through
``record_payment_result``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class IntentResult:
    """Result of creating a payment intent."""

    success: bool
    provider_ref: str | None = None
    client_secret: str | None = None
    failure_reason: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    provider: str = "STRIPE"

    @abstractmethod
    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> IntentResult:
        """Ask the provider to prepare a payment for ``amount_cents``."""
        ...
