"""Configurable fake payment gateway for development and testing.

No external calls are made. Tests flip it between succeeding and failing
with ``configure()`` and inspect ``calls`` afterwards.
"""

from uuid import uuid4

from ordering.payment.gateway.port import IntentResult, PaymentGateway


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> IntentResult:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount_cents": amount_cents,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "metadata": metadata or {},
            }
        )

        if self.should_succeed:
            ref = f"pi_fake_{uuid4().hex[:16]}"
            return IntentResult(success=True, provider_ref=ref, client_secret=f"{ref}_secret")
        return IntentResult(success=False, failure_reason=self.failure_reason)
