"""PaymentRecord aggregate — one attempt to pay for an order.

Lifecycle:
    PAYMENT_PENDING → AUTHORIZED → CAPTURED → REFUNDED
    PAYMENT_PENDING / AUTHORIZED → FAILED | CANCELLED

An order counts as paid once any of its records is CAPTURED.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.domain import ordering


class PaymentStatus(Enum):
    PAYMENT_PENDING = "PAYMENT_PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


_VALID_TRANSITIONS = {
    PaymentStatus.PAYMENT_PENDING: {
        PaymentStatus.AUTHORIZED,
        PaymentStatus.CAPTURED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.AUTHORIZED: {PaymentStatus.CAPTURED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.CAPTURED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.CANCELLED: set(),
}

OPEN_STATUSES = frozenset({PaymentStatus.PAYMENT_PENDING, PaymentStatus.AUTHORIZED})


@ordering.aggregate
class PaymentRecord:
    order_id = Identifier(required=True)
    provider = String(max_length=20, default="STRIPE")
    provider_ref = String(max_length=255)
    amount_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    status = String(choices=PaymentStatus, default=PaymentStatus.PAYMENT_PENDING.value)
    attempt_number = Integer(default=1, min_value=1)
    failure_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, order_id, amount_cents, currency, provider="STRIPE", provider_ref=None, attempt_number=1):
        now = datetime.now(UTC)
        return cls(
            order_id=str(order_id),
            provider=provider,
            provider_ref=provider_ref,
            amount_cents=amount_cents,
            currency=currency,
            status=PaymentStatus.PAYMENT_PENDING.value,
            attempt_number=attempt_number,
            created_at=now,
            updated_at=now,
        )

    def _move_to(self, target: PaymentStatus) -> None:
        current = PaymentStatus(self.status)
        if target not in _VALID_TRANSITIONS[current]:
            raise ValidationError({"status": [f"Cannot move payment from {current.value} to {target.value}"]})
        self.status = target.value
        self.updated_at = datetime.now(UTC)

    def authorize(self):
        self._move_to(PaymentStatus.AUTHORIZED)

    def capture(self):
        self._move_to(PaymentStatus.CAPTURED)

    def fail(self, reason):
        self._move_to(PaymentStatus.FAILED)
        self.failure_reason = reason

    def cancel(self):
        self._move_to(PaymentStatus.CANCELLED)

    def refund(self):
        self._move_to(PaymentStatus.REFUNDED)


# ---------------------------------------------------------------------------
# Queries and bulk updates used by the order status machine
# ---------------------------------------------------------------------------
def payments_for_order(order_id) -> list[PaymentRecord]:
    repo = current_domain.repository_for(PaymentRecord)
    return repo._dao.query.filter(order_id=str(order_id)).all().items


def has_successful_payment(order_id) -> bool:
    repo = current_domain.repository_for(PaymentRecord)
    captured = repo._dao.query.filter(order_id=str(order_id), status=PaymentStatus.CAPTURED.value).all()
    return captured.total > 0


def cancel_open_payments(order_id) -> int:
    """Cancel pending or authorized records. Returns how many changed."""
    repo = current_domain.repository_for(PaymentRecord)
    changed = 0
    for record in payments_for_order(order_id):
        if PaymentStatus(record.status) in OPEN_STATUSES:
            record.cancel()
            repo.add(record)
            changed += 1
    return changed


def refund_captured_payments(order_id) -> int:
    repo = current_domain.repository_for(PaymentRecord)
    changed = 0
    for record in payments_for_order(order_id):
        if record.status == PaymentStatus.CAPTURED.value:
            record.refund()
            repo.add(record)
            changed += 1
    return changed
