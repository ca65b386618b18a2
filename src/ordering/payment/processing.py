"""Payment processing — start a payment and record the provider's answer.

Starting a payment creates an intent at the gateway, stores a
PaymentRecord and moves the order to AWAITING_PAYMENT. The provider's
answer is recorded in its own Unit of Work before the order is moved to
PAID, so a captured payment is never lost because the order could not
transition.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.errors import TransitionAborted
from ordering.order.order import Order
from ordering.order.status import OrderStatus
from ordering.order.transitions import TransitionResult, apply_transition, transition_order_status
from ordering.payment.gateway import get_gateway
from ordering.payment.payment_record import PaymentRecord, PaymentStatus, payments_for_order
from ordering.timeline.event import OrderEventKind
from ordering.timeline.log import record_event

logger = structlog.get_logger(__name__)

_PAYABLE_STATES = frozenset({OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT})
_REPORTABLE_OUTCOMES = frozenset({PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, PaymentStatus.FAILED})


@dataclass(frozen=True)
class PaymentStartResult:
    success: bool
    order_id: str | None = None
    payment_id: str | None = None
    provider_ref: str | None = None
    client_secret: str | None = None
    reason: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PaymentOutcome:
    success: bool
    payment_id: str | None = None
    status: str | None = None
    order_transition: TransitionResult | None = None
    reason: str | None = None
    error: str | None = None


def _payment_metadata(record: PaymentRecord, **extra) -> dict:
    return {
        "payment_id": str(record.id),
        "payment_provider": record.provider,
        "provider_ref": record.provider_ref,
        "payment_amount_cents": record.amount_cents,
        "payment_currency": record.currency,
        **extra,
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@ordering.command(part_of="PaymentRecord")
class StartPayment:
    order_id = Identifier(required=True)
    actor_id = Identifier()


@ordering.command(part_of="PaymentRecord")
class RecordPaymentResult:
    provider_ref = String(required=True, max_length=255)
    outcome = String(required=True, choices=PaymentStatus)
    failure_reason = String(max_length=500)


@ordering.command_handler(part_of=PaymentRecord)
class PaymentHandler:
    @handle(StartPayment)
    def start_payment(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)
        if order.current_status not in _PAYABLE_STATES:
            return PaymentStartResult(
                success=False,
                order_id=str(order.id),
                reason="not_payable",
                error=f"Orders that are {order.status} cannot be paid",
            )
        if (order.total_cents or 0) <= 0:
            return PaymentStartResult(
                success=False,
                order_id=str(order.id),
                reason="non_positive_total",
                error="Order total must be greater than zero",
            )

        gateway = get_gateway()
        attempt = len(payments_for_order(order.id)) + 1
        intent = gateway.create_payment_intent(
            amount_cents=order.total_cents,
            currency=order.currency,
            idempotency_key=f"order-{order.id}-attempt-{attempt}",
            metadata={"order_id": str(order.id)},
        )

        repo = current_domain.repository_for(PaymentRecord)
        record = PaymentRecord.create(
            order_id=order.id,
            amount_cents=order.total_cents,
            currency=order.currency,
            provider=gateway.provider,
            provider_ref=intent.provider_ref,
            attempt_number=attempt,
        )

        if not intent.success:
            record.fail(intent.failure_reason)
            repo.add(record)
            record_event(
                order.id,
                OrderEventKind.PAYMENT_FAILED,
                f"Payment attempt {attempt} failed: {intent.failure_reason}",
                actor_id=command.actor_id,
                metadata=_payment_metadata(record, payment_failure_reason=intent.failure_reason),
            )
            logger.warning("Payment intent failed", order_id=str(order.id), reason=intent.failure_reason)
            return PaymentStartResult(
                success=False,
                order_id=str(order.id),
                payment_id=str(record.id),
                reason="payment_failed",
                error=intent.failure_reason,
            )

        repo.add(record)
        record_event(
            order.id,
            OrderEventKind.PAYMENT_ATTEMPT,
            f"Payment attempt {attempt} started for {order.total_cents} {order.currency}",
            actor_id=command.actor_id,
            metadata=_payment_metadata(record, retry_attempt=attempt),
        )

        if order.current_status == OrderStatus.PENDING:
            moved = apply_transition(
                order.id,
                OrderStatus.AWAITING_PAYMENT,
                actor_id=command.actor_id,
                reason="Payment started",
            )
            if not moved.success:
                raise TransitionAborted(moved.reason, moved.error)

        logger.info("Payment started", order_id=str(order.id), payment_id=str(record.id), attempt=attempt)
        return PaymentStartResult(
            success=True,
            order_id=str(order.id),
            payment_id=str(record.id),
            provider_ref=intent.provider_ref,
            client_secret=intent.client_secret,
        )

    @handle(RecordPaymentResult)
    def record_payment_result(self, command):
        repo = current_domain.repository_for(PaymentRecord)
        results = repo._dao.query.filter(provider_ref=command.provider_ref).all()
        if not results.items:
            raise ObjectNotFoundError(f"Payment {command.provider_ref} not found")
        record = results.first

        outcome = PaymentStatus(command.outcome)
        if outcome not in _REPORTABLE_OUTCOMES:
            raise ValidationError({"outcome": [f"{outcome.value} is not a provider outcome"]})
        if record.status == outcome.value:
            return record

        if outcome == PaymentStatus.CAPTURED:
            record.capture()
            record_event(
                record.order_id,
                OrderEventKind.PAYMENT_SUCCEEDED,
                f"Payment of {record.amount_cents} {record.currency} captured",
                metadata=_payment_metadata(record),
            )
        elif outcome == PaymentStatus.FAILED:
            reason = command.failure_reason or "Payment failed"
            record.fail(reason)
            record_event(
                record.order_id,
                OrderEventKind.PAYMENT_FAILED,
                f"Payment failed: {reason}",
                metadata=_payment_metadata(record, payment_failure_reason=reason),
            )
        else:
            record.authorize()

        repo.add(record)
        logger.info("Payment result recorded", payment_id=str(record.id), status=record.status)
        return record


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def start_payment(order_id, actor_id=None) -> PaymentStartResult:
    try:
        return current_domain.process(
            StartPayment(order_id=str(order_id), actor_id=actor_id),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        return PaymentStartResult(success=False, order_id=str(order_id), reason="not_found", error="Order not found")
    except TransitionAborted as exc:
        logger.error("Payment start aborted", order_id=str(order_id), reason=exc.reason)
        return PaymentStartResult(success=False, order_id=str(order_id), reason=exc.reason, error=exc.message)


def record_payment_result(provider_ref, outcome, failure_reason=None) -> PaymentOutcome:
    """Record what the provider reported and, on capture, mark the order PAID."""
    try:
        outcome = PaymentStatus(str(outcome).strip().upper())
    except ValueError:
        raise ValidationError({"outcome": [f"Unknown payment outcome: {outcome}"]}) from None

    try:
        record = current_domain.process(
            RecordPaymentResult(provider_ref=provider_ref, outcome=outcome.value, failure_reason=failure_reason),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        return PaymentOutcome(success=False, reason="not_found", error=f"Payment {provider_ref} not found")

    transition = None
    if record.status == PaymentStatus.CAPTURED.value:
        transition = transition_order_status(record.order_id, OrderStatus.PAID, reason="Payment captured")

    return PaymentOutcome(
        success=True,
        payment_id=str(record.id),
        status=record.status,
        order_transition=transition,
    )
