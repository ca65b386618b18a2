"""Order status transitions — validation, side effects and audit.

A transition runs inside one Unit of Work:

1. load the order and validate against the table and registered guards;
   cancelling a paid order and refunding need ``force``
2. claim the status with a conditional update on the observed status
3. run status-specific side effects (stock, discount usage, payments)
4. save the order and append an OrderEvent

Any side effect that fails raises ``TransitionAborted`` and nothing from
steps 2-4 is committed. Rejections that happen before step 2 are returned
as a ``TransitionResult`` carrying the reason and the valid next states.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, Identifier, String
from protean.utils.globals import current_domain

from ordering.discount.usage import decrement_usage, increment_usage
from ordering.domain import ordering
from ordering.errors import TransitionAborted
from ordering.order.guards import GuardRegistry, TransitionContext, transition_guards
from ordering.order.order import Order
from ordering.order.status import (
    TERMINAL_STATES,
    OrderStatus,
    get_valid_transitions,
    is_backward,
    parse_status,
)
from ordering.payment.payment_record import (
    cancel_open_payments,
    has_successful_payment,
    refund_captured_payments,
)
from ordering.stock.ledger import restore_order_stock
from ordering.timeline.event import OrderEventKind
from ordering.timeline.log import record_event
from ordering.utils.db import conditional_update

logger = structlog.get_logger(__name__)

MAX_BULK_ORDERS = 100

_EVENT_KINDS = {
    OrderStatus.PAID: OrderEventKind.ORDER_PAID,
    OrderStatus.FULFILLING: OrderEventKind.FULFILLMENT_STARTED,
    OrderStatus.SHIPPED: OrderEventKind.ORDER_SHIPPED,
    OrderStatus.DELIVERED: OrderEventKind.ORDER_DELIVERED,
    OrderStatus.CANCELLED: OrderEventKind.ORDER_CANCELLED,
    OrderStatus.REFUNDED: OrderEventKind.ORDER_REFUNDED,
}


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TransitionValidation:
    valid: bool
    reason: str | None = None
    message: str | None = None
    noop: bool = False
    requires_confirmation: bool = False
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitionResult:
    success: bool
    order_id: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    changed: bool = False
    reason: str | None = None
    error: str | None = None
    valid_transitions: tuple[str, ...] = ()


@dataclass(frozen=True)
class BulkFailure:
    order_id: str
    reason: str | None
    error: str | None


@dataclass(frozen=True)
class BulkTransitionResult:
    successful: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _override_failure(current: OrderStatus, target: OrderStatus, context: TransitionContext):
    """Limits that still hold when the transition table is skipped."""
    if is_backward(current, target):
        return TransitionValidation(
            valid=False,
            reason="backward_transition",
            message=f"Cannot move order back from {current.value} to {target.value}",
        )
    if target == OrderStatus.CANCELLED and context.shipped:
        return TransitionValidation(
            valid=False,
            reason="already_shipped",
            message="Cannot cancel an order that has already been shipped",
        )
    if target == OrderStatus.REFUNDED and current in (OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT):
        return TransitionValidation(valid=False, reason="not_paid", message="Cannot refund an unpaid order")
    return None


def _confirmation_rules(current: OrderStatus, target: OrderStatus) -> tuple[bool, tuple[str, ...]]:
    requires_confirmation = False
    warnings = []
    if target == OrderStatus.CANCELLED and current in (OrderStatus.PAID, OrderStatus.FULFILLING):
        requires_confirmation = True
        warnings.append("Cancelling a paid order may require refund processing")
    if target == OrderStatus.SHIPPED and current != OrderStatus.FULFILLING:
        warnings.append("Typically orders should be in FULFILLING status before shipping")
    if target == OrderStatus.FULFILLING and current != OrderStatus.PAID:
        warnings.append("Fulfillment typically starts after payment is confirmed")
    if target == OrderStatus.REFUNDED:
        requires_confirmation = True
        warnings.append("Refund processing will need to be handled separately")
    return requires_confirmation, tuple(warnings)


def validate_transition(
    current,
    target,
    context: TransitionContext | None = None,
    force: bool = False,
    guards: GuardRegistry = transition_guards,
    skip_validation: bool = False,
) -> TransitionValidation:
    """Check a transition without touching storage.

    The table is consulted first, then the guards for the pair. A valid
    result may still carry ``requires_confirmation`` (cancelling a paid
    order, any refund) which only ``force`` satisfies; ``force`` also
    waives the guards but never the table.

    ``skip_validation`` is the emergency override. It waives the table and
    the confirmation as well; only the limits in ``_override_failure`` hold.

    Terminal orders never move.
    """
    current, target = parse_status(current), parse_status(target)
    context = context or TransitionContext()
    if current == target:
        return TransitionValidation(valid=True, noop=True)

    if (force or skip_validation) and current in TERMINAL_STATES:
        return TransitionValidation(
            valid=False,
            reason="terminal_state",
            message=f"Order is {current.value}; terminal orders cannot change status",
        )

    if skip_validation:
        failure = _override_failure(current, target, context)
        if failure is not None:
            return failure
    elif target not in get_valid_transitions(current):
        return TransitionValidation(
            valid=False,
            reason="invalid_transition",
            message=f"Cannot transition order from {current.value} to {target.value}",
        )

    if not (force or skip_validation):
        failure = guards.check(current, target, context)
        if failure is not None:
            return TransitionValidation(valid=False, reason=failure.reason, message=failure.message)

    requires_confirmation, warnings = _confirmation_rules(current, target)
    return TransitionValidation(valid=True, requires_confirmation=requires_confirmation, warnings=warnings)


def build_transition_context(order: Order) -> TransitionContext:
    return TransitionContext(
        total_cents=order.total_cents or 0,
        has_successful_payment=has_successful_payment(order.id),
        fulfillment_started=order.fulfillment_started_at is not None,
        shipped=order.shipped_at is not None,
    )


def _valid_names(status) -> tuple[str, ...]:
    return tuple(s.value for s in get_valid_transitions(status))


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------
def _restore_inventory(order: Order, reason: str, actor_id) -> None:
    if order.stock_restored_at is not None:
        logger.info("Stock already restored, skipping", order_id=str(order.id))
        return
    result = restore_order_stock(order, reason, actor_id=actor_id)
    if not result.success:
        raise TransitionAborted("side_effect_failed", f"Stock restoration failed: {result.error}")


def _count_discount_usage(order: Order) -> None:
    if not order.discount_code_id or order.discount_usage_counted:
        return
    try:
        usage = increment_usage(order.discount_code_id)
    except ObjectNotFoundError:
        logger.warning(
            "Discount code no longer exists, usage not counted",
            order_id=str(order.id),
            code_id=str(order.discount_code_id),
        )
        return
    if not usage.success:
        raise TransitionAborted(
            usage.reason or "side_effect_failed",
            f"Discount code {order.discount_code_code} cannot be used again",
        )
    order.discount_usage_counted = True


def _release_discount_usage(order: Order) -> None:
    if not order.discount_code_id or not order.discount_usage_counted:
        return
    try:
        usage = decrement_usage(order.discount_code_id)
    except ObjectNotFoundError:
        logger.warning(
            "Discount code no longer exists, usage not released",
            order_id=str(order.id),
            code_id=str(order.discount_code_id),
        )
        return
    if not usage.success:
        raise TransitionAborted("side_effect_failed", "Discount usage could not be released")
    order.discount_usage_counted = False


def _run_side_effects(order: Order, target: OrderStatus, actor_id) -> None:
    if target == OrderStatus.CANCELLED:
        _restore_inventory(order, "ORDER_CANCELLED", actor_id)
        _release_discount_usage(order)
        cancel_open_payments(order.id)
    elif target == OrderStatus.PAID:
        _count_discount_usage(order)
    elif target == OrderStatus.REFUNDED:
        # Goods that never left the warehouse go back on the shelf
        if order.shipped_at is None:
            _restore_inventory(order, "ORDER_REFUNDED", actor_id)
        refund_captured_payments(order.id)


# ---------------------------------------------------------------------------
# Core transition (runs inside the caller's Unit of Work)
# ---------------------------------------------------------------------------
def _claim_status(order_id, source: OrderStatus, target: OrderStatus) -> bool:
    return conditional_update(
        Order,
        str(order_id),
        lambda order: order.status == source.value,
        lambda order: {"status": target.value},
    )


def apply_transition(
    order_id, target, actor_id=None, reason=None, force=False, skip_validation=False
) -> TransitionResult:
    """Validate and apply a transition in the active Unit of Work.

    Raises ``ObjectNotFoundError`` for unknown orders and
    ``TransitionAborted`` when a side effect fails.
    """
    target = parse_status(target)
    repo = current_domain.repository_for(Order)
    order = repo.get(order_id)
    source = order.current_status

    validation = validate_transition(
        source, target, build_transition_context(order), force=force, skip_validation=skip_validation
    )
    if validation.valid and validation.requires_confirmation and not (force or skip_validation):
        validation = TransitionValidation(
            valid=False,
            reason="requires_confirmation",
            message="This transition requires confirmation due to potential business impact",
        )
    if not validation.valid:
        logger.info(
            "Order status transition rejected",
            order_id=str(order.id),
            from_status=source.value,
            to_status=target.value,
            reason=validation.reason,
        )
        return TransitionResult(
            success=False,
            order_id=str(order.id),
            from_status=source.value,
            to_status=target.value,
            reason=validation.reason,
            error=validation.message,
            valid_transitions=_valid_names(source),
        )

    if validation.noop:
        return TransitionResult(
            success=True,
            order_id=str(order.id),
            from_status=source.value,
            to_status=target.value,
            changed=False,
            valid_transitions=_valid_names(source),
        )

    if not _claim_status(order.id, source, target):
        raise TransitionAborted(
            "concurrent_modification",
            f"Order {order.id} changed status while {target.value} was being applied",
        )

    now = datetime.now(UTC)
    order.mark_status(target, now)
    _run_side_effects(order, target, actor_id)
    repo.add(order)

    message = f"Order status changed from {source.value} to {target.value}"
    if reason:
        message = f"{message}: {reason}"
    record_event(
        order.id,
        _EVENT_KINDS.get(target, OrderEventKind.STATUS_CHANGED),
        message,
        actor_id=actor_id,
        metadata={
            "previous_status": source.value,
            "new_status": target.value,
            "reason": reason,
            "forced": bool(force or skip_validation),
            "warnings": list(validation.warnings),
        },
    )

    logger.info(
        "Order status changed",
        order_id=str(order.id),
        from_status=source.value,
        to_status=target.value,
        forced=bool(force or skip_validation),
        actor_id=actor_id,
    )
    return TransitionResult(
        success=True,
        order_id=str(order.id),
        from_status=source.value,
        to_status=target.value,
        changed=True,
        valid_transitions=_valid_names(target),
    )


# ---------------------------------------------------------------------------
# Command + Handler
# ---------------------------------------------------------------------------
@ordering.command(part_of="Order")
class TransitionOrderStatus:
    order_id = Identifier(required=True)
    target_status = String(required=True, choices=OrderStatus)
    actor_id = Identifier()
    reason = String(max_length=500)
    force = Boolean(default=False)
    skip_validation = Boolean(default=False)


@ordering.command_handler(part_of=Order)
class OrderStatusHandler:
    @handle(TransitionOrderStatus)
    def transition(self, command):
        return apply_transition(
            command.order_id,
            command.target_status,
            actor_id=command.actor_id,
            reason=command.reason,
            force=command.force,
            skip_validation=command.skip_validation,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def transition_order_status(
    order_id, target, actor_id=None, reason=None, force=False, skip_validation=False
) -> TransitionResult:
    """Move one order to ``target`` atomically with its side effects."""
    target = parse_status(target)
    try:
        return current_domain.process(
            TransitionOrderStatus(
                order_id=str(order_id),
                target_status=target.value,
                actor_id=actor_id,
                reason=reason,
                force=force,
                skip_validation=skip_validation,
            ),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        logger.info("Order not found for transition", order_id=str(order_id))
        return TransitionResult(
            success=False,
            order_id=str(order_id),
            to_status=target.value,
            reason="not_found",
            error=f"Order {order_id} not found",
        )
    except TransitionAborted as exc:
        logger.error(
            "Order status transition aborted",
            order_id=str(order_id),
            to_status=target.value,
            reason=exc.reason,
            error=exc.message,
        )
        order = current_domain.repository_for(Order).get(order_id)
        return TransitionResult(
            success=False,
            order_id=str(order_id),
            from_status=order.status,
            to_status=target.value,
            reason=exc.reason,
            error=exc.message,
            valid_transitions=_valid_names(order.status),
        )


def bulk_transition_orders(
    order_ids,
    target,
    actor_id=None,
    reason=None,
    force=False,
    stop_on_first_error=False,
) -> BulkTransitionResult:
    """Apply the same transition to many orders, each in its own Unit of Work."""
    order_ids = list(order_ids or [])
    if not order_ids:
        raise ValidationError({"order_ids": ["At least one order id is required"]})
    # The limit applies to the request as sent, repeats included
    if len(order_ids) > MAX_BULK_ORDERS:
        raise ValidationError({"order_ids": [f"At most {MAX_BULK_ORDERS} orders can be updated at once"]})
    ids = list(dict.fromkeys(str(order_id) for order_id in order_ids))
    target = parse_status(target)

    result = BulkTransitionResult()
    for order_id in ids:
        outcome = transition_order_status(order_id, target, actor_id=actor_id, reason=reason, force=force)
        if outcome.success:
            result.successful.append(order_id)
            continue
        result.failed.append(BulkFailure(order_id=order_id, reason=outcome.reason, error=outcome.error))
        if stop_on_first_error:
            break

    logger.info(
        "Bulk order transition finished",
        to_status=target.value,
        successful=len(result.successful),
        failed=len(result.failed),
    )
    return result
