"""Customer cancellation — command and handler.

Customers may only cancel their own orders, and only before payment has
been taken. Anything later goes through an admin transition.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.errors import TransitionAborted
from ordering.order.order import Order
from ordering.order.status import CUSTOMER_CANCELLABLE_STATES, OrderStatus
from ordering.order.transitions import TransitionResult, apply_transition

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    user_id = Identifier(required=True)
    reason = String(max_length=500)


@ordering.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = current_domain.repository_for(Order).get(command.order_id)

        # Other customers' orders are reported as missing
        if str(order.user_id) != str(command.user_id):
            raise ObjectNotFoundError(f"Order {command.order_id} not found")

        if order.current_status not in CUSTOMER_CANCELLABLE_STATES:
            return TransitionResult(
                success=False,
                order_id=str(order.id),
                from_status=order.status,
                to_status=OrderStatus.CANCELLED.value,
                reason="not_cancellable",
                error=f"Orders that are {order.status} can no longer be cancelled",
            )

        return apply_transition(
            order.id,
            OrderStatus.CANCELLED,
            actor_id=command.user_id,
            reason=command.reason or "Cancelled by customer",
        )


def cancel_order(order_id, user_id, reason=None) -> TransitionResult:
    try:
        return current_domain.process(
            CancelOrder(order_id=str(order_id), user_id=str(user_id), reason=reason),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        return TransitionResult(
            success=False,
            order_id=str(order_id),
            to_status=OrderStatus.CANCELLED.value,
            reason="not_found",
            error=f"Order {order_id} not found",
        )
    except TransitionAborted as exc:
        logger.error("Order cancellation aborted", order_id=str(order_id), reason=exc.reason, error=exc.message)
        return TransitionResult(
            success=False,
            order_id=str(order_id),
            to_status=OrderStatus.CANCELLED.value,
            reason=exc.reason,
            error=exc.message,
        )
