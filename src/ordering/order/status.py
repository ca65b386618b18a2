"""Order lifecycle states and the legal transition table.

    PENDING → AWAITING_PAYMENT → PAID → FULFILLING → SHIPPED → DELIVERED
    PENDING / AWAITING_PAYMENT / PAID / FULFILLING → CANCELLED
    PAID / FULFILLING / SHIPPED / DELIVERED → REFUNDED

CANCELLED and REFUNDED are terminal. The table is read-only; context
dependent preconditions live in ``ordering.order.guards``.
"""

from enum import Enum
from types import MappingProxyType

from protean.exceptions import ValidationError


class OrderStatus(Enum):
    PENDING = "PENDING"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    FULFILLING = "FULFILLING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


ORDER_TRANSITIONS = MappingProxyType(
    {
        OrderStatus.PENDING: frozenset({OrderStatus.AWAITING_PAYMENT, OrderStatus.CANCELLED}),
        OrderStatus.AWAITING_PAYMENT: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
        OrderStatus.PAID: frozenset({OrderStatus.FULFILLING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
        OrderStatus.FULFILLING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
        OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
        OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
        OrderStatus.CANCELLED: frozenset(),
        OrderStatus.REFUNDED: frozenset(),
    }
)

TERMINAL_STATES = frozenset(status for status, allowed in ORDER_TRANSITIONS.items() if not allowed)

# Statuses a customer may cancel from without admin involvement
CUSTOMER_CANCELLABLE_STATES = frozenset({OrderStatus.PENDING, OrderStatus.AWAITING_PAYMENT})


def parse_status(value) -> OrderStatus:
    """Coerce a status name (any case) or enum member into ``OrderStatus``."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).strip().upper())
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status: {value}"]}) from None


def can_transition(current, target) -> bool:
    current, target = parse_status(current), parse_status(target)
    if current == target:
        return True
    return target in ORDER_TRANSITIONS[current]


def get_valid_transitions(current) -> list[OrderStatus]:
    """Statuses reachable from ``current`` in declaration order."""
    allowed = ORDER_TRANSITIONS[parse_status(current)]
    return [status for status in OrderStatus if status in allowed]


def is_terminal(status) -> bool:
    return parse_status(status) in TERMINAL_STATES


# Position along the fulfilment path; terminal states sit outside it
_PROGRESS = {
    status: rank
    for rank, status in enumerate(
        (
            OrderStatus.PENDING,
            OrderStatus.AWAITING_PAYMENT,
            OrderStatus.PAID,
            OrderStatus.FULFILLING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )
    )
}


def is_backward(current, target) -> bool:
    """True when ``target`` lies earlier on the fulfilment path than ``current``."""
    current, target = parse_status(current), parse_status(target)
    if current not in _PROGRESS or target not in _PROGRESS:
        return False
    return _PROGRESS[target] < _PROGRESS[current]
