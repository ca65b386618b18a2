"""Per-transition guard conditions.

Guards are plain functions registered against a ``(from, to)`` pair. Each
receives a ``TransitionContext`` snapshot and returns a ``GuardFailure``
when the transition must be refused, or ``None`` to let it through.
New preconditions are added by registering another function; the
transition table itself never changes shape.
"""

from collections.abc import Callable
from dataclasses import dataclass

from ordering.order.status import OrderStatus


@dataclass(frozen=True)
class TransitionContext:
    total_cents: int = 0
    has_successful_payment: bool = False
    fulfillment_started: bool = False
    shipped: bool = False


@dataclass(frozen=True)
class GuardFailure:
    reason: str
    message: str


Guard = Callable[[TransitionContext], GuardFailure | None]


class GuardRegistry:
    def __init__(self) -> None:
        self._guards: dict[tuple[OrderStatus, OrderStatus], list[Guard]] = {}

    def register(self, source: OrderStatus, target: OrderStatus) -> Callable[[Guard], Guard]:
        def decorator(guard: Guard) -> Guard:
            self._guards.setdefault((source, target), []).append(guard)
            return guard

        return decorator

    def guards_for(self, source: OrderStatus, target: OrderStatus) -> tuple[Guard, ...]:
        return tuple(self._guards.get((source, target), ()))

    def check(
        self, source: OrderStatus, target: OrderStatus, context: TransitionContext
    ) -> GuardFailure | None:
        """Run guards in registration order and return the first failure."""
        for guard in self.guards_for(source, target):
            failure = guard(context)
            if failure is not None:
                return failure
        return None

    def copy(self) -> "GuardRegistry":
        clone = GuardRegistry()
        clone._guards = {pair: list(guards) for pair, guards in self._guards.items()}
        return clone


transition_guards = GuardRegistry()


@transition_guards.register(OrderStatus.PAID, OrderStatus.FULFILLING)
@transition_guards.register(OrderStatus.AWAITING_PAYMENT, OrderStatus.PAID)
def payment_on_file(context: TransitionContext) -> GuardFailure | None:
    if not context.has_successful_payment:
        return GuardFailure("payment_required", "No successful payment on file for this order")
    return None


@transition_guards.register(OrderStatus.AWAITING_PAYMENT, OrderStatus.PAID)
def total_is_positive(context: TransitionContext) -> GuardFailure | None:
    if context.total_cents <= 0:
        return GuardFailure("non_positive_total", "Order total must be greater than zero")
    return None


@transition_guards.register(OrderStatus.FULFILLING, OrderStatus.SHIPPED)
def fulfillment_started(context: TransitionContext) -> GuardFailure | None:
    if not context.fulfillment_started:
        return GuardFailure("fulfillment_not_started", "Fulfillment has not started for this order")
    return None
