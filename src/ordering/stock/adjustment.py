"""Stock adjustment and restoration — commands and handlers."""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from ordering.domain import ordering
from ordering.errors import OrderingError
from ordering.order.order import Order
from ordering.stock.ledger import RestoreResult, apply_stock_delta, restore_order_stock
from ordering.stock.variant import SizeVariant

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockAdjustmentResult:
    success: bool
    variant_id: str | None = None
    previous_stock: int | None = None
    new_stock: int | None = None
    reason: str | None = None
    error: str | None = None


@ordering.command(part_of="SizeVariant")
class AdjustStock:
    """Manual correction of a size variant's stock by an admin."""

    size_variant_id = Identifier(required=True)
    delta = Integer(required=True)  # Can be negative
    reason = String(required=True, max_length=500)
    actor_id = Identifier()


@ordering.command(part_of="SizeVariant")
class RestoreStock:
    """Put an order's units back on the shelf."""

    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor_id = Identifier()


@ordering.command_handler(part_of=SizeVariant)
class StockHandler:
    @handle(AdjustStock)
    def adjust_stock(self, command):
        movement = apply_stock_delta(command.size_variant_id, command.delta)
        if not movement.applied:
            logger.warning(
                "Stock adjustment refused",
                variant_id=command.size_variant_id,
                delta=command.delta,
                reason=movement.reason,
            )
            return StockAdjustmentResult(
                success=False,
                variant_id=command.size_variant_id,
                previous_stock=movement.previous_stock,
                new_stock=movement.previous_stock,
                reason=movement.reason,
                error=f"Stock cannot go below zero (available {movement.previous_stock})",
            )

        logger.info(
            "Stock adjusted",
            variant_id=command.size_variant_id,
            previous_stock=movement.previous_stock,
            new_stock=movement.new_stock,
            reason=command.reason,
            actor_id=command.actor_id,
        )
        return StockAdjustmentResult(
            success=True,
            variant_id=command.size_variant_id,
            previous_stock=movement.previous_stock,
            new_stock=movement.new_stock,
        )

    @handle(RestoreStock)
    def restore_stock(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        result = restore_order_stock(order, command.reason, actor_id=command.actor_id)
        if not result.success:
            if result.reason == "already_restored":
                return result
            raise OrderingError(result.reason or "side_effect_failed", result.error)
        repo.add(order)
        return result


def adjust_stock(size_variant_id, delta, reason, actor_id=None) -> StockAdjustmentResult:
    """Apply a signed manual adjustment with the same zero floor as checkout."""
    if not isinstance(delta, int) or isinstance(delta, bool) or delta == 0:
        raise ValidationError({"delta": ["Adjustment must be a non-zero whole number"]})
    if not reason or not str(reason).strip():
        raise ValidationError({"reason": ["A reason is required for stock adjustments"]})

    try:
        return current_domain.process(
            AdjustStock(size_variant_id=str(size_variant_id), delta=delta, reason=reason, actor_id=actor_id),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        return StockAdjustmentResult(
            success=False,
            variant_id=str(size_variant_id),
            reason="not_found",
            error=f"Size variant {size_variant_id} not found",
        )


def restore_stock(order_id, reason, actor_id=None) -> RestoreResult:
    """Restore every line of an order outside a status transition.

    Callers are expected to check the order's status first; a second call
    for the same order is refused with ``already_restored``.
    """
    try:
        return current_domain.process(
            RestoreStock(order_id=str(order_id), reason=reason, actor_id=actor_id),
            asynchronous=False,
        )
    except ObjectNotFoundError:
        return RestoreResult(success=False, reason="not_found", error=f"Order {order_id} not found")
    except OrderingError as exc:
        logger.error("Stock restoration rolled back", order_id=str(order_id), reason=exc.reason)
        return RestoreResult(success=False, reason=exc.reason, error=exc.message)
