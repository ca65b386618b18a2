"""Stock Ledger — race-safe movement of size variant stock.

Every change is one conditional update at the storage layer:

    UPDATE size_variant SET stock = stock - :qty WHERE id = :id AND stock >= :qty

and the affected-row count decides whether it happened. Concurrent
decrements therefore serialise in the database: with S units on the shelf
exactly S single-unit requests succeed, whatever the interleaving. No
read-modify-save of the aggregate is ever used for stock.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.stock.variant import SizeVariant
from ordering.timeline.event import OrderEventKind
from ordering.timeline.log import record_event
from ordering.utils.db import conditional_update

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StockMovement:
    applied: bool
    previous_stock: int | None = None
    new_stock: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RestoreResult:
    success: bool
    restored_items: int = 0
    restored_quantity: int = 0
    reason: str | None = None
    error: str | None = None
    lines: tuple[dict, ...] = field(default_factory=tuple)


def current_stock(variant_id) -> int:
    """Read the stock count. Raises ``ObjectNotFoundError`` for unknown ids."""
    return current_domain.repository_for(SizeVariant)._dao.get(variant_id).stock


def _at_least(quantity: int):
    return lambda variant: variant.stock >= quantity


def _moved_by(delta: int):
    return lambda variant: {"stock": variant.stock + delta}


def apply_stock_delta(variant_id, delta: int) -> StockMovement:
    """Move stock by ``delta`` (positive or negative) with a zero floor.

    The floor is part of the update itself. The counts reported back are
    read after the write and are informational only.
    """
    floor = _at_least(-delta) if delta < 0 else None
    if not conditional_update(SizeVariant, variant_id, floor, _moved_by(delta)):
        # Nothing was written; this read also raises for unknown variants
        available = current_stock(variant_id)
        logger.info(
            "Insufficient stock",
            variant_id=str(variant_id),
            available=available,
            requested=-delta,
        )
        return StockMovement(False, available, available, "insufficient_stock")

    new = current_stock(variant_id)
    return StockMovement(True, new - delta, new)


def decrement_size_stock(variant_id, quantity: int) -> bool:
    """Take ``quantity`` units. Returns False when there are not enough."""
    if quantity is None or quantity < 1:
        raise ValidationError({"quantity": ["Quantity to decrement must be at least 1"]})

    movement = apply_stock_delta(variant_id, -quantity)
    if movement.applied:
        logger.info(
            "Stock decremented",
            variant_id=str(variant_id),
            quantity=quantity,
            remaining=movement.new_stock,
        )
    return movement.applied


def restore_size_stock(variant_id, quantity: int) -> bool:
    """Put ``quantity`` units back."""
    if quantity is None or quantity < 1:
        raise ValidationError({"quantity": ["Quantity to restore must be at least 1"]})

    movement = apply_stock_delta(variant_id, quantity)
    if movement.applied:
        logger.info(
            "Stock restored",
            variant_id=str(variant_id),
            quantity=quantity,
            stock=movement.new_stock,
        )
    return movement.applied


def restore_order_stock(order, reason: str, actor_id=None) -> RestoreResult:
    """Return every line of ``order`` to its size variant.

    Stamps ``order.stock_restored_at`` and writes a STOCK_RESTORED event.
    Saving the order is left to the caller so that it joins the caller's
    Unit of Work. On failure, variants already restored are NOT undone
    here: the caller must abort its Unit of Work.
    """
    if order.stock_restored_at is not None:
        return RestoreResult(
            success=False,
            reason="already_restored",
            error=f"Stock for order {order.id} was already restored",
        )

    lines = []
    for item in order.items:
        if not item.size_variant_id:
            continue
        try:
            restored = restore_size_stock(item.size_variant_id, item.quantity)
        except ObjectNotFoundError:
            restored = False
        if not restored:
            logger.error(
                "Stock restoration failed",
                order_id=str(order.id),
                variant_id=str(item.size_variant_id),
            )
            return RestoreResult(
                success=False,
                reason="not_found",
                error=f"Size variant {item.size_variant_id} could not be restored",
            )
        lines.append(
            {
                "size_variant_id": str(item.size_variant_id),
                "sku": item.sku,
                "quantity": item.quantity,
            }
        )

    order.stock_restored_at = datetime.now(UTC)
    quantity = sum(line["quantity"] for line in lines)
    record_event(
        order.id,
        OrderEventKind.STOCK_RESTORED,
        f"Restored {quantity} units across {len(lines)} lines ({reason})",
        actor_id=actor_id,
        metadata={"reason": reason, "lines": lines},
    )
    return RestoreResult(
        success=True,
        restored_items=len(lines),
        restored_quantity=quantity,
        lines=tuple(lines),
    )
