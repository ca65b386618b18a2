"""Checkout — turn a priced cart into a PENDING order.

Lines arrive with the price snapshot taken by the cart. Stock is
pre-checked, the discount code resolved, tax and shipping calculated, and
the order created. Stock is then decremented line by line with the ledger;
if any line comes up short the whole Unit of Work is rolled back, so no
order exists and no stock has moved.
"""

import json
from collections import defaultdict
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from ordering.discount.usage import find_discount_code
from ordering.domain import ordering
from ordering.errors import CheckoutRejected
from ordering.order.order import Order
from ordering.pricing.rates import Destination, build_draft_from_cart, calculate_rates
from ordering.stock.ledger import decrement_size_stock
from ordering.stock.variant import SizeVariant
from ordering.timeline.event import OrderEventKind
from ordering.timeline.log import record_event

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    success: bool
    order_id: str | None = None
    reason: str | None = None
    error: str | None = None
    idempotent: bool = False
    totals: dict | None = None


def _totals(order: Order) -> dict:
    return {
        "currency": order.currency,
        "subtotal_cents": order.subtotal_cents,
        "discount_cents": order.discount_cents,
        "tax_cents": order.tax_cents,
        "shipping_cents": order.shipping_cents,
        "total_cents": order.total_cents,
        "prices_include_tax": order.prices_include_tax,
    }


def find_order_by_idempotency_key(user_id, key) -> Order | None:
    if not key:
        return None
    repo = current_domain.repository_for(Order)
    criteria = {"checkout_idempotency_key": key}
    if user_id:
        criteria["user_id"] = str(user_id)
    results = repo._dao.query.filter(**criteria).all()
    return results.first if results.items else None


def _parse_lines(raw_lines) -> list[dict]:
    if not raw_lines:
        raise ValidationError({"items": ["Cart is empty"]})

    lines = []
    for index, line in enumerate(raw_lines):
        errors = []
        if not line.get("product_id"):
            errors.append("product_id is required")
        if not line.get("size_variant_id"):
            errors.append("size_variant_id is required")
        if not line.get("name"):
            errors.append("name is required")
        quantity = line.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            errors.append("quantity must be a positive integer")
        price = line.get("unit_price_cents")
        if not isinstance(price, int) or isinstance(price, bool) or price < 0:
            errors.append("unit_price_cents must be a non-negative integer")
        if errors:
            raise ValidationError({"items": [f"Line {index}: {message}" for message in errors]})
        lines.append(line)
    return lines


# ---------------------------------------------------------------------------
# Command + Handler
# ---------------------------------------------------------------------------
@ordering.command(part_of="Order")
class PlaceOrder:
    user_id = Identifier()
    items = Text(required=True)  # JSON: list of line dicts
    shipping_address = Text(required=True)  # JSON: address dict
    currency = String(max_length=3, default="USD")
    discount_code = String(max_length=50)
    idempotency_key = String(max_length=100)


@ordering.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        existing = find_order_by_idempotency_key(command.user_id, command.idempotency_key)
        if existing is not None:
            return CheckoutResult(success=True, order_id=str(existing.id), idempotent=True, totals=_totals(existing))

        lines = _parse_lines(json.loads(command.items))
        address = json.loads(command.shipping_address)
        currency = (command.currency or "USD").upper()

        # Stock pre-check, aggregated per variant
        variant_repo = current_domain.repository_for(SizeVariant)
        requested = defaultdict(int)
        variants = {}
        for line in lines:
            variant = variant_repo.get(line["size_variant_id"])
            if str(variant.product_id) != str(line["product_id"]):
                raise ValidationError(
                    {"items": [f"Size variant {variant.id} does not belong to product {line['product_id']}"]}
                )
            variants[str(variant.id)] = variant
            requested[str(variant.id)] += line["quantity"]
        for variant_id, quantity in requested.items():
            if variants[variant_id].stock < quantity:
                raise CheckoutRejected(
                    "insufficient_stock",
                    f"Only {variants[variant_id].stock} left of {variants[variant_id].label}",
                    {"size_variant_id": variant_id},
                )

        subtotal = sum(line["unit_price_cents"] * line["quantity"] for line in lines)

        applied = None
        if command.discount_code:
            code = find_discount_code(command.discount_code)
            if code is None:
                raise CheckoutRejected("not_found", f"Discount code {command.discount_code} not found")
            check = code.check(subtotal)
            if not check.valid:
                raise CheckoutRejected(check.reason, check.message)
            applied = code.apply_to(subtotal)

        destination = Destination(
            country=address.get("country") or "",
            region=address.get("region"),
            postal_code=address.get("postal_code"),
        )
        draft = build_draft_from_cart(lines, destination, currency)
        rates = calculate_rates(draft)

        order = Order.create(
            items_data=[
                {
                    "product_id": line["product_id"],
                    "size_variant_id": line["size_variant_id"],
                    "size": variants[str(line["size_variant_id"])].label,
                    "sku": line.get("sku") or variants[str(line["size_variant_id"])].sku,
                    "name_snapshot": line["name"],
                    "quantity": line["quantity"],
                    "unit_price_cents": line["unit_price_cents"],
                }
                for line in lines
            ],
            shipping_address=address,
            tax_cents=rates.tax_cents,
            shipping_cents=rates.shipping_cents,
            prices_include_tax=rates.breakdown.prices_include_tax,
            currency=currency,
            user_id=command.user_id,
            discount=applied,
            idempotency_key=command.idempotency_key,
        )
        current_domain.repository_for(Order).add(order)

        for item in order.items:
            if not decrement_size_stock(item.size_variant_id, item.quantity):
                raise CheckoutRejected(
                    "insufficient_stock",
                    f"{item.name_snapshot} ({item.size}) sold out during checkout",
                    {"size_variant_id": str(item.size_variant_id)},
                )

        record_event(
            order.id,
            OrderEventKind.ORDER_CREATED,
            f"Order placed with {order.total_quantity} items",
            actor_id=command.user_id,
            metadata={**_totals(order), "rates": rates.to_dict()},
        )
        if applied is not None:
            record_event(
                order.id,
                OrderEventKind.DISCOUNT_APPLIED,
                f"Discount code {applied.code} applied",
                actor_id=command.user_id,
                metadata={
                    "discount_code": applied.code,
                    "discount_value_cents": applied.value_cents,
                    "discount_percent": applied.percent,
                    "total_discount_cents": applied.amount_cents,
                },
            )

        logger.info(
            "Order placed",
            order_id=str(order.id),
            user_id=command.user_id,
            total_cents=order.total_cents,
            currency=order.currency,
        )
        return CheckoutResult(success=True, order_id=str(order.id), totals=_totals(order))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def place_order(
    lines,
    shipping_address,
    currency="USD",
    user_id=None,
    discount_code=None,
    idempotency_key=None,
) -> CheckoutResult:
    """Place an order for priced cart lines.

    Each line is a dict with ``product_id``, ``size_variant_id``, ``name``,
    ``quantity``, ``unit_price_cents`` and optionally ``sku``.
    Malformed input raises ``ValidationError``; stock and discount
    conflicts come back as a failed ``CheckoutResult``.
    """
    try:
        return current_domain.process(
            PlaceOrder(
                user_id=user_id,
                items=json.dumps(list(lines or [])),
                shipping_address=json.dumps(dict(shipping_address or {})),
                currency=currency,
                discount_code=discount_code,
                idempotency_key=idempotency_key,
            ),
            asynchronous=False,
        )
    except CheckoutRejected as exc:
        logger.warning("Checkout rejected", user_id=user_id, reason=exc.reason, error=exc.message)
        return CheckoutResult(success=False, reason=exc.reason, error=exc.message)
    except ObjectNotFoundError as exc:
        logger.info("Checkout referenced a missing size variant", user_id=user_id)
        return CheckoutResult(success=False, reason="not_found", error=str(exc))
