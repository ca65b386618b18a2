"""Order aggregate (CQRS) — a customer purchase with immutable line items.

Orders are plain CQRS aggregates: the row is the state. Status only moves
through the transition service in ``ordering.order.transitions``, which
claims the status with a conditional update before anything else is
written. Money is held in integer minor units.

    total_cents == subtotal_cents - discount_cents + tax_cents + shipping_cents

with ``tax_cents`` left out of the sum when prices already include tax.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    HasMany,
    Identifier,
    Integer,
    String,
    ValueObject,
)

from ordering.discount.discount_code import AppliedDiscount
from ordering.domain import ordering
from ordering.order.status import OrderStatus, is_terminal

# Timestamp stamped on the order the first time it enters a status
_STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.FULFILLING: "fulfillment_started_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@ordering.value_object(part_of="Order")
class ShippingAddress:
    """Where the order ships, captured at checkout and never edited."""

    full_name = String(max_length=255)
    line1 = String(required=True, max_length=255)
    line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    region = String(max_length=100)
    postal_code = String(max_length=20)
    country = String(required=True, max_length=2)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order")
class OrderItem:
    """A purchased line: product, size and price as they were at checkout."""

    product_id = Identifier(required=True)
    size_variant_id = Identifier()
    size = String(max_length=50)
    sku = String(max_length=50)
    name_snapshot = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price_cents = Integer(required=True, min_value=0)
    line_total_cents = Integer(required=True, min_value=0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@ordering.aggregate
class Order:
    user_id = Identifier()  # Nullable for guest checkout
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    items = HasMany(OrderItem)
    shipping_address = ValueObject(ShippingAddress)

    currency = String(max_length=3, default="USD")
    subtotal_cents = Integer(default=0, min_value=0)
    discount_cents = Integer(default=0, min_value=0)
    tax_cents = Integer(default=0, min_value=0)
    shipping_cents = Integer(default=0, min_value=0)
    total_cents = Integer(default=0, min_value=0)
    prices_include_tax = Boolean(default=False)

    # Discount snapshot, independent of later edits to the code
    discount_code_id = Identifier()
    discount_code_code = String(max_length=50)
    discount_code_value_cents = Integer()
    discount_code_percent = Integer()
    discount_usage_counted = Boolean(default=False)

    checkout_idempotency_key = String(max_length=100)
    stock_restored_at = DateTime()

    created_at = DateTime()
    updated_at = DateTime()
    paid_at = DateTime()
    fulfillment_started_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()

    @invariant.post
    def total_must_match_components(self):
        tax = 0 if self.prices_include_tax else (self.tax_cents or 0)
        expected = (
            (self.subtotal_cents or 0) - (self.discount_cents or 0) + tax + (self.shipping_cents or 0)
        )
        if self.total_cents != expected:
            raise ValidationError(
                {"total_cents": [f"Total {self.total_cents} does not match order components ({expected})"]}
            )

    @invariant.post
    def discount_cannot_exceed_subtotal(self):
        if (self.discount_cents or 0) > (self.subtotal_cents or 0):
            raise ValidationError({"discount_cents": ["Discount cannot exceed the order subtotal"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        items_data,
        shipping_address,
        tax_cents,
        shipping_cents,
        prices_include_tax,
        currency="USD",
        user_id=None,
        discount: AppliedDiscount | None = None,
        idempotency_key=None,
    ):
        """Create a PENDING order from checkout data.

        Args:
            items_data: List of dicts with product_id, size_variant_id, size,
                        sku, name_snapshot, quantity, unit_price_cents.
            shipping_address: Dict matching ``ShippingAddress``.
            discount: The validated discount to snapshot onto the order.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        now = datetime.now(UTC)
        items = [
            OrderItem(
                product_id=item["product_id"],
                size_variant_id=item.get("size_variant_id"),
                size=item.get("size"),
                sku=item.get("sku"),
                name_snapshot=item["name_snapshot"],
                quantity=item["quantity"],
                unit_price_cents=item["unit_price_cents"],
                line_total_cents=item["unit_price_cents"] * item["quantity"],
            )
            for item in items_data
        ]
        subtotal = sum(item.line_total_cents for item in items)
        discount_cents = discount.amount_cents if discount else 0
        total = subtotal - discount_cents + (0 if prices_include_tax else tax_cents) + shipping_cents

        return cls(
            user_id=user_id,
            status=OrderStatus.PENDING.value,
            items=items,
            shipping_address=ShippingAddress(**shipping_address),
            currency=currency.upper(),
            subtotal_cents=subtotal,
            discount_cents=discount_cents,
            tax_cents=tax_cents,
            shipping_cents=shipping_cents,
            total_cents=total,
            prices_include_tax=prices_include_tax,
            discount_code_id=discount.code_id if discount else None,
            discount_code_code=discount.code if discount else None,
            discount_code_value_cents=discount.value_cents if discount else None,
            discount_code_percent=discount.percent if discount else None,
            checkout_idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )

    # -------------------------------------------------------------------
    # Status bookkeeping
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def mark_status(self, target: OrderStatus, at: datetime | None = None):
        """Record that the order is now in ``target``.

        Legality is decided by the transition service before this is called;
        only the terminal-state rule is re-checked here.
        """
        if is_terminal(self.status) and target.value != self.status:
            raise ValidationError({"status": [f"Order is {self.status} and cannot change status"]})

        at = at or datetime.now(UTC)
        self.status = target.value
        stamp = _STATUS_TIMESTAMPS.get(target)
        if stamp and getattr(self, stamp) is None:
            setattr(self, stamp, at)
        self.updated_at = at
