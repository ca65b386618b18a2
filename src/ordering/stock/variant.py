"""SizeVariant aggregate — a purchasable size of a product and its stock count."""

from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, Integer, String

from ordering.domain import ordering


@ordering.aggregate
class SizeVariant:
    """The unit at which inventory is tracked.

    ``stock`` never goes below zero. After creation it is only moved by the
    conditional updates in ``ordering.stock.ledger``, never by loading the
    aggregate and saving it back.
    """

    product_id = Identifier(required=True)
    label = String(required=True, max_length=50)
    sku = String(max_length=50)
    stock = Integer(default=0, min_value=0)
    created_at = DateTime()

    @classmethod
    def create(cls, product_id, label, stock=0, sku=None):
        return cls(
            product_id=product_id,
            label=label.strip(),
            sku=sku,
            stock=stock,
            created_at=datetime.now(UTC),
        )
