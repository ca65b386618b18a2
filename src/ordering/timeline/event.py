"""OrderEvent aggregate — one immutable entry in an order's audit trail."""

import json
from enum import Enum

import structlog
from protean.fields import DateTime, Identifier, Integer, String, Text

from ordering.domain import ordering

logger = structlog.get_logger(__name__)


class OrderEventKind(Enum):
    ORDER_CREATED = "ORDER_CREATED"
    DISCOUNT_APPLIED = "DISCOUNT_APPLIED"
    PAYMENT_ATTEMPT = "PAYMENT_ATTEMPT"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    ORDER_PAID = "ORDER_PAID"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ORDER_REFUNDED = "ORDER_REFUNDED"
    FULFILLMENT_STARTED = "FULFILLMENT_STARTED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    NOTE = "NOTE"
    STATUS_CHANGED = "STATUS_CHANGED"
    STOCK_RESTORED = "STOCK_RESTORED"


@ordering.aggregate
class OrderEvent:
    order_id = Identifier(required=True)
    kind = String(required=True, choices=OrderEventKind)
    message = String(required=True, max_length=1000)
    event_metadata = Text()  # JSON object, shape depends on kind
    actor_id = Identifier()
    sequence = Integer(default=1, min_value=1)
    created_at = DateTime(required=True)

    def parsed_metadata(self) -> dict:
        """Metadata as a dict. A malformed blob reads as empty."""
        if not self.event_metadata:
            return {}
        try:
            value = json.loads(self.event_metadata)
        except ValueError:
            logger.warning("Unreadable order event metadata", event_id=str(self.id))
            return {}
        return value if isinstance(value, dict) else {"value": value}
