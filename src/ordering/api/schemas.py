"""Pydantic request/response schemas for the Ordering API.

These are external contracts, kept separate from the Protean commands
and result dataclasses they are translated into.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    full_name: str | None = None
    line1: str
    line2: str | None = None
    city: str
    region: str | None = None
    postal_code: str | None = None
    country: str = Field(min_length=2, max_length=2)


class CheckoutLineSchema(BaseModel):
    product_id: str
    size_variant_id: str
    name: str
    sku: str | None = None
    quantity: int = Field(ge=1)
    unit_price_cents: int = Field(ge=0)


class DestinationSchema(BaseModel):
    country: str = Field(min_length=2, max_length=2)
    region: str | None = None
    postal_code: str | None = None


class RateLineSchema(BaseModel):
    product_id: str
    qty: int = Field(ge=1)
    unit_price_cents: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    user_id: str | None = None
    items: list[CheckoutLineSchema] = Field(min_length=1)
    shipping_address: AddressSchema
    currency: str = Field(default="USD", min_length=3, max_length=3)
    discount_code: str | None = None
    idempotency_key: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-001",
                    "items": [
                        {
                            "product_id": "prod-001",
                            "size_variant_id": "size-m",
                            "name": "Logo Tee",
                            "quantity": 2,
                            "unit_price_cents": 4000,
                        }
                    ],
                    "shipping_address": {
                        "line1": "1 Market St",
                        "city": "San Francisco",
                        "region": "CA",
                        "postal_code": "94105",
                        "country": "US",
                    },
                    "currency": "USD",
                }
            ]
        }
    }


class RateQuoteRequest(BaseModel):
    items: list[RateLineSchema]
    destination: DestinationSchema
    currency: str | None = None


class StatusChangeRequest(BaseModel):
    status: str
    reason: str | None = None
    actor_id: str | None = None
    force: bool = False
    skip_validation: bool = False


class BulkStatusChangeRequest(BaseModel):
    order_ids: list[str] = Field(min_length=1, max_length=100)
    status: str
    reason: str | None = None
    actor_id: str | None = None
    force: bool = False
    stop_on_first_error: bool = False


class CancelOrderRequest(BaseModel):
    user_id: str
    reason: str | None = None


class AddNoteRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    actor_id: str | None = None


class StockAdjustmentRequest(BaseModel):
    delta: int
    reason: str = Field(min_length=1)
    actor_id: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class CheckoutResponse(BaseModel):
    order_id: str
    idempotent: bool = False
    totals: dict


class RateQuoteResponse(BaseModel):
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int
    breakdown: dict


class TransitionResponse(BaseModel):
    order_id: str
    from_status: str | None = None
    to_status: str | None = None
    changed: bool
    valid_transitions: list[str] = []


class ValidTransitionsResponse(BaseModel):
    order_id: str
    status: str
    valid_transitions: list[str]


class TransitionPreviewResponse(BaseModel):
    valid: bool
    reason: str | None = None
    message: str | None = None
    requires_confirmation: bool = False
    warnings: list[str] = []
    valid_transitions: list[str] = []


class BulkFailureSchema(BaseModel):
    order_id: str
    reason: str | None = None
    error: str | None = None


class BulkTransitionResponse(BaseModel):
    successful: list[str]
    failed: list[BulkFailureSchema]


class OrderEventSchema(BaseModel):
    id: str
    order_id: str
    kind: str
    message: str
    metadata: dict
    actor_id: str | None = None
    sequence: int
    created_at: datetime


class StockAdjustmentResponse(BaseModel):
    size_variant_id: str
    previous_stock: int
    new_stock: int


class EventAnalyticsResponse(BaseModel):
    total_events: int
    events_by_kind: dict[str, int]
