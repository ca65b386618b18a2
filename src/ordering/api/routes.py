"""FastAPI routes for the Ordering domain — checkout, status changes, timeline, stock."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from protean.utils.globals import current_domain

from ordering.api.schemas import (
    AddNoteRequest,
    BulkStatusChangeRequest,
    BulkTransitionResponse,
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    EventAnalyticsResponse,
    OrderEventSchema,
    RateQuoteRequest,
    RateQuoteResponse,
    StatusChangeRequest,
    StockAdjustmentRequest,
    StockAdjustmentResponse,
    TransitionPreviewResponse,
    TransitionResponse,
    ValidTransitionsResponse,
)
from ordering.order.cancellation import cancel_order
from ordering.order.checkout import place_order
from ordering.order.order import Order
from ordering.order.status import get_valid_transitions
from ordering.order.transitions import (
    build_transition_context,
    bulk_transition_orders,
    transition_order_status,
    validate_transition,
)
from ordering.pricing.rates import build_draft_from_cart, calculate_rates
from ordering.stock.adjustment import adjust_stock
from ordering.timeline.event import OrderEventKind
from ordering.timeline.log import create_event, get_critical_events, get_event_analytics, get_order_events


def _reject(status_code: int, reason: str | None, error: str | None, valid_transitions=()) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "reason": reason, "valid_transitions": list(valid_transitions)},
    )


def _event_schema(event) -> OrderEventSchema:
    return OrderEventSchema(
        id=str(event.id),
        order_id=str(event.order_id),
        kind=event.kind,
        message=event.message,
        metadata=event.parsed_metadata(),
        actor_id=str(event.actor_id) if event.actor_id else None,
        sequence=event.sequence,
        created_at=event.created_at,
    )


def _transition_response(result) -> TransitionResponse:
    if not result.success:
        status_code = 404 if result.reason == "not_found" else 400
        raise _reject(status_code, result.reason, result.error, result.valid_transitions)
    return TransitionResponse(
        order_id=result.order_id,
        from_status=result.from_status,
        to_status=result.to_status,
        changed=result.changed,
        valid_transitions=list(result.valid_transitions),
    )


# ---------------------------------------------------------------------------
# Storefront Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("/checkout", status_code=201, response_model=CheckoutResponse)
async def checkout(body: CheckoutRequest) -> CheckoutResponse:
    result = place_order(
        lines=[line.model_dump() for line in body.items],
        shipping_address=body.shipping_address.model_dump(exclude_none=True),
        currency=body.currency,
        user_id=body.user_id,
        discount_code=body.discount_code,
        idempotency_key=body.idempotency_key,
    )
    if not result.success:
        status_code = {"insufficient_stock": 409, "not_found": 404}.get(result.reason, 400)
        raise _reject(status_code, result.reason, result.error)
    return CheckoutResponse(order_id=result.order_id, idempotent=result.idempotent, totals=result.totals)


@order_router.post("/{order_id}/cancel", response_model=TransitionResponse)
async def cancel(order_id: str, body: CancelOrderRequest) -> TransitionResponse:
    return _transition_response(cancel_order(order_id, body.user_id, reason=body.reason))


@order_router.get("/{order_id}/events", response_model=list[OrderEventSchema])
async def order_timeline(order_id: str) -> list[OrderEventSchema]:
    # 404 for unknown orders
    current_domain.repository_for(Order).get(order_id)
    return [_event_schema(event) for event in get_order_events(order_id)]


# ---------------------------------------------------------------------------
# Rates Router
# ---------------------------------------------------------------------------
rates_router = APIRouter(prefix="/rates", tags=["rates"])


@rates_router.post("/quote", response_model=RateQuoteResponse)
async def quote_rates(body: RateQuoteRequest) -> RateQuoteResponse:
    draft = build_draft_from_cart(
        [line.model_dump() for line in body.items],
        body.destination.model_dump(),
        body.currency,
    )
    rates = calculate_rates(draft)
    return RateQuoteResponse(
        subtotal_cents=draft.subtotal_cents,
        tax_cents=rates.tax_cents,
        shipping_cents=rates.shipping_cents,
        total_cents=rates.total_for(draft.subtotal_cents),
        breakdown=rates.to_dict()["breakdown"],
    )


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/orders/{order_id}/transitions", response_model=ValidTransitionsResponse)
async def valid_transitions(order_id: str) -> ValidTransitionsResponse:
    order = current_domain.repository_for(Order).get(order_id)
    return ValidTransitionsResponse(
        order_id=str(order.id),
        status=order.status,
        valid_transitions=[status.value for status in get_valid_transitions(order.status)],
    )


@admin_router.post("/orders/{order_id}/status", response_model=TransitionResponse)
async def change_status(order_id: str, body: StatusChangeRequest) -> TransitionResponse:
    result = transition_order_status(
        order_id,
        body.status,
        actor_id=body.actor_id,
        reason=body.reason,
        force=body.force,
        skip_validation=body.skip_validation,
    )
    return _transition_response(result)


@admin_router.post("/orders/{order_id}/status/preview", response_model=TransitionPreviewResponse)
async def preview_status_change(order_id: str, body: StatusChangeRequest) -> TransitionPreviewResponse:
    """Report whether a status change would be accepted, without applying it."""
    order = current_domain.repository_for(Order).get(order_id)
    validation = validate_transition(
        order.status,
        body.status,
        build_transition_context(order),
        force=body.force,
        skip_validation=body.skip_validation,
    )
    return TransitionPreviewResponse(
        valid=validation.valid,
        reason=validation.reason,
        message=validation.message,
        requires_confirmation=validation.requires_confirmation,
        warnings=list(validation.warnings),
        valid_transitions=[status.value for status in get_valid_transitions(order.status)],
    )


@admin_router.post("/orders/bulk-status", response_model=BulkTransitionResponse)
async def bulk_change_status(body: BulkStatusChangeRequest) -> BulkTransitionResponse:
    result = bulk_transition_orders(
        body.order_ids,
        body.status,
        actor_id=body.actor_id,
        reason=body.reason,
        force=body.force,
        stop_on_first_error=body.stop_on_first_error,
    )
    return BulkTransitionResponse(
        successful=result.successful,
        failed=[{"order_id": f.order_id, "reason": f.reason, "error": f.error} for f in result.failed],
    )


@admin_router.post("/orders/{order_id}/notes", status_code=201, response_model=OrderEventSchema)
async def add_note(order_id: str, body: AddNoteRequest) -> OrderEventSchema:
    event = create_event(order_id, OrderEventKind.NOTE, body.message, actor_id=body.actor_id)
    return _event_schema(event)


@admin_router.post("/size-variants/{size_variant_id}/stock", response_model=StockAdjustmentResponse)
async def adjust_variant_stock(size_variant_id: str, body: StockAdjustmentRequest) -> StockAdjustmentResponse:
    result = adjust_stock(size_variant_id, body.delta, body.reason, actor_id=body.actor_id)
    if not result.success:
        status_code = 404 if result.reason == "not_found" else 400
        raise _reject(status_code, result.reason, result.error)
    return StockAdjustmentResponse(
        size_variant_id=result.variant_id,
        previous_stock=result.previous_stock,
        new_stock=result.new_stock,
    )


@admin_router.get("/events/critical", response_model=list[OrderEventSchema])
async def critical_events(limit: int = Query(default=50, ge=1, le=500)) -> list[OrderEventSchema]:
    return [_event_schema(event) for event in get_critical_events(limit)]


@admin_router.get("/events/analytics", response_model=EventAnalyticsResponse)
async def event_analytics(
    order_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> EventAnalyticsResponse:
    return EventAnalyticsResponse(**get_event_analytics(order_id=order_id, start=start, end=end))
