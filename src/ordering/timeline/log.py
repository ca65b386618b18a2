"""Order Event Log — append-only audit trail per order.

Entries are only ever added. There is no update or delete path;
corrections are appended as NOTE events.
"""

import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.order.order import Order
from ordering.timeline.event import OrderEvent, OrderEventKind

logger = structlog.get_logger(__name__)

CRITICAL_EVENT_KINDS = (OrderEventKind.PAYMENT_FAILED,)
CRITICAL_WINDOW = timedelta(hours=24)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _parse_kind(kind) -> OrderEventKind:
    if isinstance(kind, OrderEventKind):
        return kind
    try:
        return OrderEventKind(str(kind).strip().upper())
    except ValueError:
        raise ValidationError({"kind": [f"Unknown order event kind: {kind}"]}) from None


def record_event(order_id, kind, message: str, actor_id=None, metadata: Mapping | None = None) -> OrderEvent:
    """Append an event for an order already known to exist.

    Used from inside command handlers, so the write joins the active Unit
    of Work and is rolled back with it.
    """
    kind = _parse_kind(kind)
    repo = current_domain.repository_for(OrderEvent)
    existing = repo._dao.query.filter(order_id=str(order_id)).all().total

    event = OrderEvent(
        order_id=str(order_id),
        kind=kind.value,
        message=message,
        event_metadata=json.dumps(dict(metadata), default=str) if metadata else None,
        actor_id=actor_id,
        sequence=existing + 1,
        created_at=datetime.now(UTC),
    )
    repo.add(event)
    logger.debug("Order event recorded", order_id=str(order_id), kind=kind.value, sequence=event.sequence)
    return event


def create_event(order_id, kind, message: str, actor_id=None, metadata: Mapping | None = None) -> OrderEvent:
    """Append an event, refusing unknown orders with ``ObjectNotFoundError``."""
    if not message or not message.strip():
        raise ValidationError({"message": ["Event message is required"]})

    ensure_order_exists(order_id)
    return record_event(order_id, kind, message.strip(), actor_id=actor_id, metadata=metadata)


def get_order_events(order_id) -> list[OrderEvent]:
    """Events of one order, oldest first."""
    repo = current_domain.repository_for(OrderEvent)
    events = repo._dao.query.filter(order_id=str(order_id)).order_by("sequence").all().items
    return sorted(events, key=lambda event: (event.sequence, _as_utc(event.created_at)))


def get_critical_events(limit: int = 50) -> list[OrderEvent]:
    """Critical events from the last 24 hours, newest first."""
    if limit < 1:
        raise ValidationError({"limit": ["Limit must be at least 1"]})

    since = datetime.now(UTC) - CRITICAL_WINDOW
    repo = current_domain.repository_for(OrderEvent)
    events = (
        repo._dao.query.filter(
            kind__in=[kind.value for kind in CRITICAL_EVENT_KINDS],
            created_at__gte=since,
        )
        .order_by("-created_at")
        .limit(limit)
        .all()
        .items
    )
    return sorted(events, key=lambda event: (_as_utc(event.created_at), event.sequence), reverse=True)[:limit]


def get_event_analytics(order_id=None, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Count events in total and per kind, optionally for one order or a time range."""
    criteria = {}
    if order_id is not None:
        criteria["order_id"] = str(order_id)
    if start is not None:
        criteria["created_at__gte"] = start
    if end is not None:
        criteria["created_at__lte"] = end

    query = current_domain.repository_for(OrderEvent)._dao.query
    if criteria:
        query = query.filter(**criteria)

    events_by_kind = {}
    for kind in OrderEventKind:
        count = query.filter(kind=kind.value).all().total
        if count:
            events_by_kind[kind.value] = count

    return {"total_events": query.all().total, "events_by_kind": events_by_kind}


def ensure_order_exists(order_id) -> None:
    try:
        current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        logger.info("Order not found", order_id=str(order_id))
        raise
