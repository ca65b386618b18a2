"""Tests for OrderEvent metadata parsing."""

import json
from datetime import UTC, datetime

import pytest
from ordering.timeline.event import OrderEvent, OrderEventKind
from protean.exceptions import ValidationError


def _event(event_metadata=None, kind=OrderEventKind.NOTE.value):
    return OrderEvent(
        order_id="order-1",
        kind=kind,
        message="Called the customer",
        event_metadata=event_metadata,
        created_at=datetime.now(UTC),
    )


def test_metadata_round_trips():
    event = _event(json.dumps({"previous_status": "PAID", "new_status": "FULFILLING"}))
    assert event.parsed_metadata() == {"previous_status": "PAID", "new_status": "FULFILLING"}


def test_missing_metadata_reads_as_empty():
    assert _event().parsed_metadata() == {}


def test_malformed_metadata_reads_as_empty():
    assert _event("{not json").parsed_metadata() == {}


def test_non_object_metadata_is_wrapped():
    assert _event("[1, 2]").parsed_metadata() == {"value": [1, 2]}


def test_kind_must_be_known():
    with pytest.raises(ValidationError):
        _event(kind="PARTY")


def test_sequence_defaults_to_first():
    assert _event().sequence == 1
