"""Tests for the order status table — closure, terminal states, lookups."""

import pytest
from ordering.order.status import (
    ORDER_TRANSITIONS,
    TERMINAL_STATES,
    OrderStatus,
    can_transition,
    get_valid_transitions,
    is_terminal,
    parse_status,
)
from protean.exceptions import ValidationError


class TestTransitionTable:
    def test_every_status_has_an_entry(self):
        assert set(ORDER_TRANSITIONS) == set(OrderStatus)

    def test_every_target_is_itself_a_source(self):
        for allowed in ORDER_TRANSITIONS.values():
            for target in allowed:
                assert target in ORDER_TRANSITIONS

    def test_terminal_states(self):
        assert TERMINAL_STATES == {OrderStatus.CANCELLED, OrderStatus.REFUNDED}
        assert ORDER_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()
        assert ORDER_TRANSITIONS[OrderStatus.REFUNDED] == frozenset()

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            ORDER_TRANSITIONS[OrderStatus.PENDING] = frozenset({OrderStatus.SHIPPED})

    @pytest.mark.parametrize(
        "source,targets",
        [
            (OrderStatus.PENDING, {OrderStatus.AWAITING_PAYMENT, OrderStatus.CANCELLED}),
            (OrderStatus.AWAITING_PAYMENT, {OrderStatus.PAID, OrderStatus.CANCELLED}),
            (OrderStatus.PAID, {OrderStatus.FULFILLING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
            (OrderStatus.FULFILLING, {OrderStatus.SHIPPED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
            (OrderStatus.SHIPPED, {OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
            (OrderStatus.DELIVERED, {OrderStatus.REFUNDED}),
        ],
    )
    def test_allowed_targets(self, source, targets):
        assert set(get_valid_transitions(source)) == targets


class TestCanTransition:
    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_self_transition_always_allowed(self, status):
        assert can_transition(status, status) is True

    def test_allowed_and_disallowed(self):
        assert can_transition(OrderStatus.PAID, OrderStatus.FULFILLING) is True
        assert can_transition(OrderStatus.SHIPPED, OrderStatus.PENDING) is False
        assert can_transition(OrderStatus.CANCELLED, OrderStatus.REFUNDED) is False

    def test_accepts_status_names(self):
        assert can_transition("pending", "AWAITING_PAYMENT") is True


class TestLookups:
    def test_valid_transitions_in_declaration_order(self):
        assert get_valid_transitions("PAID") == [
            OrderStatus.FULFILLING,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        ]

    def test_terminal_state_has_no_valid_transitions(self):
        assert get_valid_transitions(OrderStatus.REFUNDED) == []
        assert is_terminal("REFUNDED") is True
        assert is_terminal("DELIVERED") is False

    def test_unknown_status_is_a_validation_error(self):
        with pytest.raises(ValidationError) as exc:
            parse_status("LOST_IN_POST")
        assert "status" in exc.value.messages
