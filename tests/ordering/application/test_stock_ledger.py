"""Application tests for the stock ledger — decrements, restores, manual adjustments."""

import pytest
from ordering.order.order import Order
from ordering.stock import ledger
from ordering.stock.adjustment import adjust_stock, restore_stock
from ordering.stock.ledger import (
    apply_stock_delta,
    current_stock,
    decrement_size_stock,
    restore_order_stock,
    restore_size_stock,
)
from ordering.timeline.log import get_order_events
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError


class TestDecrement:
    def test_decrement_takes_units(self, make_variant, stock_of):
        variant_id = make_variant(stock=5)
        assert decrement_size_stock(variant_id, 2) is True
        assert stock_of(variant_id) == 3

    def test_decrement_to_exactly_zero(self, make_variant, stock_of):
        variant_id = make_variant(stock=2)
        assert decrement_size_stock(variant_id, 2) is True
        assert stock_of(variant_id) == 0

    def test_insufficient_stock_writes_nothing(self, make_variant, stock_of):
        variant_id = make_variant(stock=1)
        assert decrement_size_stock(variant_id, 2) is False
        assert stock_of(variant_id) == 1

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, make_variant, quantity):
        variant_id = make_variant(stock=5)
        with pytest.raises(ValidationError):
            decrement_size_stock(variant_id, quantity)

    def test_unknown_variant(self):
        with pytest.raises(ObjectNotFoundError):
            decrement_size_stock("no-such-variant", 1)

    def test_more_attempts_than_stock(self, make_variant, stock_of):
        variant_id = make_variant(stock=3)
        outcomes = [decrement_size_stock(variant_id, 1) for _ in range(5)]
        assert outcomes.count(True) == 3
        assert stock_of(variant_id) == 0


class TestConditionalUpdate:
    def test_movement_reports_counts_around_the_write(self, make_variant):
        variant_id = make_variant(stock=5)
        movement = apply_stock_delta(variant_id, -2)
        assert movement.applied is True
        assert (movement.previous_stock, movement.new_stock) == (5, 3)

    def test_floor_is_part_of_the_update(self, make_variant, monkeypatch):
        variant_id = make_variant(stock=1)
        written = []
        real_update = ledger.conditional_update

        def recording_update(aggregate_cls, identifier, condition, changes):
            applied = real_update(aggregate_cls, identifier, condition, changes)
            written.append(applied)
            return applied

        monkeypatch.setattr(ledger, "conditional_update", recording_update)

        assert apply_stock_delta(variant_id, -1).applied is True
        movement = apply_stock_delta(variant_id, -1)

        assert written == [True, False]
        assert movement.reason == "insufficient_stock"
        assert (movement.previous_stock, movement.new_stock) == (0, 0)
        assert current_stock(variant_id) == 0

    def test_restore_has_no_ceiling(self, make_variant, stock_of):
        variant_id = make_variant(stock=0)
        assert apply_stock_delta(variant_id, 1000).new_stock == 1000
        assert stock_of(variant_id) == 1000


class TestRestore:
    def test_restore_adds_units(self, make_variant, stock_of):
        variant_id = make_variant(stock=0)
        assert restore_size_stock(variant_id, 4) is True
        assert stock_of(variant_id) == 4

    def test_restore_needs_positive_quantity(self, make_variant):
        with pytest.raises(ValidationError):
            restore_size_stock(make_variant(), 0)

    def test_order_restore_conserves_units(self, place, make_variant, stock_of, cart_line):
        medium = make_variant(stock=5, label="M")
        large = make_variant(stock=5, label="L")
        placed = place(lines=[cart_line(medium, quantity=2), cart_line(large, quantity=3)])
        assert (stock_of(medium), stock_of(large)) == (3, 2)

        result = restore_stock(placed.order_id, reason="Warehouse recount")

        assert result.success is True
        assert result.restored_items == 2
        assert result.restored_quantity == 5
        assert (stock_of(medium), stock_of(large)) == (5, 5)

        order = current_domain.repository_for(Order).get(placed.order_id)
        assert order.stock_restored_at is not None

        restored_events = [e for e in get_order_events(placed.order_id) if e.kind == "STOCK_RESTORED"]
        assert len(restored_events) == 1
        assert restored_events[0].parsed_metadata()["reason"] == "Warehouse recount"
        assert len(restored_events[0].parsed_metadata()["lines"]) == 2

    def test_second_restore_is_refused(self, place, stock_of, make_variant, cart_line):
        variant_id = make_variant(stock=5)
        placed = place(lines=[cart_line(variant_id, quantity=2)])

        assert restore_stock(placed.order_id, reason="first").success is True
        again = restore_stock(placed.order_id, reason="second")

        assert again.success is False
        assert again.reason == "already_restored"
        assert stock_of(variant_id) == 5

    def test_restore_for_unknown_order(self):
        result = restore_stock("no-such-order", reason="recount")
        assert (result.success, result.reason) == (False, "not_found")

    def test_stamped_order_is_not_restored_twice(self, place):
        placed = place()
        order = current_domain.repository_for(Order).get(placed.order_id)
        restore_order_stock(order, "first")
        assert restore_order_stock(order, "second").reason == "already_restored"


class TestAdjustStock:
    def test_positive_adjustment(self, make_variant, stock_of):
        variant_id = make_variant(stock=2)
        result = adjust_stock(variant_id, 8, reason="Delivery received", actor_id="admin-1")
        assert result.success is True
        assert (result.previous_stock, result.new_stock) == (2, 10)
        assert stock_of(variant_id) == 10

    def test_negative_adjustment(self, make_variant, stock_of):
        variant_id = make_variant(stock=5)
        result = adjust_stock(variant_id, -3, reason="Damaged in storage")
        assert result.success is True
        assert stock_of(variant_id) == 2

    def test_adjustment_cannot_go_below_zero(self, make_variant, stock_of):
        variant_id = make_variant(stock=2)
        result = adjust_stock(variant_id, -3, reason="Shrinkage")
        assert result.success is False
        assert result.reason == "insufficient_stock"
        assert result.new_stock == 2
        assert stock_of(variant_id) == 2

    def test_unknown_variant(self):
        result = adjust_stock("no-such-variant", 1, reason="Found one")
        assert (result.success, result.reason) == (False, "not_found")

    @pytest.mark.parametrize("delta", [0, 1.5, "3", True])
    def test_delta_must_be_a_nonzero_integer(self, make_variant, delta):
        with pytest.raises(ValidationError) as exc:
            adjust_stock(make_variant(), delta, reason="Recount")
        assert "delta" in exc.value.messages

    def test_reason_is_required(self, make_variant):
        with pytest.raises(ValidationError) as exc:
            adjust_stock(make_variant(), 1, reason="  ")
        assert "reason" in exc.value.messages
