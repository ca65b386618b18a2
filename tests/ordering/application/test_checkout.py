"""Application tests for checkout — totals, stock, discounts and idempotency."""

from datetime import UTC, datetime, timedelta

import pytest
from ordering.discount.usage import find_discount_code
from ordering.order.order import Order
from ordering.timeline.log import get_order_events
from protean import current_domain
from protean.exceptions import ValidationError


def _orders():
    return current_domain.repository_for(Order)._dao.query.all().items


class TestPlaceOrder:
    def test_totals_for_exclusive_currency(self, place):
        result = place()

        assert result.success is True
        assert result.idempotent is False
        assert result.totals == {
            "currency": "USD",
            "subtotal_cents": 8000,
            "discount_cents": 0,
            "tax_cents": 580,
            "shipping_cents": 699,
            "total_cents": 9279,
            "prices_include_tax": False,
        }

    def test_order_is_persisted_pending(self, place):
        result = place()
        order = current_domain.repository_for(Order).get(result.order_id)

        assert order.status == "PENDING"
        assert order.user_id == "user-001"
        assert order.total_cents == 9279
        assert order.shipping_address.city == "San Francisco"
        assert order.created_at is not None

    def test_items_snapshot_variant_details(self, place, make_variant, cart_line):
        variant_id = make_variant(stock=4, label="XL", sku="TEE-XL-BLK")
        result = place(lines=[cart_line(variant_id, quantity=1, name="Logo Tee")])
        item = current_domain.repository_for(Order).get(result.order_id).items[0]

        assert item.size == "XL"
        assert item.sku == "TEE-XL-BLK"
        assert item.name_snapshot == "Logo Tee"
        assert item.unit_price_cents == 4000

    def test_inclusive_currency_keeps_tax_inside_prices(self, place, make_variant, cart_line, uk_address):
        variant_id = make_variant(stock=5)
        result = place(
            lines=[cart_line(variant_id, quantity=2, unit_price_cents=3000)], address=uk_address, currency="GBP"
        )

        assert result.totals["prices_include_tax"] is True
        assert result.totals["tax_cents"] == 1000
        assert result.totals["shipping_cents"] == 499 + 75
        assert result.totals["total_cents"] == 6000 + 574

    def test_free_shipping_over_threshold(self, place, make_variant, cart_line):
        variant_id = make_variant(stock=5)
        result = place(lines=[cart_line(variant_id, quantity=1, unit_price_cents=10000)])
        assert result.totals["shipping_cents"] == 0

    def test_stock_is_decremented(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=10)
        place(lines=[cart_line(variant_id, quantity=3)])
        assert stock_of(variant_id) == 7

    def test_guest_checkout(self, place):
        result = place(user_id=None)
        assert current_domain.repository_for(Order).get(result.order_id).user_id is None

    def test_events_are_written(self, place):
        result = place()
        events = get_order_events(result.order_id)

        assert [event.kind for event in events] == ["ORDER_CREATED"]
        metadata = events[0].parsed_metadata()
        assert metadata["total_cents"] == 9279
        assert metadata["rates"]["breakdown"]["tax_rate_applied"] == 725


class TestStockConflicts:
    def test_insufficient_stock_creates_nothing(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=1)
        result = place(lines=[cart_line(variant_id, quantity=2)])

        assert result.success is False
        assert result.reason == "insufficient_stock"
        assert stock_of(variant_id) == 1
        assert _orders() == []

    def test_lines_for_the_same_variant_are_summed(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=3)
        result = place(lines=[cart_line(variant_id, quantity=2), cart_line(variant_id, quantity=2)])

        assert result.reason == "insufficient_stock"
        assert stock_of(variant_id) == 3

    def test_one_short_line_blocks_the_others(self, place, make_variant, stock_of, cart_line):
        plenty = make_variant(stock=10, label="M")
        scarce = make_variant(stock=0, label="L")
        result = place(lines=[cart_line(plenty, quantity=1), cart_line(scarce, quantity=1)])

        assert result.success is False
        assert stock_of(plenty) == 10

    def test_repeated_checkouts_never_oversell(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=3)
        results = [place(lines=[cart_line(variant_id, quantity=1)]) for _ in range(5)]

        assert sum(1 for result in results if result.success) == 3
        assert stock_of(variant_id) == 0
        assert len(_orders()) == 3

    def test_unknown_variant(self, place, cart_line):
        result = place(lines=[cart_line("no-such-variant")])
        assert (result.success, result.reason) == (False, "not_found")

    def test_variant_must_belong_to_product(self, place, make_variant, cart_line):
        variant_id = make_variant(product_id="prod-hoodie")
        with pytest.raises(ValidationError):
            place(lines=[cart_line(variant_id, product_id="prod-tee")])


class TestDiscounts:
    def test_fixed_discount(self, place, make_discount):
        make_discount(code="SAVE10", kind="FIXED", value_cents=1000)
        result = place(discount_code="save10")

        assert result.success is True
        assert result.totals["discount_cents"] == 1000
        assert result.totals["total_cents"] == 8000 - 1000 + 580 + 699

        order = current_domain.repository_for(Order).get(result.order_id)
        assert order.discount_code_code == "SAVE10"
        assert order.discount_usage_counted is False

    def test_fixed_discount_is_capped_at_subtotal(self, place, make_variant, cart_line, make_discount):
        make_discount(code="BIG", kind="FIXED", value_cents=5000)
        variant_id = make_variant(stock=5)
        result = place(lines=[cart_line(variant_id, quantity=1, unit_price_cents=3000)], discount_code="BIG")

        assert result.totals["discount_cents"] == 3000
        assert result.totals["total_cents"] >= 0

    def test_percent_discount(self, place, make_discount):
        make_discount(code="PCT15", kind="PERCENT", percent=15)
        result = place(discount_code="PCT15")
        assert result.totals["discount_cents"] == 1200

    def test_discount_event_is_written(self, place, make_discount):
        make_discount(code="SAVE10", kind="FIXED", value_cents=1000)
        result = place(discount_code="SAVE10")
        events = get_order_events(result.order_id)

        assert [event.kind for event in events] == ["ORDER_CREATED", "DISCOUNT_APPLIED"]
        assert events[1].parsed_metadata()["total_discount_cents"] == 1000

    def test_checkout_does_not_count_usage(self, place, make_discount):
        make_discount(code="SAVE10", kind="FIXED", value_cents=1000, usage_limit=1)
        place(discount_code="SAVE10")
        assert find_discount_code("SAVE10").times_used == 0

    def test_unknown_code(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=5)
        result = place(lines=[cart_line(variant_id)], discount_code="NOPE")

        assert (result.success, result.reason) == (False, "not_found")
        assert stock_of(variant_id) == 5
        assert _orders() == []

    def test_expired_code(self, place, make_discount):
        make_discount(code="OLD", ends_at=datetime.now(UTC) - timedelta(days=1), value_cents=500)
        assert place(discount_code="OLD").reason == "expired"

    def test_code_not_started(self, place, make_discount):
        make_discount(code="SOON", starts_at=datetime.now(UTC) + timedelta(days=1), value_cents=500)
        assert place(discount_code="SOON").reason == "not_started"

    def test_minimum_subtotal(self, place, make_discount):
        make_discount(code="MIN", value_cents=500, min_subtotal_cents=20000)
        assert place(discount_code="MIN").reason == "min_subtotal_not_met"


class TestIdempotency:
    def test_same_key_returns_the_first_order(self, place, make_variant, stock_of, cart_line):
        variant_id = make_variant(stock=10)
        first = place(lines=[cart_line(variant_id, quantity=2)], idempotency_key="chk-1")
        second = place(lines=[cart_line(variant_id, quantity=2)], idempotency_key="chk-1")

        assert second.success is True
        assert second.idempotent is True
        assert second.order_id == first.order_id
        assert second.totals == first.totals
        assert stock_of(variant_id) == 8
        assert len(_orders()) == 1

    def test_keys_are_scoped_per_user(self, place, make_variant, cart_line):
        variant_id = make_variant(stock=10)
        first = place(lines=[cart_line(variant_id)], idempotency_key="chk-1", user_id="user-001")
        second = place(lines=[cart_line(variant_id)], idempotency_key="chk-1", user_id="user-002")
        assert second.order_id != first.order_id

    def test_different_keys_create_separate_orders(self, place):
        assert place(idempotency_key="a").order_id != place(idempotency_key="b").order_id


class TestValidation:
    def test_empty_cart(self, place):
        with pytest.raises(ValidationError) as exc:
            place(lines=[])
        assert "items" in exc.value.messages

    def test_zero_quantity(self, place, make_variant, cart_line):
        with pytest.raises(ValidationError):
            place(lines=[cart_line(make_variant(), quantity=0)])

    def test_negative_price(self, place, make_variant, cart_line):
        with pytest.raises(ValidationError):
            place(lines=[cart_line(make_variant(), unit_price_cents=-1)])

    def test_address_needs_a_country(self, place, us_address):
        address = {key: value for key, value in us_address.items() if key != "country"}
        with pytest.raises(ValidationError):
            place(address=address)
