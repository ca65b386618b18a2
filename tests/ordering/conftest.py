"""Shared fixtures for the ordering tests.

Fixtures return small factory callables so each test can build exactly the
variants, discount codes and orders it needs.
"""

import pytest
from ordering.discount.discount_code import DiscountCode
from ordering.order.checkout import place_order
from ordering.payment.processing import record_payment_result, start_payment
from ordering.stock.variant import SizeVariant
from protean import current_domain


@pytest.fixture
def us_address():
    return {
        "full_name": "Ada Buyer",
        "line1": "1 Market St",
        "city": "San Francisco",
        "region": "CA",
        "postal_code": "94105",
        "country": "US",
    }


@pytest.fixture
def uk_address():
    return {
        "full_name": "Ada Buyer",
        "line1": "10 Downing St",
        "city": "London",
        "postal_code": "SW1A 2AA",
        "country": "GB",
    }


@pytest.fixture
def make_variant():
    def _make(stock=10, label="M", product_id="prod-tee", sku=None):
        variant = SizeVariant.create(product_id=product_id, label=label, stock=stock, sku=sku or f"TEE-{label}")
        current_domain.repository_for(SizeVariant).add(variant)
        return str(variant.id)

    return _make


@pytest.fixture
def stock_of():
    def _stock(variant_id):
        return current_domain.repository_for(SizeVariant).get(variant_id).stock

    return _stock


@pytest.fixture
def make_discount():
    def _make(code="SAVE10", kind="FIXED", **kwargs):
        discount = DiscountCode.create(code=code, kind=kind, **kwargs)
        current_domain.repository_for(DiscountCode).add(discount)
        return str(discount.id)

    return _make


def line(variant_id, quantity=1, unit_price_cents=4000, product_id="prod-tee", name="Logo Tee"):
    return {
        "product_id": product_id,
        "size_variant_id": variant_id,
        "name": name,
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
    }


@pytest.fixture
def cart_line():
    return line


@pytest.fixture
def place(make_variant, us_address):
    """Place an order; by default two units at 40.00 USD shipped to California."""

    def _place(lines=None, address=None, currency="USD", user_id="user-001", **kwargs):
        if lines is None:
            lines = [line(make_variant(stock=10), quantity=2)]
        return place_order(
            lines=lines,
            shipping_address=address or us_address,
            currency=currency,
            user_id=user_id,
            **kwargs,
        )

    return _place


@pytest.fixture
def pay():
    """Run an order through a successful payment, ending in PAID."""

    def _pay(order_id):
        started = start_payment(order_id)
        assert started.success, started
        outcome = record_payment_result(started.provider_ref, "CAPTURED")
        assert outcome.success, outcome
        return outcome

    return _pay
