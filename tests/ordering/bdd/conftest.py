"""Shared BDD fixtures and step definitions for the Ordering domain."""

import pytest
from ordering.order.order import Order
from ordering.timeline.log import get_order_events
from protean import current_domain
from pytest_bdd import given, parsers, then


@pytest.fixture()
def customer_id():
    return "user-001"


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse("a size variant with {stock:d} units in stock"), target_fixture="variant_id")
def _(make_variant, stock):
    return make_variant(stock=stock)


@given(parsers.cfparse("a customer placed an order for {quantity:d} units"), target_fixture="order_id")
def _(place, cart_line, variant_id, customer_id, quantity):
    result = place(lines=[cart_line(variant_id, quantity=quantity)], user_id=customer_id)
    assert result.success, result
    return result.order_id


@given("the order was paid")
def _(pay, order_id):
    pay(order_id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order_id, status):
    assert current_domain.repository_for(Order).get(order_id).status == status


@then(parsers.cfparse("the variant has {stock:d} units in stock"))
def _(stock_of, variant_id, stock):
    assert stock_of(variant_id) == stock


@then(parsers.cfparse('the order timeline ends with "{kind}"'))
def _(order_id, kind):
    assert get_order_events(order_id)[-1].kind == kind
