"""BDD tests for the order lifecycle."""

from ordering.order.cancellation import cancel_order
from ordering.order.transitions import transition_order_status
from pytest_bdd import given, parsers, scenarios, then, when

scenarios("features/order_lifecycle.feature")


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the admin moved the order to "{status}"'))
def _(order_id, status):
    assert transition_order_status(order_id, status, actor_id="admin-1").success


@given(parsers.cfparse('the admin forced the order to "{status}"'))
def _(order_id, status):
    assert transition_order_status(order_id, status, actor_id="admin-1", force=True).success


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('the admin moves the order to "{status}"'), target_fixture="change")
def _(order_id, status):
    return transition_order_status(order_id, status, actor_id="admin-1")


@when(parsers.cfparse('the admin forces the order to "{status}"'), target_fixture="change")
def _(order_id, status):
    return transition_order_status(order_id, status, actor_id="admin-1", reason="Manual override", force=True)


@when(parsers.cfparse('the admin overrides the order to "{status}"'), target_fixture="change")
def _(order_id, status):
    return transition_order_status(
        order_id, status, actor_id="admin-1", reason="Emergency override", skip_validation=True
    )


@when("the customer cancels the order", target_fixture="change")
def _(order_id, customer_id):
    return cancel_order(order_id, customer_id, reason="No longer needed")


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the change is rejected with "{reason}"'))
def _(change, reason):
    assert change.success is False
    assert change.reason == reason
