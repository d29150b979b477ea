"""Shared BDD fixtures and step definitions for the bistro core."""

import pytest
from bistro.errors import InsufficientStock
from bistro.ingredient.ledger import current_stock, stock_snapshot
from bistro.order.confirmation import confirm_order
from bistro.order.lifecycle import cancel_order
from bistro.order.order import Order
from protean import current_domain
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then, when


@pytest.fixture()
def kitchen():
    """Names used in the scenarios mapped to the ids they were registered under."""
    return {"ingredients": {}, "dishes": {}, "orders": {}}


@pytest.fixture()
def outcome():
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the kitchen stocks {quantity:g} {unit} of "{name}"'))
def _(kitchen, make_ingredient, quantity, unit, name):
    kitchen["ingredients"][name] = make_ingredient(name=name, unit_of_measure=unit, initial_stock=quantity)


@given(parsers.cfparse('"{dish}" costs {price:g} and needs {quantity:g} of "{name}" per plate'))
def _(kitchen, make_menu_item, dish, price, quantity, name):
    kitchen["dishes"][dish] = make_menu_item(
        name=dish,
        price=price,
        requirements=[{"ingredient_id": kitchen["ingredients"][name], "quantity_per_unit": quantity}],
    )


@given(parsers.cfparse('order "{label}" asks for {quantity:d} "{dish}"'))
def _(kitchen, make_order, label, quantity, dish):
    kitchen["orders"][label] = make_order(kitchen["dishes"][dish], quantity=quantity)


@given(parsers.cfparse('order "{label}" is confirmed'))
def _(kitchen, label):
    confirm_order(kitchen["orders"][label])


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse('order "{label}" is confirmed'))
def _(kitchen, outcome, label):
    try:
        confirm_order(kitchen["orders"][label])
        outcome["error"] = None
    except ValidationError as exc:
        outcome["error"] = exc


@when(parsers.cfparse('order "{label}" is cancelled'))
def _(kitchen, label):
    cancel_order(kitchen["orders"][label], "Customer left")


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('order "{label}" is {status}'))
def _(kitchen, label, status):
    order = current_domain.repository_for(Order).get(kitchen["orders"][label])
    assert order.status == status


@then(parsers.cfparse('"{name}" stock is {quantity:g}'))
def _(kitchen, name, quantity):
    assert current_stock(kitchen["ingredients"][name]) == quantity


@then(parsers.cfparse('"{name}" has no holds'))
def _(kitchen, name):
    assert stock_snapshot(kitchen["ingredients"][name])["holds"] == {}


@then(parsers.cfparse('the confirmation is rejected for "{name}": {required:g} required, {available:g} available'))
def _(kitchen, outcome, name, required, available):
    error = outcome["error"]
    assert isinstance(error, InsufficientStock)
    assert error.ingredient_id == kitchen["ingredients"][name]
    assert (error.required, error.available) == (required, available)
