"""Tests for Order placement, line editing, pricing and payment status."""

import pytest
from bistro.errors import InvalidOrderState
from bistro.order.events import OrderPlaced
from bistro.order.order import (
    Order,
    OrderStatus,
    PaymentStatus,
    compute_pricing,
)
from protean.exceptions import ValidationError


def _line(menu_item_id="item-1", quantity=1, unit_price=10.0, recipe=None):
    return {
        "menu_item_id": menu_item_id,
        "name": "Fried Rice",
        "quantity": quantity,
        "unit_price": unit_price,
        "recipe": recipe or [{"ingredient_id": "rice", "quantity_per_unit": 300.0}],
    }


def _make_order(lines=None, **kwargs):
    return Order.place(order_number="260101-BBBBBB", lines_data=lines or [_line()], **kwargs)


class TestPlacement:
    def test_place_starts_pending_and_unpaid(self):
        order = _make_order()
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.UNPAID.value

    def test_place_raises_order_placed(self):
        order = _make_order()
        assert isinstance(order._events[0], OrderPlaced)

    def test_place_requires_lines(self):
        with pytest.raises(ValidationError):
            Order.place(order_number="260101-CCCCCC", lines_data=[])

    def test_place_rejects_zero_quantity(self):
        with pytest.raises(ValidationError):
            _make_order(lines=[_line(quantity=0)])

    def test_place_snapshots_recipe(self):
        order = _make_order()
        assert order.lines[0].recipe_requirements() == [{"ingredient_id": "rice", "quantity_per_unit": 300.0}]

    def test_pricing(self):
        order = _make_order(lines=[_line(quantity=2, unit_price=12.5)], discount=5.0, tax_rate=0.1)
        assert order.pricing.subtotal == 25.0
        assert order.pricing.discount == 5.0
        assert order.pricing.tax == 2.0
        assert order.total == 22.0

    def test_discount_is_capped_at_subtotal(self):
        assert compute_pricing([(10.0, 1)], discount=50.0) == (10.0, 10.0, 0.0, 0.0)

    def test_place_rejects_discount_above_subtotal(self):
        with pytest.raises(ValidationError) as exc:
            _make_order(discount=10.01)
        assert "discount" in exc.value.messages

    def test_place_accepts_discount_equal_to_subtotal(self):
        assert _make_order(discount=10.0).total == 0.0


class TestLineEditing:
    def test_add_line_recomputes_totals(self):
        order = _make_order()
        order.add_line("item-2", "Soup", 2, 4.0)
        assert len(order.lines) == 2
        assert order.total == 18.0

    def test_remove_line_recomputes_totals(self):
        order = _make_order(lines=[_line(), _line(menu_item_id="item-2", unit_price=5.0)])
        order.remove_line(order.lines[1].id)
        assert len(order.lines) == 1
        assert order.total == 10.0

    def test_remove_unknown_line_is_rejected(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.remove_line("missing")

    def test_discount_above_subtotal_is_rejected(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.apply_discount(11.0)

    def test_lines_are_frozen_after_confirmation(self):
        order = _make_order()
        order.confirm([])
        with pytest.raises(InvalidOrderState):
            order.add_line("item-2", "Soup", 1, 4.0)
        with pytest.raises(InvalidOrderState):
            order.apply_discount(1.0)

    def test_demand_lines_and_ingredients(self):
        order = _make_order(lines=[_line(quantity=2)])
        assert order.demand_lines() == [([{"ingredient_id": "rice", "quantity_per_unit": 300.0}], 2)]
        assert order.ingredient_ids() == ["rice"]


class TestPaymentStatus:
    def test_request_payment_awaits_authorization(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        assert order.payment_status == PaymentStatus.AWAITING_AUTHORIZATION.value
        assert str(order.active_authorization_id) == "auth-1"

    def test_request_payment_must_match_total(self):
        order = _make_order()
        with pytest.raises(ValidationError):
            order.request_payment("auth-1", 9.0, "USD")

    def test_cannot_request_twice(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        with pytest.raises(InvalidOrderState):
            order.request_payment("auth-2", 10.0, "USD")

    def test_cancelled_order_is_not_payable(self):
        order = _make_order()
        order.cancel("Left", "cashier")
        with pytest.raises(InvalidOrderState):
            order.assert_payable()

    def test_settle_marks_paid(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        order.settle_payment("auth-1", 10.0, "USD")
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.active_authorization_id is None
        assert str(order.settled_authorization_id) == "auth-1"

    def test_settle_requires_the_open_authorization(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        with pytest.raises(InvalidOrderState):
            order.settle_payment("auth-other", 10.0, "USD")

    def test_failed_payment_can_be_retried(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        order.fail_payment("auth-1", "Card declined")
        assert order.payment_status == PaymentStatus.FAILED.value
        order.request_payment("auth-2", 10.0, "USD")
        assert order.payment_status == PaymentStatus.AWAITING_AUTHORIZATION.value

    def test_reset_ignores_a_stale_authorization(self):
        order = _make_order()
        order.request_payment("auth-1", 10.0, "USD")
        assert order.reset_payment("auth-old", "expired") is False
        assert order.payment_status == PaymentStatus.AWAITING_AUTHORIZATION.value
        assert order.reset_payment("auth-1", "expired") is True
        assert order.payment_status == PaymentStatus.UNPAID.value

    def test_refund_requires_paid(self):
        order = _make_order()
        with pytest.raises(InvalidOrderState):
            order.refund_payment()
        order.request_payment("auth-1", 10.0, "USD")
        order.settle_payment("auth-1", 10.0, "USD")
        order.refund_payment()
        assert order.payment_status == PaymentStatus.REFUNDED.value
