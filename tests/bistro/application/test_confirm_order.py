"""Application tests for order confirmation: reservation is all or nothing."""

import threading

import pytest
from bistro.domain import bistro
from bistro.errors import InsufficientStock, InvalidTransition
from bistro.ingredient.ingredient import Ingredient
from bistro.ingredient.ledger import current_stock, stock_snapshot
from bistro.order.confirmation import confirm_order
from bistro.order.order import Order, OrderStatus
from bistro.projections.stock_movement_log import movements_for
from protean import current_domain


def _order(order_id):
    return current_domain.repository_for(Order).get(order_id)


class TestRiceScenario:
    def test_second_order_is_rejected_when_rice_runs_short(self, rice_kitchen, make_order):
        """1000 g of rice, 300 g per plate: 3 plates fit, the 4th does not."""
        first = make_order(rice_kitchen["dish_id"], quantity=3)
        second = make_order(rice_kitchen["dish_id"], quantity=1)

        confirm_order(first)
        assert current_stock(rice_kitchen["rice_id"]) == 100.0

        with pytest.raises(InsufficientStock) as exc:
            confirm_order(second)
        assert exc.value.shortages == [
            {"ingredient_id": rice_kitchen["rice_id"], "required": 300.0, "available": 100.0, "optional": False}
        ]
        assert _order(second).status == OrderStatus.PENDING.value
        assert current_stock(rice_kitchen["rice_id"]) == 100.0

    def test_cancelling_the_first_lets_the_second_through(self, rice_kitchen, make_order):
        from bistro.order.lifecycle import cancel_order

        first = make_order(rice_kitchen["dish_id"], quantity=3)
        second = make_order(rice_kitchen["dish_id"], quantity=1)
        confirm_order(first)

        cancel_order(first, "Customer left")
        assert current_stock(rice_kitchen["rice_id"]) == 1000.0

        confirm_order(second)
        assert current_stock(rice_kitchen["rice_id"]) == 700.0


class TestConfirmation:
    def test_confirm_records_holds_and_reservations(self, rice_kitchen, make_order):
        order_id = make_order(rice_kitchen["dish_id"], quantity=2)
        result = confirm_order(order_id)

        assert result["status"] == OrderStatus.CONFIRMED.value
        assert result["holds"] == [{"ingredient_id": rice_kitchen["rice_id"], "quantity": 600.0}]

        order = _order(order_id)
        assert [(str(h.ingredient_id), h.quantity) for h in order.active_holds()] == [
            (rice_kitchen["rice_id"], 600.0)
        ]
        assert stock_snapshot(rice_kitchen["rice_id"])["holds"] == {order_id: 600.0}

        reservations = movements_for(order_id=order_id)
        assert [(m.kind, m.quantity) for m in reservations] == [("Reservation", -600.0)]

    def test_confirm_twice_is_an_invalid_transition(self, rice_kitchen, make_order):
        order_id = make_order(rice_kitchen["dish_id"])
        confirm_order(order_id)
        with pytest.raises(InvalidTransition):
            confirm_order(order_id)
        assert current_stock(rice_kitchen["rice_id"]) == 700.0

    def test_all_shortages_are_reported(self, make_ingredient, make_menu_item, make_order):
        rice = make_ingredient(name="Rice", initial_stock=100.0)
        oil = make_ingredient(name="Oil", unit_of_measure="ml", initial_stock=5.0)
        dish = make_menu_item(
            requirements=[
                {"ingredient_id": rice, "quantity_per_unit": 300.0},
                {"ingredient_id": oil, "quantity_per_unit": 10.0},
            ]
        )
        order_id = make_order(dish)
        with pytest.raises(InsufficientStock) as exc:
            confirm_order(order_id)
        assert {s["ingredient_id"] for s in exc.value.shortages} == {rice, oil}

    def test_optional_ingredient_is_skipped_when_short(self, make_ingredient, make_menu_item, make_order):
        rice = make_ingredient(name="Rice", initial_stock=1000.0)
        egg = make_ingredient(name="Egg", unit_of_measure="pc", initial_stock=1.0)
        dish = make_menu_item(
            requirements=[
                {"ingredient_id": rice, "quantity_per_unit": 300.0},
                {"ingredient_id": egg, "quantity_per_unit": 1.0, "optional": True},
            ]
        )
        order_id = make_order(dish, quantity=2)
        result = confirm_order(order_id)
        assert result["holds"] == [{"ingredient_id": rice, "quantity": 600.0}]
        assert current_stock(egg) == 1.0

    def test_optional_ingredient_is_reserved_when_covered(self, make_ingredient, make_menu_item, make_order):
        rice = make_ingredient(name="Rice", initial_stock=1000.0)
        egg = make_ingredient(name="Egg", unit_of_measure="pc", initial_stock=6.0)
        dish = make_menu_item(
            requirements=[
                {"ingredient_id": rice, "quantity_per_unit": 300.0},
                {"ingredient_id": egg, "quantity_per_unit": 1.0, "optional": True},
            ]
        )
        order_id = make_order(dish, quantity=2)
        confirm_order(order_id)
        assert current_stock(egg) == 4.0

    def test_recipe_revision_does_not_change_a_placed_order(self, rice_kitchen, make_order):
        from bistro.menu.management import revise_recipe

        order_id = make_order(rice_kitchen["dish_id"])
        revise_recipe(
            rice_kitchen["dish_id"],
            [{"ingredient_id": rice_kitchen["rice_id"], "quantity_per_unit": 900.0}],
        )
        confirm_order(order_id)
        assert current_stock(rice_kitchen["rice_id"]) == 700.0


class TestAtomicity:
    def test_failure_on_last_ingredient_changes_nothing(self, make_ingredient, make_menu_item, make_order, monkeypatch):
        ids = sorted(make_ingredient(name=name, initial_stock=100.0) for name in ("Rice", "Oil", "Garlic"))
        dish = make_menu_item(requirements=[{"ingredient_id": i, "quantity_per_unit": 10.0} for i in ids])
        order_id = make_order(dish)

        original = Ingredient.record_movement

        def failing_record(self, kind, quantity, **kwargs):
            if str(self.id) == ids[-1]:
                raise RuntimeError("ledger write failed")
            return original(self, kind, quantity, **kwargs)

        monkeypatch.setattr(Ingredient, "record_movement", failing_record)

        with pytest.raises(RuntimeError):
            confirm_order(order_id)

        monkeypatch.undo()
        for ingredient_id in ids:
            assert current_stock(ingredient_id) == 100.0
            assert len(movements_for(ingredient_id=ingredient_id)) == 1
        assert _order(order_id).status == OrderStatus.PENDING.value
        assert movements_for(order_id=order_id) == []

    def test_failure_after_reservations_rolls_back(self, rice_kitchen, make_order, monkeypatch):
        order_id = make_order(rice_kitchen["dish_id"])

        def failing_confirm(self, holds):
            raise RuntimeError("order write failed")

        monkeypatch.setattr(Order, "confirm", failing_confirm)
        with pytest.raises(RuntimeError):
            confirm_order(order_id)

        monkeypatch.undo()
        assert current_stock(rice_kitchen["rice_id"]) == 1000.0
        assert stock_snapshot(rice_kitchen["rice_id"])["holds"] == {}


class TestCompetingConfirmations:
    def test_only_one_of_two_racing_orders_gets_the_last_rice(self, rice_kitchen, make_order):
        orders = [make_order(rice_kitchen["dish_id"], quantity=2) for _ in range(2)]
        outcomes = {}
        start = threading.Barrier(2)

        def confirm(order_id):
            with bistro.domain_context():
                start.wait()
                try:
                    confirm_order(order_id)
                    outcomes[order_id] = "confirmed"
                except InsufficientStock:
                    outcomes[order_id] = "rejected"

        threads = [threading.Thread(target=confirm, args=(order_id,)) for order_id in orders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(outcomes.values()) == ["confirmed", "rejected"]
        assert current_stock(rice_kitchen["rice_id"]) == 400.0
