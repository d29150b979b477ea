"""Read side of the ingredient ledger.

Balances are read from the event-sourced aggregate under the ingredient lock,
so a movement that is still being committed is never half-visible.
"""

from protean.utils.globals import current_domain

from bistro.ingredient.ingredient import HoldStatus, Ingredient
from bistro.shared.locks import ingredient_locks


def load_ingredient(ingredient_id) -> Ingredient:
    return current_domain.repository_for(Ingredient).get(ingredient_id)


def current_stock(ingredient_id) -> float:
    with ingredient_locks.hold(ingredient_id):
        return load_ingredient(ingredient_id).current_stock or 0.0


def stock_snapshot(ingredient_id) -> dict:
    with ingredient_locks.hold(ingredient_id):
        ingredient = load_ingredient(ingredient_id)
        return {
            "ingredient_id": str(ingredient.id),
            "name": ingredient.name,
            "unit_of_measure": ingredient.unit_of_measure,
            "current_stock": ingredient.current_stock or 0.0,
            "min_stock": ingredient.min_stock,
            "max_stock": ingredient.max_stock,
            "status": ingredient.status.value,
            "holds": {
                str(h.order_id): h.quantity
                for h in ingredient.holds
                if h.status == HoldStatus.HELD.value
            },
        }
