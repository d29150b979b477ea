"""Stock threshold management — command and handler."""

from protean import handle
from protean.fields import Float, Identifier
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.ingredient.ingredient import Ingredient
from bistro.shared.locks import ingredient_locks
from bistro.shared.retry import retry_on_conflict


@bistro.command(part_of="Ingredient")
class UpdateStockThresholds:
    ingredient_id = Identifier(required=True)
    min_stock = Float(required=True)
    max_stock = Float()


@bistro.command_handler(part_of=Ingredient)
class StockThresholdsHandler:
    @handle(UpdateStockThresholds)
    def update_stock_thresholds(self, command):
        repo = current_domain.repository_for(Ingredient)
        ingredient = repo.get(command.ingredient_id)
        ingredient.update_thresholds(command.min_stock, command.max_stock)
        repo.add(ingredient)
        return ingredient.status.value


@retry_on_conflict()
def update_thresholds(ingredient_id, min_stock, max_stock=None):
    with ingredient_locks.hold(ingredient_id):
        return current_domain.process(
            UpdateStockThresholds(
                ingredient_id=ingredient_id,
                min_stock=min_stock,
                max_stock=max_stock,
            ),
            asynchronous=False,
        )
