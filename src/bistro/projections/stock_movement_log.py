"""Stock movement log — append-only audit trail of every ledger movement."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.ingredient.events import StockMovementRecorded
from bistro.ingredient.ingredient import Ingredient
from bistro.shared.queries import fetch_all


@bistro.projection
class StockMovementLog:
    movement_id = Identifier(identifier=True, required=True)
    ingredient_id = Identifier(required=True)
    kind = String(required=True)
    quantity = Float(required=True)
    reason = String()
    actor_id = String()
    order_id = Identifier()
    previous_stock = Float(required=True)
    new_stock = Float(required=True)
    recorded_at = DateTime(required=True)


@bistro.projector(projector_for=StockMovementLog, aggregates=[Ingredient])
class StockMovementLogProjector:
    @on(StockMovementRecorded)
    def on_stock_movement_recorded(self, event):
        current_domain.repository_for(StockMovementLog).add(
            StockMovementLog(
                movement_id=event.movement_id,
                ingredient_id=event.ingredient_id,
                kind=event.kind,
                quantity=event.quantity,
                reason=event.reason,
                actor_id=event.actor_id,
                order_id=event.order_id,
                previous_stock=event.previous_stock,
                new_stock=event.new_stock,
                recorded_at=event.recorded_at,
            )
        )


def movements_for(ingredient_id=None, order_id=None):
    """Movements oldest first, filtered by ingredient and/or order."""
    filters = {}
    if ingredient_id:
        filters["ingredient_id"] = str(ingredient_id)
    if order_id:
        filters["order_id"] = str(order_id)
    query = current_domain.repository_for(StockMovementLog)._dao.query
    if filters:
        query = query.filter(**filters)
    return fetch_all(query.order_by("recorded_at"))
