"""Stock movements — command, handler and the serialized operation.

All writers to one ingredient's ledger go through ``record_movement``, which
holds that ingredient's lock for the whole unit of work. The non-negativity
check and the append therefore happen as one step: two concurrent debits can
never both observe the same balance.
"""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.ingredient.ingredient import Ingredient, MovementKind
from bistro.shared.locks import ingredient_locks
from bistro.shared.retry import retry_on_conflict


@bistro.command(part_of="Ingredient")
class RecordStockMovement:
    ingredient_id = Identifier(required=True)
    kind = String(required=True, choices=MovementKind)
    quantity = Float(required=True)
    reason = String(max_length=500)
    actor_id = String(default="system")
    order_id = Identifier()


@bistro.command_handler(part_of=Ingredient)
class StockMovementHandler:
    @handle(RecordStockMovement)
    def record_stock_movement(self, command):
        repo = current_domain.repository_for(Ingredient)
        ingredient = repo.get(command.ingredient_id)
        previous_stock = ingredient.current_stock

        movement_id = ingredient.record_movement(
            command.kind,
            command.quantity,
            reason=command.reason,
            actor_id=command.actor_id,
            order_id=command.order_id,
        )
        repo.add(ingredient)

        return {
            "movement_id": movement_id,
            "ingredient_id": str(ingredient.id),
            "kind": command.kind,
            "previous_stock": previous_stock,
            "new_stock": ingredient.current_stock,
            "status": ingredient.status.value,
        }


@retry_on_conflict()
def record_movement(ingredient_id, kind, quantity, reason=None, actor_id="system", order_id=None):
    """Append one movement to an ingredient's ledger and return its summary."""
    try:
        kind = MovementKind(kind).value
    except ValueError:
        raise ValidationError({"kind": [f"Unknown movement kind: {kind}"]}) from None
    with ingredient_locks.hold(ingredient_id):
        return current_domain.process(
            RecordStockMovement(
                ingredient_id=ingredient_id,
                kind=kind,
                quantity=quantity,
                reason=reason,
                actor_id=actor_id,
                order_id=order_id,
            ),
            asynchronous=False,
        )
