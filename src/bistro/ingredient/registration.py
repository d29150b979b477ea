"""Ingredient registration — command, handler and operation."""

from protean import handle
from protean.fields import Float, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.ingredient.ingredient import Ingredient, MovementKind


@bistro.command(part_of="Ingredient")
class RegisterIngredient:
    """Add an ingredient to the ledger, optionally with opening stock."""

    name = String(required=True, max_length=255)
    unit_of_measure = String(required=True, max_length=20)
    min_stock = Float(default=0.0)
    max_stock = Float()
    initial_stock = Float(default=0.0)
    actor_id = String(default="system")


@bistro.command_handler(part_of=Ingredient)
class RegisterIngredientHandler:
    @handle(RegisterIngredient)
    def register_ingredient(self, command):
        ingredient = Ingredient.register(
            name=command.name,
            unit_of_measure=command.unit_of_measure,
            min_stock=command.min_stock or 0.0,
            max_stock=command.max_stock,
        )
        if command.initial_stock:
            ingredient.record_movement(
                MovementKind.IN,
                command.initial_stock,
                reason="Opening stock",
                actor_id=command.actor_id,
            )
        current_domain.repository_for(Ingredient).add(ingredient)
        return str(ingredient.id)


def register_ingredient(name, unit_of_measure, min_stock=0.0, max_stock=None, initial_stock=0.0, actor_id="system"):
    return current_domain.process(
        RegisterIngredient(
            name=name,
            unit_of_measure=unit_of_measure,
            min_stock=min_stock,
            max_stock=max_stock,
            initial_stock=initial_stock,
            actor_id=actor_id,
        ),
        asynchronous=False,
    )
