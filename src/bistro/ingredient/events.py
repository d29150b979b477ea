"""Domain events for the Ingredient aggregate.

Every stock movement is an immutable StockMovementRecorded fact; the
ingredient's balance is the fold of these events in order. The events are
persisted to the event store and used for:
- Rebuilding aggregate state via @apply (event sourcing)
- Updating the IngredientStock and StockMovementLog projections
- Relaying threshold crossings to the notification dispatcher
"""

from protean.fields import DateTime, Float, Identifier, String

from bistro.domain import bistro


@bistro.event(part_of="Ingredient")
class IngredientRegistered:
    """A new ingredient was added to the ledger with zero stock."""

    __version__ = 1

    ingredient_id = Identifier(required=True)
    name = String(required=True)
    unit_of_measure = String(required=True)
    min_stock = Float(required=True)
    max_stock = Float()
    registered_at = DateTime(required=True)


@bistro.event(part_of="Ingredient")
class StockMovementRecorded:
    """A movement was applied to the ingredient's running balance."""

    __version__ = 1

    ingredient_id = Identifier(required=True)
    movement_id = Identifier(required=True)
    kind = String(required=True)  # In, Out, Adjustment, Spoilage, Reservation, Release
    quantity = Float(required=True)  # Signed: negative for debits
    reason = String(required=True)
    actor_id = String(required=True)
    order_id = Identifier()  # Set for Reservation and Release
    previous_stock = Float(required=True)
    new_stock = Float(required=True)
    recorded_at = DateTime(required=True)


@bistro.event(part_of="Ingredient")
class StockStatusChanged:
    """The derived stock status crossed a threshold (low, out, or recovery)."""

    __version__ = 1

    ingredient_id = Identifier(required=True)
    name = String(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    current_stock = Float(required=True)
    min_stock = Float(required=True)
    changed_at = DateTime(required=True)


@bistro.event(part_of="Ingredient")
class StockThresholdsUpdated:
    __version__ = 1

    ingredient_id = Identifier(required=True)
    min_stock = Float(required=True)
    max_stock = Float()
    updated_at = DateTime(required=True)
