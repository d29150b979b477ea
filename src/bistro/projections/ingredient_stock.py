"""Ingredient stock — balance, holds and derived status per ingredient."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.ingredient.events import (
    IngredientRegistered,
    StockMovementRecorded,
    StockThresholdsUpdated,
)
from bistro.ingredient.ingredient import Ingredient, MovementKind, quantize, stock_status


@bistro.projection
class IngredientStock:
    ingredient_id = Identifier(identifier=True, required=True)
    name = String(required=True)
    unit_of_measure = String(required=True)
    current_stock = Float(default=0.0)
    held = Float(default=0.0)  # Reserved for orders that have not released it
    min_stock = Float(default=0.0)
    max_stock = Float()
    status = String(required=True)
    movement_count = Integer(default=0)
    updated_at = DateTime()


def _refresh_status(row):
    row.status = stock_status(row.current_stock, row.min_stock).value


@bistro.projector(projector_for=IngredientStock, aggregates=[Ingredient])
class IngredientStockProjector:
    @on(IngredientRegistered)
    def on_ingredient_registered(self, event):
        current_domain.repository_for(IngredientStock).add(
            IngredientStock(
                ingredient_id=event.ingredient_id,
                name=event.name,
                unit_of_measure=event.unit_of_measure,
                current_stock=0.0,
                held=0.0,
                min_stock=event.min_stock,
                max_stock=event.max_stock,
                status=stock_status(0.0, event.min_stock).value,
                movement_count=0,
                updated_at=event.registered_at,
            )
        )

    @on(StockMovementRecorded)
    def on_stock_movement_recorded(self, event):
        repo = current_domain.repository_for(IngredientStock)
        row = repo.get(event.ingredient_id)
        row.current_stock = event.new_stock
        row.movement_count = (row.movement_count or 0) + 1
        if event.kind in (MovementKind.RESERVATION.value, MovementKind.RELEASE.value):
            # Reservation quantities are negative, releases positive
            row.held = max(quantize((row.held or 0.0) - event.quantity), 0.0)
        row.updated_at = event.recorded_at
        _refresh_status(row)
        repo.add(row)

    @on(StockThresholdsUpdated)
    def on_stock_thresholds_updated(self, event):
        repo = current_domain.repository_for(IngredientStock)
        row = repo.get(event.ingredient_id)
        row.min_stock = event.min_stock
        row.max_stock = event.max_stock
        row.updated_at = event.updated_at
        _refresh_status(row)
        repo.add(row)
