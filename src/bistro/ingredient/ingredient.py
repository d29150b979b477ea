"""Ingredient aggregate (Event Sourced) — the ingredient ledger.

Every change to an ingredient's stock is a StockMovementRecorded event and
the balance is rebuilt by folding those events through @apply. The ledger is
append-only: corrections are new Adjustment movements, never edits.

Movement kinds:
    In, Release                   add to the balance
    Out, Spoilage, Reservation    subtract from the balance (never below zero)
    Adjustment                    signed correction supplied by the caller

Reservations and releases name the order they belong to. The aggregate folds
them into per-order holds so a cancelled order gives back exactly what it
reserved. Stock status (Sufficient, Low, Out) is derived from the balance on
every read and is never stored.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import apply
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, HasMany, Identifier, Integer, String

from bistro.domain import bistro
from bistro.errors import InsufficientStock
from bistro.ingredient.events import (
    IngredientRegistered,
    StockMovementRecorded,
    StockStatusChanged,
    StockThresholdsUpdated,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class MovementKind(Enum):
    IN = "In"
    OUT = "Out"
    ADJUSTMENT = "Adjustment"
    SPOILAGE = "Spoilage"
    RESERVATION = "Reservation"
    RELEASE = "Release"


class IngredientStatus(Enum):
    SUFFICIENT = "Sufficient"
    LOW = "Low"
    OUT = "Out"


class HoldStatus(Enum):
    HELD = "Held"
    RELEASED = "Released"


_DEBIT_KINDS = {MovementKind.OUT, MovementKind.SPOILAGE, MovementKind.RESERVATION}
_ORDER_KINDS = {MovementKind.RESERVATION, MovementKind.RELEASE}
_REASON_REQUIRED_KINDS = {MovementKind.ADJUSTMENT, MovementKind.SPOILAGE}


def quantize(value) -> float:
    """Normalize a quantity so repeated folds do not accumulate float noise."""
    return round(float(value), 6)


def stock_status(current_stock, min_stock) -> IngredientStatus:
    """Pure projection of a balance onto the status thresholds."""
    if current_stock <= 0:
        return IngredientStatus.OUT
    if current_stock <= (min_stock or 0.0):
        return IngredientStatus.LOW
    return IngredientStatus.SUFFICIENT


def signed_quantity(kind: MovementKind, quantity) -> float:
    if kind == MovementKind.ADJUSTMENT:
        return quantize(quantity)
    if kind in _DEBIT_KINDS:
        return -quantize(quantity)
    return quantize(quantity)


def _validate_thresholds(min_stock, max_stock):
    if min_stock is None or min_stock < 0:
        raise ValidationError({"min_stock": ["Minimum stock must be zero or more"]})
    if max_stock is not None and max_stock < min_stock:
        raise ValidationError({"max_stock": ["Maximum stock cannot be below minimum stock"]})


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@bistro.entity(part_of="Ingredient")
class StockHold:
    """Stock reserved for one order and not yet released.

    A hold is opened by the order's Reservation movement and closed by
    Release movements. Holds of completed orders stay Held: the reserved
    stock was consumed.
    """

    order_id = Identifier(required=True)
    quantity = Float(required=True)
    status = String(
        choices=HoldStatus,
        default=HoldStatus.HELD.value,
    )
    held_at = DateTime()


# ---------------------------------------------------------------------------
# Aggregate Root (Event Sourced)
# ---------------------------------------------------------------------------
@bistro.aggregate(is_event_sourced=True)
class Ingredient:
    """Event-sourced ledger of stock movements for one ingredient."""

    name = String(required=True, max_length=255)
    unit_of_measure = String(required=True, max_length=20)
    current_stock = Float(default=0.0)
    min_stock = Float(default=0.0)
    max_stock = Float()
    movement_count = Integer(default=0)
    holds = HasMany(StockHold)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register(cls, name, unit_of_measure, min_stock=0.0, max_stock=None):
        """Register a new ingredient with an empty ledger.

        Opening stock is recorded afterwards as an In movement so that the
        movement log stays the only source of the balance.
        """
        _validate_thresholds(min_stock, max_stock)

        ingredient = cls._create_new()
        ingredient.raise_(
            IngredientRegistered(
                ingredient_id=str(ingredient.id),
                name=name,
                unit_of_measure=unit_of_measure,
                min_stock=float(min_stock),
                max_stock=float(max_stock) if max_stock is not None else None,
                registered_at=datetime.now(UTC),
            )
        )
        return ingredient

    # -------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------
    @property
    def status(self) -> IngredientStatus:
        return stock_status(self.current_stock or 0.0, self.min_stock)

    def hold_for(self, order_id):
        return next(
            (
                h
                for h in (self.holds or [])
                if str(h.order_id) == str(order_id) and h.status == HoldStatus.HELD.value
            ),
            None,
        )

    def held_for(self, order_id) -> float:
        hold = self.hold_for(order_id)
        return hold.quantity if hold else 0.0

    # -------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------
    def record_movement(self, kind, quantity, reason=None, actor_id="system", order_id=None):
        """Apply one movement to the running balance and return its id.

        Debits that would take the balance below zero raise InsufficientStock
        and leave the ledger untouched.
        """
        kind = MovementKind(kind)

        if kind == MovementKind.ADJUSTMENT:
            if not quantity:
                raise ValidationError({"quantity": ["Adjustment quantity cannot be zero"]})
        elif quantity is None or quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        if kind in _ORDER_KINDS and not order_id:
            raise ValidationError({"order_id": [f"{kind.value} movements must reference an order"]})
        if kind in _REASON_REQUIRED_KINDS and not reason:
            raise ValidationError({"reason": [f"Reason is required for {kind.value.lower()} movements"]})

        previous_stock = quantize(self.current_stock or 0.0)
        delta = signed_quantity(kind, quantity)
        new_stock = quantize(previous_stock + delta)

        if new_stock < 0:
            if kind in _DEBIT_KINDS:
                raise InsufficientStock(self.id, required=quantize(quantity), available=previous_stock)
            raise ValidationError({"quantity": [f"Adjustment would result in negative stock: {new_stock}"]})

        if kind == MovementKind.RELEASE:
            held = quantize(self.held_for(order_id))
            if quantize(quantity) > held:
                raise ValidationError(
                    {"quantity": [f"Cannot release {quantity}: only {held} held for order {order_id}"]}
                )

        previous_status = self.status
        movement_id = str(uuid4())
        now = datetime.now(UTC)

        self.raise_(
            StockMovementRecorded(
                ingredient_id=str(self.id),
                movement_id=movement_id,
                kind=kind.value,
                quantity=delta,
                reason=reason or kind.value,
                actor_id=actor_id or "system",
                order_id=str(order_id) if order_id else None,
                previous_stock=previous_stock,
                new_stock=new_stock,
                recorded_at=now,
            )
        )
        self._raise_if_status_changed(previous_status, now)
        return movement_id

    def update_thresholds(self, min_stock, max_stock=None):
        _validate_thresholds(min_stock, max_stock)

        previous_status = self.status
        now = datetime.now(UTC)
        self.raise_(
            StockThresholdsUpdated(
                ingredient_id=str(self.id),
                min_stock=float(min_stock),
                max_stock=float(max_stock) if max_stock is not None else None,
                updated_at=now,
            )
        )
        self._raise_if_status_changed(previous_status, now)

    def _raise_if_status_changed(self, previous_status, now):
        if self.status == previous_status:
            return
        self.raise_(
            StockStatusChanged(
                ingredient_id=str(self.id),
                name=self.name,
                previous_status=previous_status.value,
                new_status=self.status.value,
                current_stock=self.current_stock,
                min_stock=self.min_stock,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # @apply methods — rebuild state during event replay
    # -------------------------------------------------------------------
    @apply
    def _on_ingredient_registered(self, event: IngredientRegistered):
        self.id = event.ingredient_id
        self.name = event.name
        self.unit_of_measure = event.unit_of_measure
        self.min_stock = event.min_stock
        self.max_stock = event.max_stock
        self.current_stock = 0.0
        self.movement_count = 0
        self.created_at = event.registered_at
        self.updated_at = event.registered_at

    @apply
    def _on_stock_movement_recorded(self, event: StockMovementRecorded):
        self.current_stock = event.new_stock
        self.movement_count = (self.movement_count or 0) + 1
        self.updated_at = event.recorded_at

        kind = MovementKind(event.kind)
        if kind == MovementKind.RESERVATION:
            hold = self.hold_for(event.order_id)
            if hold:
                hold.quantity = quantize(hold.quantity - event.quantity)
            else:
                self.add_holds(
                    StockHold(
                        id=event.movement_id,
                        order_id=event.order_id,
                        quantity=quantize(-event.quantity),
                        held_at=event.recorded_at,
                    )
                )
        elif kind == MovementKind.RELEASE:
            hold = self.hold_for(event.order_id)
            if hold:
                hold.quantity = quantize(hold.quantity - event.quantity)
                if hold.quantity <= 0:
                    hold.status = HoldStatus.RELEASED.value

    @apply
    def _on_stock_thresholds_updated(self, event: StockThresholdsUpdated):
        self.min_stock = event.min_stock
        self.max_stock = event.max_stock
        self.updated_at = event.updated_at

    @apply
    def _on_stock_status_changed(self, event: StockStatusChanged):  # noqa: ARG002
        # Notification only: status is derived from the balance
        pass
