"""Order aggregate (Event Sourced) — the unit of consistency for stock commitment.

All state changes are captured as domain events and every field is set by the
@apply handlers, so the live aggregate and a replayed one go through exactly
the same code.

State Machine:
    PENDING → CONFIRMED → PREPARING → READY → COMPLETED
    CANCELLED (from PENDING, CONFIRMED, PREPARING)
    COMPLETED and CANCELLED are terminal.

Payment status runs alongside the order status:
    UNPAID/FAILED → AWAITING_AUTHORIZATION → PAID → REFUNDED
    AWAITING_AUTHORIZATION → FAILED | UNPAID (cancelled or expired authorization)

Lines are editable only while the order is Pending. Each line carries a JSON
snapshot of the recipe it was ordered with; confirmation reserves stock from
that snapshot, never from the current menu.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from protean import apply
from protean.exceptions import ValidationError
from protean.fields import (
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from bistro.domain import bistro
from bistro.errors import InvalidOrderState, InvalidTransition
from bistro.ingredient.ingredient import HoldStatus
from bistro.order.events import (
    DiscountApplied,
    LineAdded,
    LineRemoved,
    LineStatusChanged,
    OrderCancelled,
    OrderCompleted,
    OrderConfirmed,
    OrderPaid,
    OrderPaymentFailed,
    OrderPaymentRefunded,
    OrderPaymentRequested,
    OrderPaymentReset,
    OrderPlaced,
    OrderPreparing,
    OrderReady,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentStatus(Enum):
    UNPAID = "Unpaid"
    AWAITING_AUTHORIZATION = "Awaiting_Authorization"
    PAID = "Paid"
    REFUNDED = "Refunded"
    FAILED = "Failed"


class LineStatus(Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.READY, OrderStatus.CANCELLED},
    OrderStatus.READY: {OrderStatus.COMPLETED},
    OrderStatus.COMPLETED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}

# States from which cancellation is allowed
_CANCELLABLE_STATES = {
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
}

_LINE_TRANSITIONS = {
    LineStatus.PENDING: {LineStatus.PREPARING, LineStatus.READY},
    LineStatus.PREPARING: {LineStatus.READY},
    LineStatus.READY: set(),
}

# Order states in which the kitchen may work on lines
_KITCHEN_STATES = {OrderStatus.CONFIRMED, OrderStatus.PREPARING}

# Payment states from which a new authorization may be opened
_PAYABLE_STATUSES = {PaymentStatus.UNPAID, PaymentStatus.FAILED}


def compute_pricing(lines, discount=0.0, tax_rate=0.0):
    """Return (subtotal, discount, tax, total) for (unit_price, quantity) pairs.

    The discount is capped at the subtotal so the total can never go negative.
    """
    subtotal = round(sum(unit_price * quantity for unit_price, quantity in lines), 2)
    discount = round(min(discount or 0.0, subtotal), 2)
    tax = round((subtotal - discount) * (tax_rate or 0.0), 2)
    total = round(subtotal - discount + tax, 2)
    return subtotal, discount, tax, total


def _validate_line_data(data):
    quantity = data.get("quantity")
    if not isinstance(quantity, int) or quantity < 1:
        raise ValidationError({"quantity": ["Quantity must be at least 1"]})
    if data.get("unit_price") is None or data["unit_price"] < 0:
        raise ValidationError({"unit_price": ["Unit price cannot be negative"]})


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@bistro.value_object(part_of="Order")
class OrderPricing:
    """Totals derived from the lines; never set by hand."""

    subtotal = Float(default=0.0)
    discount = Float(default=0.0)
    tax = Float(default=0.0)
    total = Float(default=0.0)
    tax_rate = Float(default=0.0)
    currency = String(max_length=3, default="USD")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@bistro.entity(part_of="Order")
class OrderLine:
    """One menu item on the order, with the price and recipe it was ordered at."""

    menu_item_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    customizations = String(max_length=500)
    line_status = String(
        choices=LineStatus,
        default=LineStatus.PENDING.value,
    )
    recipe = Text()  # JSON snapshot of the recipe requirements

    def recipe_requirements(self) -> list[dict]:
        return json.loads(self.recipe) if self.recipe else []


@bistro.entity(part_of="Order")
class OrderHold:
    """Stock reserved on one ingredient when the order was confirmed."""

    ingredient_id = Identifier(required=True)
    quantity = Float(required=True)
    status = String(
        choices=HoldStatus,
        default=HoldStatus.HELD.value,
    )


# ---------------------------------------------------------------------------
# Aggregate Root (Event Sourced)
# ---------------------------------------------------------------------------
@bistro.aggregate(is_event_sourced=True)
class Order:
    order_number = String(required=True, max_length=20)
    status = String(
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    payment_status = String(
        choices=PaymentStatus,
        default=PaymentStatus.UNPAID.value,
    )
    lines = HasMany(OrderLine)
    holds = HasMany(OrderHold)
    pricing = ValueObject(OrderPricing)
    active_authorization_id = Identifier()
    settled_authorization_id = Identifier()
    cancellation_reason = String(max_length=500)
    cancelled_by = String(max_length=100)
    created_at = DateTime()
    confirmed_at = DateTime()
    ready_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()
    paid_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, order_number, lines_data, discount=0.0, tax_rate=0.0, currency="USD"):
        """Open a new Pending order.

        Args:
            order_number: Human-presentable number, ``YYMMDD-XXXXXX``.
            lines_data: List of dicts with menu_item_id, name, quantity,
                        unit_price, customizations and recipe (list of
                        requirement dicts).
            discount: Flat discount, at most the subtotal.
            tax_rate: Fraction applied to the discounted subtotal.
        """
        if not lines_data:
            raise ValidationError({"lines": ["An order needs at least one line"]})
        if (discount or 0.0) < 0:
            raise ValidationError({"discount": ["Discount cannot be negative"]})
        if (tax_rate or 0.0) < 0:
            raise ValidationError({"tax_rate": ["Tax rate cannot be negative"]})

        # Pre-generate line IDs for deterministic replay
        lines = []
        for data in lines_data:
            _validate_line_data(data)
            lines.append(
                {
                    "id": str(uuid4()),
                    "menu_item_id": str(data["menu_item_id"]),
                    "name": data["name"],
                    "quantity": data["quantity"],
                    "unit_price": float(data["unit_price"]),
                    "customizations": data.get("customizations"),
                    "recipe": json.dumps(data.get("recipe") or []),
                }
            )

        pairs = [(line["unit_price"], line["quantity"]) for line in lines]
        subtotal, applied_discount, tax, total = compute_pricing(pairs, discount, tax_rate)
        if (discount or 0.0) > subtotal:
            raise ValidationError({"discount": ["Discount cannot exceed the subtotal"]})

        order = cls._create_new()
        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                order_number=order_number,
                lines=json.dumps(lines),
                discount=applied_discount,
                tax_rate=tax_rate or 0.0,
                currency=currency,
                subtotal=subtotal,
                tax=tax,
                total=total,
                placed_at=datetime.now(UTC),
            )
        )
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def total(self) -> float:
        return self.pricing.total if self.pricing else 0.0

    def _assert_can_transition(self, target_status):
        """Validate that the current state allows transition to target."""
        current = self.current_status
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise InvalidTransition(current.value, target_status.value)

    def _assert_pending(self, action):
        if self.current_status != OrderStatus.PENDING:
            raise InvalidOrderState(self.id, self.status, action)

    def _line(self, line_id):
        line = next((ln for ln in self.lines if str(ln.id) == str(line_id)), None)
        if line is None:
            raise ValidationError({"line_id": [f"Line {line_id} not found"]})
        return line

    def demand_lines(self) -> list[tuple[list[dict], int]]:
        """(recipe snapshot, quantity) for every line, for demand aggregation."""
        return [(line.recipe_requirements(), line.quantity) for line in self.lines]

    def ingredient_ids(self) -> list[str]:
        ids = {str(req["ingredient_id"]) for recipe, _ in self.demand_lines() for req in recipe}
        return sorted(ids)

    def active_holds(self):
        return [h for h in self.holds if h.status == HoldStatus.HELD.value]

    # -------------------------------------------------------------------
    # Line editing (Pending only)
    # -------------------------------------------------------------------
    def add_line(self, menu_item_id, name, quantity, unit_price, recipe=None, customizations=None):
        self._assert_pending("add line")
        _validate_line_data({"quantity": quantity, "unit_price": unit_price})

        pairs = [(ln.unit_price, ln.quantity) for ln in self.lines] + [(float(unit_price), quantity)]
        subtotal, _, tax, total = compute_pricing(pairs, self.pricing.discount, self.pricing.tax_rate)

        line_id = str(uuid4())
        self.raise_(
            LineAdded(
                order_id=str(self.id),
                line_id=line_id,
                menu_item_id=str(menu_item_id),
                name=name,
                quantity=quantity,
                unit_price=float(unit_price),
                customizations=customizations,
                recipe=json.dumps(recipe or []),
                subtotal=subtotal,
                tax=tax,
                total=total,
            )
        )
        return line_id

    def remove_line(self, line_id):
        self._assert_pending("remove line")
        line = self._line(line_id)

        pairs = [(ln.unit_price, ln.quantity) for ln in self.lines if ln is not line]
        subtotal, _, tax, total = compute_pricing(pairs, self.pricing.discount, self.pricing.tax_rate)
        self.raise_(
            LineRemoved(
                order_id=str(self.id),
                line_id=str(line_id),
                subtotal=subtotal,
                tax=tax,
                total=total,
            )
        )

    def apply_discount(self, discount):
        self._assert_pending("apply discount")
        if discount is None or discount < 0:
            raise ValidationError({"discount": ["Discount cannot be negative"]})
        if discount > self.pricing.subtotal:
            raise ValidationError({"discount": ["Discount cannot exceed the subtotal"]})

        pairs = [(ln.unit_price, ln.quantity) for ln in self.lines]
        subtotal, discount, tax, total = compute_pricing(pairs, discount, self.pricing.tax_rate)
        self.raise_(
            DiscountApplied(
                order_id=str(self.id),
                discount=discount,
                subtotal=subtotal,
                tax=tax,
                total=total,
            )
        )

    # -------------------------------------------------------------------
    # Order lifecycle transitions
    # -------------------------------------------------------------------
    def assert_can_confirm(self):
        self._assert_can_transition(OrderStatus.CONFIRMED)
        if not self.lines:
            raise ValidationError({"lines": ["Cannot confirm an order without lines"]})

    def confirm(self, holds):
        """Commit the order with the stock reserved for it.

        ``holds`` lists one {"ingredient_id", "quantity"} per reserved
        ingredient. The caller records the matching Reservation movements in
        the same unit of work.
        """
        self.assert_can_confirm()
        self.raise_(
            OrderConfirmed(
                order_id=str(self.id),
                order_number=self.order_number,
                holds=json.dumps(holds),
                total=self.total,
                confirmed_at=datetime.now(UTC),
            )
        )

    def start_preparing(self):
        self._assert_can_transition(OrderStatus.PREPARING)
        self.raise_(OrderPreparing(order_id=str(self.id), started_at=datetime.now(UTC)))

    def mark_ready(self):
        """Move a Preparing order to Ready, marking every outstanding line ready."""
        self._assert_can_transition(OrderStatus.READY)
        now = datetime.now(UTC)
        for line in self.lines:
            if line.line_status != LineStatus.READY.value:
                self.raise_(
                    LineStatusChanged(
                        order_id=str(self.id),
                        line_id=str(line.id),
                        previous_status=line.line_status,
                        new_status=LineStatus.READY.value,
                        changed_at=now,
                    )
                )
        self.raise_(OrderReady(order_id=str(self.id), order_number=self.order_number, ready_at=now))

    def complete(self):
        self._assert_can_transition(OrderStatus.COMPLETED)
        self.raise_(
            OrderCompleted(
                order_id=str(self.id),
                order_number=self.order_number,
                payment_status=self.payment_status,
                completed_at=datetime.now(UTC),
            )
        )

    def cancel(self, reason, cancelled_by):
        """Cancel the order; the caller releases the returned holds in the same unit of work."""
        current = self.current_status
        if current not in _CANCELLABLE_STATES:
            raise InvalidTransition(current.value, OrderStatus.CANCELLED.value)

        released = [{"ingredient_id": str(h.ingredient_id), "quantity": h.quantity} for h in self.active_holds()]
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                order_number=self.order_number,
                previous_status=current.value,
                reason=reason,
                cancelled_by=cancelled_by or "system",
                released_holds=json.dumps(released),
                cancelled_at=datetime.now(UTC),
            )
        )
        return released

    # -------------------------------------------------------------------
    # Kitchen line status
    # -------------------------------------------------------------------
    def start_line(self, line_id):
        self._change_line_status(line_id, LineStatus.PREPARING)

    def mark_line_ready(self, line_id):
        self._change_line_status(line_id, LineStatus.READY)

    def _change_line_status(self, line_id, target):
        if self.current_status not in _KITCHEN_STATES:
            raise InvalidOrderState(self.id, self.status, f"mark line {target.value.lower()}")

        line = self._line(line_id)
        current = LineStatus(line.line_status)
        if target not in _LINE_TRANSITIONS[current]:
            raise InvalidTransition(current.value, target.value)

        now = datetime.now(UTC)
        if self.current_status == OrderStatus.CONFIRMED:
            # First line to leave Pending puts the kitchen to work
            self.raise_(OrderPreparing(order_id=str(self.id), started_at=now))

        self.raise_(
            LineStatusChanged(
                order_id=str(self.id),
                line_id=str(line.id),
                previous_status=current.value,
                new_status=target.value,
                changed_at=now,
            )
        )

        if all(ln.line_status == LineStatus.READY.value for ln in self.lines):
            self.raise_(OrderReady(order_id=str(self.id), order_number=self.order_number, ready_at=now))

    # -------------------------------------------------------------------
    # Payment status
    # -------------------------------------------------------------------
    def assert_payable(self):
        if self.current_status == OrderStatus.CANCELLED:
            raise InvalidOrderState(self.id, self.status, "initiate payment")
        if PaymentStatus(self.payment_status) not in _PAYABLE_STATUSES:
            raise InvalidOrderState(self.id, self.payment_status, "initiate payment")

    def request_payment(self, authorization_id, amount, currency):
        self.assert_payable()
        if round(amount, 2) != round(self.total, 2):
            raise ValidationError({"amount": [f"Amount {amount} does not match order total {self.total}"]})

        self.raise_(
            OrderPaymentRequested(
                order_id=str(self.id),
                authorization_id=str(authorization_id),
                amount=amount,
                currency=currency,
                requested_at=datetime.now(UTC),
            )
        )

    def _is_awaiting(self, authorization_id) -> bool:
        return (
            self.payment_status == PaymentStatus.AWAITING_AUTHORIZATION.value
            and str(self.active_authorization_id) == str(authorization_id)
        )

    def settle_payment(self, authorization_id, amount, currency):
        if not self._is_awaiting(authorization_id):
            raise InvalidOrderState(self.id, self.payment_status, "settle payment")

        self.raise_(
            OrderPaid(
                order_id=str(self.id),
                order_number=self.order_number,
                authorization_id=str(authorization_id),
                amount=amount,
                currency=currency,
                paid_at=datetime.now(UTC),
            )
        )

    def fail_payment(self, authorization_id, reason=None):
        if not self._is_awaiting(authorization_id):
            raise InvalidOrderState(self.id, self.payment_status, "fail payment")

        self.raise_(
            OrderPaymentFailed(
                order_id=str(self.id),
                authorization_id=str(authorization_id),
                reason=reason,
                failed_at=datetime.now(UTC),
            )
        )

    def reset_payment(self, authorization_id, reason):
        """Return to Unpaid if ``authorization_id`` is the open one; otherwise a no-op."""
        if not self._is_awaiting(authorization_id):
            return False

        self.raise_(
            OrderPaymentReset(
                order_id=str(self.id),
                authorization_id=str(authorization_id),
                reason=reason,
                reset_at=datetime.now(UTC),
            )
        )
        return True

    def refund_payment(self):
        if self.payment_status != PaymentStatus.PAID.value:
            raise InvalidOrderState(self.id, self.payment_status, "refund payment")

        self.raise_(
            OrderPaymentRefunded(
                order_id=str(self.id),
                authorization_id=self.settled_authorization_id,
                amount=self.total,
                refunded_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # @apply methods — rebuild state during event replay
    # -------------------------------------------------------------------
    def _set_totals(self, subtotal, tax, total, discount=None):
        self.pricing = OrderPricing(
            subtotal=subtotal,
            discount=self.pricing.discount if discount is None else discount,
            tax=tax,
            total=total,
            tax_rate=self.pricing.tax_rate,
            currency=self.pricing.currency,
        )

    @apply
    def _on_order_placed(self, event: OrderPlaced):
        self.id = event.order_id
        self.order_number = event.order_number
        self.status = OrderStatus.PENDING.value
        self.payment_status = PaymentStatus.UNPAID.value
        self.created_at = event.placed_at
        self.updated_at = event.placed_at

        lines_data = json.loads(event.lines) if isinstance(event.lines, str) else []
        self.lines = [OrderLine(**data) for data in lines_data]

        self.pricing = OrderPricing(
            subtotal=event.subtotal,
            discount=event.discount or 0.0,
            tax=event.tax,
            total=event.total,
            tax_rate=event.tax_rate or 0.0,
            currency=event.currency,
        )

    @apply
    def _on_line_added(self, event: LineAdded):
        self.add_lines(
            OrderLine(
                id=event.line_id,
                menu_item_id=event.menu_item_id,
                name=event.name,
                quantity=event.quantity,
                unit_price=event.unit_price,
                customizations=event.customizations,
                recipe=event.recipe,
            )
        )
        self._set_totals(event.subtotal, event.tax, event.total)

    @apply
    def _on_line_removed(self, event: LineRemoved):
        line = next((ln for ln in self.lines if str(ln.id) == str(event.line_id)), None)
        if line:
            self.remove_lines(line)
        self._set_totals(
            event.subtotal,
            event.tax,
            event.total,
            discount=min(self.pricing.discount, event.subtotal),
        )

    @apply
    def _on_discount_applied(self, event: DiscountApplied):
        self._set_totals(event.subtotal, event.tax, event.total, discount=event.discount)

    @apply
    def _on_order_confirmed(self, event: OrderConfirmed):
        self.status = OrderStatus.CONFIRMED.value
        self.confirmed_at = event.confirmed_at
        self.updated_at = event.confirmed_at
        holds_data = json.loads(event.holds) if isinstance(event.holds, str) else []
        self.holds = [
            OrderHold(ingredient_id=h["ingredient_id"], quantity=h["quantity"]) for h in holds_data
        ]

    @apply
    def _on_order_preparing(self, event: OrderPreparing):
        self.status = OrderStatus.PREPARING.value
        self.updated_at = event.started_at

    @apply
    def _on_line_status_changed(self, event: LineStatusChanged):
        line = next((ln for ln in self.lines if str(ln.id) == str(event.line_id)), None)
        if line:
            line.line_status = event.new_status
        self.updated_at = event.changed_at

    @apply
    def _on_order_ready(self, event: OrderReady):
        self.status = OrderStatus.READY.value
        self.ready_at = event.ready_at
        self.updated_at = event.ready_at

    @apply
    def _on_order_completed(self, event: OrderCompleted):
        self.status = OrderStatus.COMPLETED.value
        self.completed_at = event.completed_at
        self.updated_at = event.completed_at

    @apply
    def _on_order_cancelled(self, event: OrderCancelled):
        self.status = OrderStatus.CANCELLED.value
        self.cancellation_reason = event.reason
        self.cancelled_by = event.cancelled_by
        self.cancelled_at = event.cancelled_at
        self.updated_at = event.cancelled_at
        for hold in self.holds:
            hold.status = HoldStatus.RELEASED.value

    @apply
    def _on_payment_requested(self, event: OrderPaymentRequested):
        self.payment_status = PaymentStatus.AWAITING_AUTHORIZATION.value
        self.active_authorization_id = event.authorization_id
        self.updated_at = event.requested_at

    @apply
    def _on_order_paid(self, event: OrderPaid):
        self.payment_status = PaymentStatus.PAID.value
        self.active_authorization_id = None
        self.settled_authorization_id = event.authorization_id
        self.paid_at = event.paid_at
        self.updated_at = event.paid_at

    @apply
    def _on_payment_failed(self, event: OrderPaymentFailed):
        self.payment_status = PaymentStatus.FAILED.value
        self.active_authorization_id = None
        self.updated_at = event.failed_at

    @apply
    def _on_payment_reset(self, event: OrderPaymentReset):
        self.payment_status = PaymentStatus.UNPAID.value
        self.active_authorization_id = None
        self.updated_at = event.reset_at

    @apply
    def _on_payment_refunded(self, event: OrderPaymentRefunded):
        self.payment_status = PaymentStatus.REFUNDED.value
        self.updated_at = event.refunded_at
