"""Order board — one row per order for kitchen and cashier listings."""

import json

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
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
from bistro.order.order import Order
from bistro.shared.queries import fetch_all


@bistro.projection
class OrderBoard:
    order_id = Identifier(identifier=True, required=True)
    order_number = String(required=True)
    status = String(required=True)
    payment_status = String(required=True)
    line_count = Integer(default=0)
    ready_lines = Integer(default=0)
    subtotal = Float(default=0.0)
    discount = Float(default=0.0)
    tax = Float(default=0.0)
    total = Float(default=0.0)
    currency = String(max_length=3)
    active_authorization_id = Identifier()
    placed_at = DateTime()
    updated_at = DateTime()


def _update(order_id, **changes):
    repo = current_domain.repository_for(OrderBoard)
    row = repo.get(order_id)
    for field, value in changes.items():
        setattr(row, field, value)
    repo.add(row)
    return row


@bistro.projector(projector_for=OrderBoard, aggregates=[Order])
class OrderBoardProjector:
    @on(OrderPlaced)
    def on_order_placed(self, event):
        lines = json.loads(event.lines) if isinstance(event.lines, str) else []
        current_domain.repository_for(OrderBoard).add(
            OrderBoard(
                order_id=event.order_id,
                order_number=event.order_number,
                status="Pending",
                payment_status="Unpaid",
                line_count=len(lines),
                ready_lines=0,
                subtotal=event.subtotal,
                discount=event.discount or 0.0,
                tax=event.tax,
                total=event.total,
                currency=event.currency,
                placed_at=event.placed_at,
                updated_at=event.placed_at,
            )
        )

    @on(LineAdded)
    def on_line_added(self, event):
        repo = current_domain.repository_for(OrderBoard)
        row = repo.get(event.order_id)
        _update(
            event.order_id,
            line_count=(row.line_count or 0) + 1,
            subtotal=event.subtotal,
            tax=event.tax,
            total=event.total,
        )

    @on(LineRemoved)
    def on_line_removed(self, event):
        repo = current_domain.repository_for(OrderBoard)
        row = repo.get(event.order_id)
        _update(
            event.order_id,
            line_count=max((row.line_count or 0) - 1, 0),
            subtotal=event.subtotal,
            discount=min(row.discount or 0.0, event.subtotal),
            tax=event.tax,
            total=event.total,
        )

    @on(DiscountApplied)
    def on_discount_applied(self, event):
        _update(event.order_id, discount=event.discount, subtotal=event.subtotal, tax=event.tax, total=event.total)

    @on(OrderConfirmed)
    def on_order_confirmed(self, event):
        _update(event.order_id, status="Confirmed", updated_at=event.confirmed_at)

    @on(OrderPreparing)
    def on_order_preparing(self, event):
        _update(event.order_id, status="Preparing", updated_at=event.started_at)

    @on(LineStatusChanged)
    def on_line_status_changed(self, event):
        if event.new_status != "Ready":
            return
        repo = current_domain.repository_for(OrderBoard)
        row = repo.get(event.order_id)
        _update(event.order_id, ready_lines=(row.ready_lines or 0) + 1, updated_at=event.changed_at)

    @on(OrderReady)
    def on_order_ready(self, event):
        _update(event.order_id, status="Ready", updated_at=event.ready_at)

    @on(OrderCompleted)
    def on_order_completed(self, event):
        _update(event.order_id, status="Completed", updated_at=event.completed_at)

    @on(OrderCancelled)
    def on_order_cancelled(self, event):
        _update(event.order_id, status="Cancelled", updated_at=event.cancelled_at)

    @on(OrderPaymentRequested)
    def on_payment_requested(self, event):
        _update(
            event.order_id,
            payment_status="Awaiting_Authorization",
            active_authorization_id=event.authorization_id,
            updated_at=event.requested_at,
        )

    @on(OrderPaid)
    def on_order_paid(self, event):
        _update(event.order_id, payment_status="Paid", active_authorization_id=None, updated_at=event.paid_at)

    @on(OrderPaymentFailed)
    def on_payment_failed(self, event):
        _update(event.order_id, payment_status="Failed", active_authorization_id=None, updated_at=event.failed_at)

    @on(OrderPaymentReset)
    def on_payment_reset(self, event):
        _update(event.order_id, payment_status="Unpaid", active_authorization_id=None, updated_at=event.reset_at)

    @on(OrderPaymentRefunded)
    def on_payment_refunded(self, event):
        _update(event.order_id, payment_status="Refunded", updated_at=event.refunded_at)


def find_by_order_number(order_number):
    rows = current_domain.repository_for(OrderBoard)._dao.query.filter(order_number=order_number).all().items
    return rows[0] if rows else None


def board(status=None):
    query = current_domain.repository_for(OrderBoard)._dao.query
    if status:
        query = query.filter(status=status)
    return fetch_all(query.order_by("placed_at"))
