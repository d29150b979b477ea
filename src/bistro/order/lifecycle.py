"""Order lifecycle — advance, kitchen line status, cancellation and refund.

Cancellation releases every hold the order still has with matching Release
movements, and cancels an open payment authorization, in the same unit of
work as the OrderCancelled event. The gateway is told about the cancelled
authorization only after the locks are released.
"""

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.errors import InvalidTransition
from bistro.ingredient.ingredient import Ingredient, MovementKind, quantize
from bistro.order.confirmation import confirm_order
from bistro.order.order import Order, OrderStatus
from bistro.payment.authorization import PaymentAuthorization
from bistro.payment.initiation import cancel_at_gateway
from bistro.payment.watcher import get_watcher
from bistro.shared.locks import ingredient_locks, order_locks
from bistro.shared.retry import retry_on_conflict

logger = structlog.get_logger(__name__)


@bistro.command(part_of="Order")
class AdvanceOrder:
    order_id = Identifier(required=True)
    target_status = String(required=True, choices=OrderStatus)


@bistro.command(part_of="Order")
class StartLine:
    order_id = Identifier(required=True)
    line_id = Identifier(required=True)


@bistro.command(part_of="Order")
class MarkLineReady:
    order_id = Identifier(required=True)
    line_id = Identifier(required=True)


@bistro.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    cancelled_by = String(default="system", max_length=100)


@bistro.command(part_of="Order")
class RefundOrderPayment:
    order_id = Identifier(required=True)


@bistro.command_handler(part_of=Order)
class OrderLifecycleHandler:
    @handle(AdvanceOrder)
    def advance_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        target = OrderStatus(command.target_status)
        actions = {
            OrderStatus.PREPARING: order.start_preparing,
            OrderStatus.READY: order.mark_ready,
            OrderStatus.COMPLETED: order.complete,
        }
        action = actions.get(target)
        if action is None:
            raise InvalidTransition(order.status, target.value)
        action()

        repo.add(order)
        return order.status

    @handle(StartLine)
    def start_line(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.start_line(command.line_id)
        repo.add(order)
        return order.status

    @handle(MarkLineReady)
    def mark_line_ready(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_line_ready(command.line_id)
        repo.add(order)
        return order.status

    @handle(CancelOrder)
    def cancel_order(self, command):
        order_repo = current_domain.repository_for(Order)
        ingredient_repo = current_domain.repository_for(Ingredient)

        order = order_repo.get(command.order_id)
        authorization_id = order.active_authorization_id
        released = order.cancel(command.reason, command.cancelled_by)

        for hold in released:
            ingredient = ingredient_repo.get(hold["ingredient_id"])
            quantity = quantize(min(hold["quantity"], ingredient.held_for(order.id)))
            if quantity <= 0:
                continue
            ingredient.record_movement(
                MovementKind.RELEASE,
                quantity,
                reason=f"Order {order.order_number} cancelled",
                actor_id=command.cancelled_by,
                order_id=str(order.id),
            )
            ingredient_repo.add(ingredient)

        cancelled_authorization = None
        if authorization_id:
            auth_repo = current_domain.repository_for(PaymentAuthorization)
            authorization = auth_repo.get(authorization_id)
            if not authorization.is_terminal:
                authorization.cancel("order cancelled")
                order.reset_payment(authorization.id, "order cancelled")
                auth_repo.add(authorization)
                cancelled_authorization = {
                    "authorization_id": str(authorization.id),
                    "external_reference": authorization.external_reference,
                }

        order_repo.add(order)
        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            released=len(released),
            cancelled_authorization=bool(cancelled_authorization),
        )
        return {
            "order_id": str(order.id),
            "status": order.status,
            "released_holds": released,
            "cancelled_authorization": cancelled_authorization,
        }

    @handle(RefundOrderPayment)
    def refund_order_payment(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.refund_payment()
        repo.add(order)
        return order.payment_status


def _process_locked(order_id, command):
    with order_locks.hold(order_id):
        return current_domain.process(command, asynchronous=False)


@retry_on_conflict()
def start_line(order_id, line_id):
    return _process_locked(order_id, StartLine(order_id=order_id, line_id=line_id))


@retry_on_conflict()
def mark_line_ready(order_id, line_id):
    return _process_locked(order_id, MarkLineReady(order_id=order_id, line_id=line_id))


@retry_on_conflict()
def refund_order_payment(order_id):
    return _process_locked(order_id, RefundOrderPayment(order_id=order_id))


@retry_on_conflict()
def _cancel_locked(order_id, reason, cancelled_by):
    with order_locks.hold(order_id):
        order = current_domain.repository_for(Order).get(order_id)
        ingredient_ids = [str(h.ingredient_id) for h in order.active_holds()]
        with ingredient_locks.hold(*ingredient_ids):
            return current_domain.process(
                CancelOrder(order_id=order_id, reason=reason, cancelled_by=cancelled_by),
                asynchronous=False,
            )


def cancel_order(order_id, reason, cancelled_by="system"):
    """Cancel the order, release its stock and void any open payment authorization."""
    outcome = _cancel_locked(order_id, reason, cancelled_by)

    cancelled = outcome["cancelled_authorization"]
    if cancelled:
        watcher = get_watcher()
        if watcher:
            watcher.cancel(cancelled["authorization_id"])
        cancel_at_gateway(cancelled["external_reference"])
    return outcome


def advance_order(order_id, target, reason=None, actor_id="system"):
    """Move the order to ``target``; returns the resulting status.

    Confirmed and Cancelled are routed through confirmation and cancellation
    so stock is reserved or released on the way.
    """
    try:
        target = OrderStatus(target)
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status: {target}"]}) from None

    if target == OrderStatus.CONFIRMED:
        return confirm_order(order_id, actor_id=actor_id)["status"]
    if target == OrderStatus.CANCELLED:
        return cancel_order(order_id, reason or "cancelled", cancelled_by=actor_id)["status"]

    return _advance_locked(order_id, target.value)


@retry_on_conflict()
def _advance_locked(order_id, target_status):
    return _process_locked(order_id, AdvanceOrder(order_id=order_id, target_status=target_status))
