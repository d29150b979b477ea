"""Relay of domain events to the notification dispatcher.

Topics:
    stock.threshold_crossed   an ingredient went Low or Out
    stock.recovered           an ingredient is back to Sufficient
    order.ready               every line of an order is ready
    payment.settled           an order was paid
"""

from protean.utils.mixins import handle

from bistro.dispatch import get_dispatcher
from bistro.domain import bistro
from bistro.ingredient.events import StockStatusChanged
from bistro.ingredient.ingredient import Ingredient, IngredientStatus
from bistro.order.events import OrderPaid, OrderReady
from bistro.order.order import Order


@bistro.event_handler(part_of=Ingredient)
class StockAlertRelay:
    @handle(StockStatusChanged)
    def on_stock_status_changed(self, event: StockStatusChanged) -> None:
        topic = (
            "stock.recovered"
            if event.new_status == IngredientStatus.SUFFICIENT.value
            else "stock.threshold_crossed"
        )
        get_dispatcher().publish(
            topic,
            {
                "ingredient_id": str(event.ingredient_id),
                "name": event.name,
                "previous_status": event.previous_status,
                "new_status": event.new_status,
                "current_stock": event.current_stock,
                "min_stock": event.min_stock,
            },
        )


@bistro.event_handler(part_of=Order)
class OrderNotificationRelay:
    @handle(OrderReady)
    def on_order_ready(self, event: OrderReady) -> None:
        get_dispatcher().publish(
            "order.ready",
            {"order_id": str(event.order_id), "order_number": event.order_number},
        )

    @handle(OrderPaid)
    def on_order_paid(self, event: OrderPaid) -> None:
        get_dispatcher().publish(
            "payment.settled",
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "authorization_id": str(event.authorization_id),
                "amount": event.amount,
                "currency": event.currency,
            },
        )
