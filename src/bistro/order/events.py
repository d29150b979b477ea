"""Domain events for the Order aggregate.

Lines, holds and pricing travel as JSON text so a replay rebuilds the order
exactly as it was, including the recipe snapshot each line was placed with.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from bistro.domain import bistro


@bistro.event(part_of="Order")
class OrderPlaced:
    """A new order was opened in Pending state."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    lines = Text(required=True)  # JSON: list of line dicts with ids and recipes
    discount = Float(default=0.0)
    tax_rate = Float(default=0.0)
    currency = String(required=True)
    subtotal = Float(required=True)
    tax = Float(required=True)
    total = Float(required=True)
    placed_at = DateTime(required=True)


@bistro.event(part_of="Order")
class LineAdded:
    __version__ = 1

    order_id = Identifier(required=True)
    line_id = Identifier(required=True)
    menu_item_id = Identifier(required=True)
    name = String(required=True)
    quantity = Integer(required=True)
    unit_price = Float(required=True)
    customizations = String()
    recipe = Text()  # JSON
    subtotal = Float(required=True)
    tax = Float(required=True)
    total = Float(required=True)


@bistro.event(part_of="Order")
class LineRemoved:
    __version__ = 1

    order_id = Identifier(required=True)
    line_id = Identifier(required=True)
    subtotal = Float(required=True)
    tax = Float(required=True)
    total = Float(required=True)


@bistro.event(part_of="Order")
class DiscountApplied:
    __version__ = 1

    order_id = Identifier(required=True)
    discount = Float(required=True)
    subtotal = Float(required=True)
    tax = Float(required=True)
    total = Float(required=True)


@bistro.event(part_of="Order")
class OrderConfirmed:
    """Stock for every line was reserved and the order is committed."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    holds = Text(required=True)  # JSON: [{"ingredient_id", "quantity"}]
    total = Float(required=True)
    confirmed_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPreparing:
    __version__ = 1

    order_id = Identifier(required=True)
    started_at = DateTime(required=True)


@bistro.event(part_of="Order")
class LineStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    line_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderReady:
    """Every line is ready; the order can be served."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    ready_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderCompleted:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    payment_status = String(required=True)
    completed_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderCancelled:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    previous_status = String(required=True)
    reason = String(required=True)
    cancelled_by = String(required=True)
    released_holds = Text()  # JSON: [{"ingredient_id", "quantity"}]
    cancelled_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPaymentRequested:
    """A payment authorization was opened for the order."""

    __version__ = 1

    order_id = Identifier(required=True)
    authorization_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    requested_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPaid:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    authorization_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    paid_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPaymentFailed:
    __version__ = 1

    order_id = Identifier(required=True)
    authorization_id = Identifier(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPaymentReset:
    """The open authorization ended without payment; the order is Unpaid again."""

    __version__ = 1

    order_id = Identifier(required=True)
    authorization_id = Identifier(required=True)
    reason = String(required=True)  # cancelled, expired, superseded
    reset_at = DateTime(required=True)


@bistro.event(part_of="Order")
class OrderPaymentRefunded:
    __version__ = 1

    order_id = Identifier(required=True)
    authorization_id = Identifier()
    amount = Float(required=True)
    refunded_at = DateTime(required=True)
