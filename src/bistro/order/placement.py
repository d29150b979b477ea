"""Order placement and Pending-state editing — commands, handler and operations.

Placing an order snapshots each menu item's price and recipe. Nothing is
reserved here: stock is committed only by confirmation.
"""

import json
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from bistro.config import get_settings
from bistro.domain import bistro
from bistro.errors import MenuItemUnavailable
from bistro.menu.menu_item import MenuItem
from bistro.order.order import Order
from bistro.projections.order_board import OrderBoard
from bistro.shared.locks import order_locks
from bistro.shared.retry import retry_on_conflict

logger = structlog.get_logger(__name__)

_ORDER_NUMBER_ATTEMPTS = 5


@bistro.command(part_of="Order")
class PlaceOrder:
    lines = Text(required=True)  # JSON: [{"menu_item_id", "quantity", "customizations"}]
    discount = Float(default=0.0)
    tax_rate = Float()
    currency = String(max_length=3)


@bistro.command(part_of="Order")
class AddLine:
    order_id = Identifier(required=True)
    menu_item_id = Identifier(required=True)
    quantity = Integer(required=True)
    customizations = String(max_length=500)


@bistro.command(part_of="Order")
class RemoveLine:
    order_id = Identifier(required=True)
    line_id = Identifier(required=True)


@bistro.command(part_of="Order")
class ApplyDiscount:
    order_id = Identifier(required=True)
    discount = Float(required=True)


def _order_number_taken(order_number) -> bool:
    board = current_domain.repository_for(OrderBoard)
    return bool(board._dao.query.filter(order_number=order_number).all().items)


def generate_order_number() -> str:
    """``YYMMDD-XXXXXX``: the business date plus six random hex digits."""
    for _ in range(_ORDER_NUMBER_ATTEMPTS):
        candidate = f"{datetime.now(UTC):%y%m%d}-{uuid4().hex[:6].upper()}"
        if not _order_number_taken(candidate):
            return candidate
    raise ValidationError({"order_number": ["Could not allocate a unique order number"]})


def _snapshot_menu_items(requested, currency):
    """Resolve requested lines against the menu, rejecting unknown or unavailable items."""
    repo = current_domain.repository_for(MenuItem)
    unavailable, lines = [], []
    for data in requested:
        menu_item_id = data.get("menu_item_id")
        try:
            item = repo.get(menu_item_id)
        except ObjectNotFoundError:
            unavailable.append(menu_item_id)
            continue
        if not item.is_available:
            unavailable.append(menu_item_id)
            continue
        if item.currency != currency:
            raise ValidationError(
                {"currency": [f"Menu item {menu_item_id} is priced in {item.currency}, order is in {currency}"]}
            )
        lines.append(
            {
                "menu_item_id": str(item.id),
                "name": item.name,
                "quantity": data.get("quantity"),
                "unit_price": item.price,
                "customizations": data.get("customizations"),
                "recipe": item.recipe_snapshot(),
            }
        )

    if unavailable:
        raise MenuItemUnavailable(unavailable)
    return lines


@bistro.command_handler(part_of=Order)
class OrderPlacementHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        settings = get_settings()
        currency = command.currency or settings.DEFAULT_CURRENCY
        tax_rate = command.tax_rate if command.tax_rate is not None else settings.DEFAULT_TAX_RATE

        requested = json.loads(command.lines) if isinstance(command.lines, str) else command.lines
        lines = _snapshot_menu_items(requested or [], currency)

        order = Order.place(
            order_number=generate_order_number(),
            lines_data=lines,
            discount=command.discount or 0.0,
            tax_rate=tax_rate,
            currency=currency,
        )
        current_domain.repository_for(Order).add(order)
        logger.info("Order placed", order_id=str(order.id), order_number=order.order_number, total=order.total)
        return str(order.id)

    @handle(AddLine)
    def add_line(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        (line,) = _snapshot_menu_items(
            [
                {
                    "menu_item_id": command.menu_item_id,
                    "quantity": command.quantity,
                    "customizations": command.customizations,
                }
            ],
            order.pricing.currency,
        )
        line_id = order.add_line(**line)
        repo.add(order)
        return line_id

    @handle(RemoveLine)
    def remove_line(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.remove_line(command.line_id)
        repo.add(order)

    @handle(ApplyDiscount)
    def apply_discount(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.apply_discount(command.discount)
        repo.add(order)


def place_order(lines, discount=0.0, tax_rate=None, currency=None):
    """Open a Pending order from ``[{"menu_item_id", "quantity", "customizations"}]``."""
    return current_domain.process(
        PlaceOrder(
            lines=json.dumps(list(lines)),
            discount=discount,
            tax_rate=tax_rate,
            currency=currency,
        ),
        asynchronous=False,
    )


@retry_on_conflict()
def add_line(order_id, menu_item_id, quantity, customizations=None):
    with order_locks.hold(order_id):
        return current_domain.process(
            AddLine(
                order_id=order_id,
                menu_item_id=menu_item_id,
                quantity=quantity,
                customizations=customizations,
            ),
            asynchronous=False,
        )


@retry_on_conflict()
def remove_line(order_id, line_id):
    with order_locks.hold(order_id):
        current_domain.process(RemoveLine(order_id=order_id, line_id=line_id), asynchronous=False)


@retry_on_conflict()
def apply_discount(order_id, discount):
    with order_locks.hold(order_id):
        current_domain.process(ApplyDiscount(order_id=order_id, discount=discount), asynchronous=False)
