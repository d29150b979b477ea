"""Order confirmation — the commit point between an order and the ingredient ledger.

``confirm_order`` takes the order lock, then the locks of every ingredient the
order's recipes touch (sorted, so two confirmations never deadlock), and runs
the handler inside them. The handler re-checks demand against the live
balances, then records one Reservation movement per ingredient and the
OrderConfirmed event in a single unit of work. If any required ingredient is
short nothing is written and the order stays Pending.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.errors import InsufficientStock
from bistro.ingredient.ingredient import Ingredient, MovementKind, quantize
from bistro.ingredient.movement import RecordStockMovement
from bistro.menu.availability import aggregate_demand, evaluate
from bistro.order.order import Order, OrderStatus
from bistro.shared.locks import ingredient_locks, order_locks
from bistro.shared.retry import retry_on_conflict

logger = structlog.get_logger(__name__)


@bistro.command(part_of="Order")
class ConfirmOrder:
    order_id = Identifier(required=True)
    actor_id = String(default="system")


@bistro.command_handler(part_of=Order)
class ConfirmOrderHandler:
    @handle(ConfirmOrder)
    def confirm_order(self, command):
        order_repo = current_domain.repository_for(Order)
        ingredient_repo = current_domain.repository_for(Ingredient)

        order = order_repo.get(command.order_id)
        order.assert_can_confirm()

        demand = aggregate_demand(order.demand_lines())
        ingredients = {}
        for ingredient_id in sorted(demand):
            try:
                ingredients[ingredient_id] = ingredient_repo.get(ingredient_id)
            except ObjectNotFoundError:
                ingredients[ingredient_id] = None

        def stock_of(ingredient_id):
            ingredient = ingredients[ingredient_id]
            return ingredient.current_stock if ingredient else 0.0

        shortages, optional_shortages = evaluate(demand, stock_of)
        if shortages:
            first = shortages[0]
            logger.info(
                "Order confirmation rejected",
                order_id=str(order.id),
                shortages=[s.ingredient_id for s in shortages],
            )
            raise InsufficientStock(
                first.ingredient_id,
                required=first.required,
                available=first.available,
                shortages=[s.to_dict() for s in shortages],
            )

        # Optional ingredients are only reserved when the remainder covers them
        skipped_optional = {s.ingredient_id for s in optional_shortages}
        holds, touched = [], []
        for ingredient_id, entry in sorted(demand.items()):
            ingredient = ingredients[ingredient_id]
            quantity = entry.required
            if ingredient_id not in skipped_optional:
                quantity += entry.optional
            quantity = quantize(quantity)
            if ingredient is None or quantity <= 0:
                continue

            ingredient.record_movement(
                MovementKind.RESERVATION,
                quantity,
                reason=f"Order {order.order_number}",
                actor_id=command.actor_id,
                order_id=str(order.id),
            )
            holds.append({"ingredient_id": ingredient_id, "quantity": quantity})
            touched.append(ingredient)

        order.confirm(holds)

        for ingredient in touched:
            ingredient_repo.add(ingredient)
        order_repo.add(order)

        logger.info(
            "Order confirmed",
            order_id=str(order.id),
            order_number=order.order_number,
            holds=len(holds),
            skipped_optional=sorted(skipped_optional),
        )
        return {
            "order_id": str(order.id),
            "status": order.status,
            "holds": holds,
        }


def _release_orphaned_holds(order_id, ingredient_ids, actor_id):
    """Give back stock reserved for an order whose confirmation did not land.

    Runs while the caller still holds the order and ingredient locks.
    """
    order = current_domain.repository_for(Order).get(order_id)
    if order.status != OrderStatus.PENDING.value:
        return

    ingredient_repo = current_domain.repository_for(Ingredient)
    for ingredient_id in ingredient_ids:
        try:
            held = ingredient_repo.get(ingredient_id).held_for(order_id)
        except ObjectNotFoundError:
            continue
        if held <= 0:
            continue
        try:
            current_domain.process(
                RecordStockMovement(
                    ingredient_id=ingredient_id,
                    kind=MovementKind.RELEASE.value,
                    quantity=held,
                    reason="Confirmation rolled back",
                    actor_id=actor_id,
                    order_id=order_id,
                ),
                asynchronous=False,
            )
            logger.warning("Orphaned hold released", order_id=order_id, ingredient_id=ingredient_id, quantity=held)
        except Exception:
            logger.exception("Failed to release orphaned hold", order_id=order_id, ingredient_id=ingredient_id)


@retry_on_conflict()
def confirm_order(order_id, actor_id="system"):
    """Reserve stock for every line and move the order to Confirmed, or change nothing."""
    with order_locks.hold(order_id):
        ingredient_ids = current_domain.repository_for(Order).get(order_id).ingredient_ids()
        with ingredient_locks.hold(*ingredient_ids):
            try:
                return current_domain.process(
                    ConfirmOrder(order_id=order_id, actor_id=actor_id),
                    asynchronous=False,
                )
            except ValidationError:
                raise
            except Exception:
                logger.exception("Order confirmation failed, compensating", order_id=order_id)
                _release_orphaned_holds(order_id, ingredient_ids, actor_id)
                raise
