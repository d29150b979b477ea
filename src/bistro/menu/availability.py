"""Menu availability resolver.

Evaluates recipe requirements against ingredient balances. ``evaluate`` is a
pure function shared by the advisory ``check_availability`` query and by the
order confirmation, which runs it again under the ingredient locks before
reserving anything.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from bistro.ingredient.ingredient import quantize
from bistro.ingredient.ledger import current_stock
from bistro.menu.menu_item import MenuItem


@dataclass(frozen=True)
class Shortage:
    ingredient_id: str
    required: float
    available: float
    optional: bool = False

    def to_dict(self) -> dict:
        return {
            "ingredient_id": self.ingredient_id,
            "required": self.required,
            "available": self.available,
            "optional": self.optional,
        }


@dataclass(frozen=True)
class Availability:
    menu_item_id: str
    quantity: int
    available: bool
    for_sale: bool
    shortages: list[Shortage] = field(default_factory=list)
    optional_shortages: list[Shortage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "menu_item_id": self.menu_item_id,
            "quantity": self.quantity,
            "available": self.available,
            "for_sale": self.for_sale,
            "shortages": [s.to_dict() for s in self.shortages],
            "optional_shortages": [s.to_dict() for s in self.optional_shortages],
        }


@dataclass
class Demand:
    """Total quantity of one ingredient needed, split by whether it may be skipped."""

    required: float = 0.0
    optional: float = 0.0


def aggregate_demand(lines: Iterable[tuple[list[dict], int]]) -> dict[str, Demand]:
    """Sum recipe requirements across (recipe snapshot, quantity) pairs."""
    demand: dict[str, Demand] = {}
    for recipe, quantity in lines:
        for req in recipe:
            entry = demand.setdefault(str(req["ingredient_id"]), Demand())
            amount = quantize(req["quantity_per_unit"] * quantity)
            if req.get("optional"):
                entry.optional = quantize(entry.optional + amount)
            else:
                entry.required = quantize(entry.required + amount)
    return demand


def evaluate(demand: dict[str, Demand], stock_of: Callable[[str], float]):
    """Return (shortages, optional_shortages) for the given demand.

    Optional quantities are only satisfiable from what remains after the
    required quantities of the same ingredient are covered.
    """
    shortages, optional_shortages = [], []
    for ingredient_id in sorted(demand):
        entry = demand[ingredient_id]
        available = quantize(stock_of(ingredient_id))
        if entry.required and entry.required > available:
            shortages.append(Shortage(ingredient_id, entry.required, available))
        remaining = max(quantize(available - entry.required), 0.0)
        if entry.optional and entry.optional > remaining:
            optional_shortages.append(Shortage(ingredient_id, entry.optional, remaining, optional=True))
    return shortages, optional_shortages


def _stock_or_zero(ingredient_id) -> float:
    try:
        return current_stock(ingredient_id)
    except ObjectNotFoundError:
        return 0.0


def check_availability(menu_item_id, quantity=1) -> Availability:
    """Advisory check of whether ``quantity`` units of a menu item can be made now."""
    if quantity is None or quantity < 1:
        raise ValidationError({"quantity": ["Quantity must be at least 1"]})

    item = current_domain.repository_for(MenuItem).get(menu_item_id)
    demand = aggregate_demand([(item.recipe_snapshot(), quantity)])
    shortages, optional_shortages = evaluate(demand, _stock_or_zero)

    for_sale = bool(item.is_available)
    return Availability(
        menu_item_id=str(item.id),
        quantity=quantity,
        available=for_sale and not shortages,
        for_sale=for_sale,
        shortages=shortages,
        optional_shortages=optional_shortages,
    )
