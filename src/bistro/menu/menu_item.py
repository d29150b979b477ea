"""MenuItem aggregate root with RecipeRequirement entity.

The menu item is the catalog lookup the order core consumes: a price, a
for-sale flag and the ingredients one unit of the item needs. Recipes are
versioned; orders snapshot the requirements when the line is added, so a
revision never changes what an existing order will reserve.
"""

import json
from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, HasMany, Identifier, Integer, String

from bistro.domain import bistro
from bistro.menu.events import (
    MenuItemAdded,
    MenuItemAvailabilityChanged,
    MenuItemRepriced,
    RecipeRevised,
)


@bistro.entity(part_of="MenuItem")
class RecipeRequirement:
    """Quantity of one ingredient consumed per unit of the menu item."""

    ingredient_id: Identifier(required=True)
    quantity_per_unit: Float(required=True)
    optional: Boolean(default=False)

    def to_snapshot(self) -> dict:
        return {
            "ingredient_id": str(self.ingredient_id),
            "quantity_per_unit": self.quantity_per_unit,
            "optional": bool(self.optional),
        }


def _parse_requirements(requirements):
    """Accept a JSON string or a list of dicts and return RecipeRequirement entities."""
    if isinstance(requirements, str):
        requirements = json.loads(requirements)

    parsed = []
    for req in requirements or []:
        quantity = req.get("quantity_per_unit")
        if quantity is None or quantity <= 0:
            raise ValidationError(
                {"requirements": [f"Quantity per unit for {req.get('ingredient_id')} must be positive"]}
            )
        parsed.append(
            RecipeRequirement(
                ingredient_id=req["ingredient_id"],
                quantity_per_unit=float(quantity),
                optional=bool(req.get("optional", False)),
            )
        )
    return parsed


@bistro.aggregate
class MenuItem:
    name: String(required=True, max_length=255)
    price: Float(required=True, min_value=0.0)
    currency: String(max_length=3, default="USD")
    is_available: Boolean(default=True)
    requirements: HasMany(RecipeRequirement)
    recipe_version: Integer(default=1)
    created_at: DateTime()
    updated_at: DateTime()

    @invariant.post
    def ingredients_must_not_repeat(self):
        ids = [str(r.ingredient_id) for r in self.requirements]
        if len(ids) != len(set(ids)):
            raise ValidationError({"requirements": ["An ingredient may appear only once per recipe"]})

    @classmethod
    def add(cls, name, price, currency="USD", requirements=None, is_available=True):
        now = datetime.now(UTC)
        item = cls(
            name=name,
            price=price,
            currency=currency,
            is_available=is_available,
            requirements=_parse_requirements(requirements),
            recipe_version=1,
            created_at=now,
            updated_at=now,
        )
        item.raise_(
            MenuItemAdded(
                menu_item_id=str(item.id),
                name=name,
                price=price,
                currency=item.currency,
                requirements=item.recipe_json(),
                recipe_version=1,
                added_at=now,
            )
        )
        return item

    def recipe_snapshot(self) -> list[dict]:
        return [r.to_snapshot() for r in self.requirements]

    def recipe_json(self) -> str:
        return json.dumps(self.recipe_snapshot())

    def revise_recipe(self, requirements):
        new_requirements = _parse_requirements(requirements)
        for existing in list(self.requirements):
            self.remove_requirements(existing)
        for requirement in new_requirements:
            self.add_requirements(requirement)

        self.recipe_version = (self.recipe_version or 1) + 1
        self.updated_at = datetime.now(UTC)
        self.raise_(
            RecipeRevised(
                menu_item_id=str(self.id),
                requirements=self.recipe_json(),
                recipe_version=self.recipe_version,
                revised_at=self.updated_at,
            )
        )

    def reprice(self, new_price):
        if new_price is None or new_price < 0:
            raise ValidationError({"price": ["Price cannot be negative"]})

        previous_price = self.price
        self.price = new_price
        self.updated_at = datetime.now(UTC)
        self.raise_(
            MenuItemRepriced(
                menu_item_id=str(self.id),
                previous_price=previous_price,
                new_price=new_price,
                currency=self.currency,
                repriced_at=self.updated_at,
            )
        )

    def set_availability(self, is_available):
        if bool(is_available) == bool(self.is_available):
            return
        self.is_available = bool(is_available)
        self.updated_at = datetime.now(UTC)
        self.raise_(
            MenuItemAvailabilityChanged(
                menu_item_id=str(self.id),
                is_available=self.is_available,
                changed_at=self.updated_at,
            )
        )
