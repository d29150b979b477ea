"""Domain events for the MenuItem aggregate."""

from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, Text

from bistro.domain import bistro


@bistro.event(part_of="MenuItem")
class MenuItemAdded:
    __version__ = 1

    menu_item_id = Identifier(required=True)
    name = String(required=True)
    price = Float(required=True)
    currency = String(required=True)
    requirements = Text()  # JSON: list of requirement dicts
    recipe_version = Integer(required=True)
    added_at = DateTime(required=True)


@bistro.event(part_of="MenuItem")
class RecipeRevised:
    """The recipe changed; orders placed earlier keep their own snapshot."""

    __version__ = 1

    menu_item_id = Identifier(required=True)
    requirements = Text(required=True)  # JSON
    recipe_version = Integer(required=True)
    revised_at = DateTime(required=True)


@bistro.event(part_of="MenuItem")
class MenuItemRepriced:
    __version__ = 1

    menu_item_id = Identifier(required=True)
    previous_price = Float(required=True)
    new_price = Float(required=True)
    currency = String(required=True)
    repriced_at = DateTime(required=True)


@bistro.event(part_of="MenuItem")
class MenuItemAvailabilityChanged:
    __version__ = 1

    menu_item_id = Identifier(required=True)
    is_available = Boolean(required=True)
    changed_at = DateTime(required=True)
