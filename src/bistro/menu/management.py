"""Menu catalog management — commands, handler and operations."""

import json

from protean import handle
from protean.fields import Boolean, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from bistro.config import get_settings
from bistro.domain import bistro
from bistro.menu.menu_item import MenuItem


@bistro.command(part_of="MenuItem")
class AddMenuItem:
    name = String(required=True, max_length=255)
    price = Float(required=True)
    currency = String(max_length=3)
    requirements = Text()  # JSON: [{"ingredient_id", "quantity_per_unit", "optional"}]
    is_available = Boolean(default=True)


@bistro.command(part_of="MenuItem")
class ReviseRecipe:
    menu_item_id = Identifier(required=True)
    requirements = Text(required=True)  # JSON


@bistro.command(part_of="MenuItem")
class RepriceMenuItem:
    menu_item_id = Identifier(required=True)
    price = Float(required=True)


@bistro.command(part_of="MenuItem")
class SetMenuItemAvailability:
    menu_item_id = Identifier(required=True)
    is_available = Boolean(required=True)


@bistro.command_handler(part_of=MenuItem)
class MenuItemHandler:
    @handle(AddMenuItem)
    def add_menu_item(self, command):
        item = MenuItem.add(
            name=command.name,
            price=command.price,
            currency=command.currency or get_settings().DEFAULT_CURRENCY,
            requirements=command.requirements,
            is_available=command.is_available,
        )
        current_domain.repository_for(MenuItem).add(item)
        return str(item.id)

    @handle(ReviseRecipe)
    def revise_recipe(self, command):
        repo = current_domain.repository_for(MenuItem)
        item = repo.get(command.menu_item_id)
        item.revise_recipe(command.requirements)
        repo.add(item)
        return item.recipe_version

    @handle(RepriceMenuItem)
    def reprice_menu_item(self, command):
        repo = current_domain.repository_for(MenuItem)
        item = repo.get(command.menu_item_id)
        item.reprice(command.price)
        repo.add(item)

    @handle(SetMenuItemAvailability)
    def set_menu_item_availability(self, command):
        repo = current_domain.repository_for(MenuItem)
        item = repo.get(command.menu_item_id)
        item.set_availability(command.is_available)
        repo.add(item)


def _as_json(requirements):
    if requirements is None or isinstance(requirements, str):
        return requirements
    return json.dumps(list(requirements))


def add_menu_item(name, price, requirements=None, currency=None, is_available=True):
    return current_domain.process(
        AddMenuItem(
            name=name,
            price=price,
            currency=currency,
            requirements=_as_json(requirements),
            is_available=is_available,
        ),
        asynchronous=False,
    )


def revise_recipe(menu_item_id, requirements):
    return current_domain.process(
        ReviseRecipe(menu_item_id=menu_item_id, requirements=_as_json(requirements)),
        asynchronous=False,
    )


def reprice_menu_item(menu_item_id, price):
    current_domain.process(RepriceMenuItem(menu_item_id=menu_item_id, price=price), asynchronous=False)


def set_menu_item_availability(menu_item_id, is_available):
    current_domain.process(
        SetMenuItemAvailability(menu_item_id=menu_item_id, is_available=is_available),
        asynchronous=False,
    )
