"""Bistro API package."""

from bistro.api.errors import register_error_handlers
from bistro.api.routes import ingredient_router, menu_router, order_router, payment_router

__all__ = ["ingredient_router", "menu_router", "order_router", "payment_router", "register_error_handlers"]
