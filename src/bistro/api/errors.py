"""HTTP error mapping for the bistro API.

Protean's handlers cover the generic cases (ValidationError → 400,
ObjectNotFoundError → 404). Business conflicts are more specific subclasses
of ValidationError, so the handlers registered here take precedence for them.
"""

import math

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from bistro.config import get_settings
from bistro.errors import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidOrderState,
    InvalidTransition,
    MenuItemUnavailable,
    PaymentAlreadyTerminal,
    PaymentExpired,
)
from bistro.gateway.port import GatewayUnavailable


def _conflict_detail(exc) -> dict:
    if isinstance(exc, InsufficientStock):
        return {"code": "insufficient_stock", "shortages": exc.shortages}
    if isinstance(exc, InvalidTransition):
        return {"code": "invalid_transition", "from": exc.from_status, "to": exc.to_status}
    if isinstance(exc, InvalidOrderState):
        return {"code": "invalid_order_state", "order_id": exc.order_id, "state": exc.state, "action": exc.action}
    if isinstance(exc, PaymentExpired):
        return {"code": "payment_expired", "authorization_id": exc.authorization_id}
    return {"code": "payment_already_terminal", "authorization_id": exc.authorization_id, "status": exc.status}


async def _business_conflict(request: Request, exc) -> JSONResponse:
    return JSONResponse(status_code=409, content={"error": exc.messages, **_conflict_detail(exc)})


async def _menu_item_unavailable(request: Request, exc: MenuItemUnavailable) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"error": exc.messages, "code": "menu_item_unavailable", "menu_item_ids": exc.menu_item_ids},
    )


async def _concurrency_conflict(request: Request, exc: ConcurrencyConflict) -> JSONResponse:
    retry_after = max(1, math.ceil(get_settings().CONFLICT_MAX_DELAY_MS / 1000))
    return JSONResponse(
        status_code=503,
        headers={"Retry-After": str(retry_after)},
        content={"error": str(exc), "code": "concurrency_conflict", "retryable": exc.retryable},
    )


async def _gateway_unavailable(request: Request, exc: GatewayUnavailable) -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": str(exc), "code": "gateway_unavailable"})


def register_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)

    for exc_class in (InsufficientStock, InvalidTransition, InvalidOrderState, PaymentAlreadyTerminal, PaymentExpired):
        app.add_exception_handler(exc_class, _business_conflict)
    app.add_exception_handler(MenuItemUnavailable, _menu_item_unavailable)
    app.add_exception_handler(ConcurrencyConflict, _concurrency_conflict)
    app.add_exception_handler(GatewayUnavailable, _gateway_unavailable)
