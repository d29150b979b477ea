"""FastAPI routes for the bistro core — ingredients, menu, orders and payments.

Handlers are plain functions so FastAPI runs them in its threadpool. Ledger
locks, retry backoff and gateway calls block, and must not stall the event loop.
"""

import json
import os

from fastapi import APIRouter, Header, HTTPException, Query
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from bistro.api.schemas import (
    AddMenuItemRequest,
    AdvanceOrderRequest,
    AuthorizationIdResponse,
    AuthorizationResponse,
    AvailabilityResponse,
    AvailabilityToggleRequest,
    CancelOrderRequest,
    CancelPaymentRequest,
    ConfigureGatewayRequest,
    DiscountRequest,
    ExpireSweepRequest,
    ExpireSweepResponse,
    GatewayConfigResponse,
    IngredientIdResponse,
    IngredientStockResponse,
    InitiatePaymentRequest,
    LineIdResponse,
    MenuItemIdResponse,
    MovementEntry,
    MovementResponse,
    OrderIdResponse,
    OrderLineRequest,
    OrderResponse,
    OrderStatusResponse,
    OrderSummaryResponse,
    PaymentWebhookRequest,
    PlaceOrderRequest,
    RecipeVersionResponse,
    RecordMovementRequest,
    RegisterIngredientRequest,
    RepriceRequest,
    ReviseRecipeRequest,
    SettleAuthorizationRequest,
    StatusResponse,
    UpdateThresholdsRequest,
)
from bistro.gateway import get_gateway
from bistro.gateway.fake_adapter import FakeGateway
from bistro.ingredient.ledger import stock_snapshot
from bistro.ingredient.movement import record_movement
from bistro.ingredient.registration import register_ingredient
from bistro.ingredient.thresholds import update_thresholds
from bistro.menu.availability import check_availability
from bistro.menu.management import (
    add_menu_item,
    reprice_menu_item,
    revise_recipe,
    set_menu_item_availability,
)
from bistro.order.confirmation import confirm_order
from bistro.order.lifecycle import (
    advance_order,
    cancel_order,
    mark_line_ready,
    refund_order_payment,
    start_line,
)
from bistro.order.order import Order
from bistro.order.placement import add_line, apply_discount, place_order, remove_line
from bistro.payment.initiation import initiate_payment
from bistro.payment.reconciliation import (
    cancel_payment,
    expire_stale_payments,
    observe_payment,
    payment_status,
)
from bistro.projections.order_board import board, find_by_order_number
from bistro.projections.stock_movement_log import movements_for

# ---------------------------------------------------------------------------
# Ingredient Router
# ---------------------------------------------------------------------------
ingredient_router = APIRouter(prefix="/ingredients", tags=["ingredients"])


@ingredient_router.post("", status_code=201, response_model=IngredientIdResponse)
def create_ingredient(body: RegisterIngredientRequest) -> IngredientIdResponse:
    ingredient_id = register_ingredient(
        name=body.name,
        unit_of_measure=body.unit_of_measure,
        min_stock=body.min_stock,
        max_stock=body.max_stock,
        initial_stock=body.initial_stock,
        actor_id=body.actor_id,
    )
    return IngredientIdResponse(ingredient_id=ingredient_id)


@ingredient_router.get("/{ingredient_id}", response_model=IngredientStockResponse)
def get_ingredient(ingredient_id: str) -> IngredientStockResponse:
    return IngredientStockResponse(**stock_snapshot(ingredient_id))


@ingredient_router.post("/{ingredient_id}/movements", status_code=201, response_model=MovementResponse)
def create_movement(ingredient_id: str, body: RecordMovementRequest) -> MovementResponse:
    result = record_movement(
        ingredient_id,
        body.kind,
        body.quantity,
        reason=body.reason,
        actor_id=body.actor_id,
        order_id=body.order_id,
    )
    return MovementResponse(**result)


@ingredient_router.get("/{ingredient_id}/movements", response_model=list[MovementEntry])
def list_movements(ingredient_id: str, order_id: str | None = None) -> list[MovementEntry]:
    return [
        MovementEntry(
            movement_id=str(row.movement_id),
            kind=row.kind,
            quantity=row.quantity,
            reason=row.reason,
            actor_id=row.actor_id,
            order_id=str(row.order_id) if row.order_id else None,
            previous_stock=row.previous_stock,
            new_stock=row.new_stock,
            recorded_at=row.recorded_at,
        )
        for row in movements_for(ingredient_id=ingredient_id, order_id=order_id)
    ]


@ingredient_router.put("/{ingredient_id}/thresholds", response_model=IngredientStockResponse)
def put_thresholds(ingredient_id: str, body: UpdateThresholdsRequest) -> IngredientStockResponse:
    update_thresholds(ingredient_id, body.min_stock, body.max_stock)
    return IngredientStockResponse(**stock_snapshot(ingredient_id))


# ---------------------------------------------------------------------------
# Menu Router
# ---------------------------------------------------------------------------
menu_router = APIRouter(prefix="/menu", tags=["menu"])


@menu_router.post("", status_code=201, response_model=MenuItemIdResponse)
def create_menu_item(body: AddMenuItemRequest) -> MenuItemIdResponse:
    menu_item_id = add_menu_item(
        name=body.name,
        price=body.price,
        currency=body.currency,
        requirements=[r.model_dump() for r in body.requirements],
        is_available=body.is_available,
    )
    return MenuItemIdResponse(menu_item_id=menu_item_id)


@menu_router.put("/{menu_item_id}/recipe", response_model=RecipeVersionResponse)
def put_recipe(menu_item_id: str, body: ReviseRecipeRequest) -> RecipeVersionResponse:
    version = revise_recipe(menu_item_id, [r.model_dump() for r in body.requirements])
    return RecipeVersionResponse(menu_item_id=menu_item_id, recipe_version=version)


@menu_router.put("/{menu_item_id}/price", response_model=StatusResponse)
def put_price(menu_item_id: str, body: RepriceRequest) -> StatusResponse:
    reprice_menu_item(menu_item_id, body.price)
    return StatusResponse()


@menu_router.put("/{menu_item_id}/availability", response_model=StatusResponse)
def put_availability(menu_item_id: str, body: AvailabilityToggleRequest) -> StatusResponse:
    set_menu_item_availability(menu_item_id, body.is_available)
    return StatusResponse()


@menu_router.get("/{menu_item_id}/availability", response_model=AvailabilityResponse)
def get_availability(menu_item_id: str, quantity: int = Query(default=1, ge=1)) -> AvailabilityResponse:
    return AvailabilityResponse(**check_availability(menu_item_id, quantity).to_dict())


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        payment_status=order.payment_status,
        lines=[
            {
                "line_id": str(line.id),
                "menu_item_id": str(line.menu_item_id),
                "name": line.name,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "customizations": line.customizations,
                "line_status": line.line_status,
            }
            for line in order.lines
        ],
        holds=[
            {"ingredient_id": str(h.ingredient_id), "quantity": h.quantity, "status": h.status}
            for h in order.holds
        ],
        subtotal=order.pricing.subtotal,
        discount=order.pricing.discount,
        tax=order.pricing.tax,
        total=order.pricing.total,
        tax_rate=order.pricing.tax_rate,
        currency=order.pricing.currency,
        active_authorization_id=str(order.active_authorization_id) if order.active_authorization_id else None,
        created_at=order.created_at,
        confirmed_at=order.confirmed_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
        cancellation_reason=order.cancellation_reason,
    )


def _status_response(order_id) -> OrderStatusResponse:
    order = current_domain.repository_for(Order).get(order_id)
    return OrderStatusResponse(order_id=str(order.id), status=order.status, payment_status=order.payment_status)


@order_router.post("", status_code=201, response_model=OrderIdResponse)
def create_order(body: PlaceOrderRequest) -> OrderIdResponse:
    order_id = place_order(
        [line.model_dump() for line in body.lines],
        discount=body.discount,
        tax_rate=body.tax_rate,
        currency=body.currency,
    )
    return OrderIdResponse(order_id=order_id)


@order_router.get("", response_model=list[OrderSummaryResponse])
def list_orders(status: str | None = None) -> list[OrderSummaryResponse]:
    return [
        OrderSummaryResponse(
            order_id=str(row.order_id),
            order_number=row.order_number,
            status=row.status,
            payment_status=row.payment_status,
            line_count=row.line_count or 0,
            ready_lines=row.ready_lines or 0,
            total=row.total or 0.0,
            currency=row.currency,
            placed_at=row.placed_at,
        )
        for row in board(status=status)
    ]


@order_router.get("/by-number/{order_number}", response_model=OrderResponse)
def get_order_by_number(order_number: str) -> OrderResponse:
    row = find_by_order_number(order_number)
    if row is None:
        raise ObjectNotFoundError(f"Order {order_number} not found")
    return _order_response(current_domain.repository_for(Order).get(row.order_id))


@order_router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: str) -> OrderResponse:
    return _order_response(current_domain.repository_for(Order).get(order_id))


@order_router.post("/{order_id}/lines", status_code=201, response_model=LineIdResponse)
def create_line(order_id: str, body: OrderLineRequest) -> LineIdResponse:
    line_id = add_line(order_id, body.menu_item_id, body.quantity, customizations=body.customizations)
    return LineIdResponse(line_id=line_id)


@order_router.delete("/{order_id}/lines/{line_id}", response_model=StatusResponse)
def delete_line(order_id: str, line_id: str) -> StatusResponse:
    remove_line(order_id, line_id)
    return StatusResponse()


@order_router.put("/{order_id}/discount", response_model=OrderStatusResponse)
def put_discount(order_id: str, body: DiscountRequest) -> OrderStatusResponse:
    apply_discount(order_id, body.discount)
    return _status_response(order_id)


@order_router.put("/{order_id}/confirm", response_model=OrderStatusResponse)
def put_confirm(order_id: str) -> OrderStatusResponse:
    confirm_order(order_id)
    return _status_response(order_id)


@order_router.put("/{order_id}/status", response_model=OrderStatusResponse)
def put_status(order_id: str, body: AdvanceOrderRequest) -> OrderStatusResponse:
    advance_order(order_id, body.status, reason=body.reason, actor_id=body.actor_id)
    return _status_response(order_id)


@order_router.put("/{order_id}/lines/{line_id}/start", response_model=OrderStatusResponse)
def put_line_start(order_id: str, line_id: str) -> OrderStatusResponse:
    start_line(order_id, line_id)
    return _status_response(order_id)


@order_router.put("/{order_id}/lines/{line_id}/ready", response_model=OrderStatusResponse)
def put_line_ready(order_id: str, line_id: str) -> OrderStatusResponse:
    mark_line_ready(order_id, line_id)
    return _status_response(order_id)


@order_router.put("/{order_id}/cancel", response_model=OrderStatusResponse)
def put_cancel(order_id: str, body: CancelOrderRequest) -> OrderStatusResponse:
    cancel_order(order_id, body.reason, cancelled_by=body.cancelled_by)
    return _status_response(order_id)


@order_router.put("/{order_id}/refund", response_model=OrderStatusResponse)
def put_refund(order_id: str) -> OrderStatusResponse:
    refund_order_payment(order_id)
    return _status_response(order_id)


# ---------------------------------------------------------------------------
# Payment Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("", status_code=201, response_model=AuthorizationIdResponse)
def create_payment(body: InitiatePaymentRequest) -> AuthorizationIdResponse:
    authorization_id = initiate_payment(body.order_id, amount=body.amount, currency=body.currency)
    return AuthorizationIdResponse(authorization_id=authorization_id)


@payment_router.post("/webhook", response_model=AuthorizationResponse)
def process_webhook(
    body: PaymentWebhookRequest,
    x_gateway_signature: str = Header(default=""),
) -> AuthorizationResponse:
    """Feed a gateway status notification into reconciliation."""
    gateway = get_gateway()
    if not gateway.verify_webhook_signature(json.dumps(body.model_dump()), x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    snapshot = observe_payment(body.authorization_id, body.status, failure_reason=body.failure_reason)
    return AuthorizationResponse(**snapshot)


@payment_router.post("/maintenance/expire", response_model=ExpireSweepResponse)
def expire_payments(body: ExpireSweepRequest | None = None) -> ExpireSweepResponse:
    """Expire overdue authorizations; meant for an external scheduler."""
    expired = expire_stale_payments(as_of=body.as_of if body else None)
    return ExpireSweepResponse(expired=expired)


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only)."""
    gateway = _fake_gateway_or_raise()
    gateway.configure(available=body.available, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        available=gateway.available,
        failure_reason=gateway.failure_reason,
    )


@payment_router.post("/gateway/authorizations/{external_reference}", response_model=StatusResponse)
def settle_at_gateway(external_reference: str, body: SettleAuthorizationRequest) -> StatusResponse:
    """Set what the FakeGateway reports for an authorization (non-production only)."""
    gateway = _fake_gateway_or_raise()
    gateway.settle(external_reference, body.status)
    return StatusResponse(status=body.status)


@payment_router.get("/{authorization_id}", response_model=AuthorizationResponse)
def get_payment(authorization_id: str) -> AuthorizationResponse:
    return AuthorizationResponse(**payment_status(authorization_id))


@payment_router.put("/{authorization_id}/cancel", response_model=AuthorizationResponse)
def put_payment_cancel(authorization_id: str, body: CancelPaymentRequest) -> AuthorizationResponse:
    return AuthorizationResponse(**cancel_payment(authorization_id, body.reason))


def _fake_gateway_or_raise() -> FakeGateway:
    if os.environ.get("PROTEAN_ENV") == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")
    return gateway
