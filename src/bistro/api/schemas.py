"""Pydantic request/response schemas for the bistro API.

These are external contracts (anti-corruption layer) — separate from
internal Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Ingredient Schemas
# ---------------------------------------------------------------------------
class RegisterIngredientRequest(BaseModel):
    name: str
    unit_of_measure: str
    min_stock: float = Field(ge=0, default=0.0)
    max_stock: float | None = Field(ge=0, default=None)
    initial_stock: float = Field(ge=0, default=0.0)
    actor_id: str = "system"


class IngredientIdResponse(BaseModel):
    ingredient_id: str


class RecordMovementRequest(BaseModel):
    kind: str  # In, Out, Adjustment, Spoilage, Reservation, Release
    quantity: float
    reason: str | None = None
    actor_id: str = "system"
    order_id: str | None = None


class MovementResponse(BaseModel):
    movement_id: str
    ingredient_id: str
    kind: str
    previous_stock: float
    new_stock: float
    status: str


class UpdateThresholdsRequest(BaseModel):
    min_stock: float = Field(ge=0)
    max_stock: float | None = Field(ge=0, default=None)


class IngredientStockResponse(BaseModel):
    ingredient_id: str
    name: str
    unit_of_measure: str
    current_stock: float
    min_stock: float
    max_stock: float | None = None
    status: str
    holds: dict[str, float] = {}


class MovementEntry(BaseModel):
    movement_id: str
    kind: str
    quantity: float
    reason: str | None = None
    actor_id: str | None = None
    order_id: str | None = None
    previous_stock: float
    new_stock: float
    recorded_at: datetime


# ---------------------------------------------------------------------------
# Menu Schemas
# ---------------------------------------------------------------------------
class RequirementSchema(BaseModel):
    ingredient_id: str
    quantity_per_unit: float = Field(gt=0)
    optional: bool = False


class AddMenuItemRequest(BaseModel):
    name: str
    price: float = Field(ge=0)
    currency: str | None = None
    requirements: list[RequirementSchema] = []
    is_available: bool = True


class MenuItemIdResponse(BaseModel):
    menu_item_id: str


class ReviseRecipeRequest(BaseModel):
    requirements: list[RequirementSchema]


class RecipeVersionResponse(BaseModel):
    menu_item_id: str
    recipe_version: int


class RepriceRequest(BaseModel):
    price: float = Field(ge=0)


class AvailabilityToggleRequest(BaseModel):
    is_available: bool


class ShortageSchema(BaseModel):
    ingredient_id: str
    required: float
    available: float
    optional: bool = False


class AvailabilityResponse(BaseModel):
    menu_item_id: str
    quantity: int
    available: bool
    for_sale: bool
    shortages: list[ShortageSchema] = []
    optional_shortages: list[ShortageSchema] = []


# ---------------------------------------------------------------------------
# Order Schemas
# ---------------------------------------------------------------------------
class OrderLineRequest(BaseModel):
    menu_item_id: str
    quantity: int = Field(ge=1)
    customizations: str | None = None


class PlaceOrderRequest(BaseModel):
    lines: list[OrderLineRequest] = Field(min_length=1)
    discount: float = Field(ge=0, default=0.0)
    tax_rate: float | None = Field(ge=0, default=None)
    currency: str | None = None


class OrderIdResponse(BaseModel):
    order_id: str


class LineIdResponse(BaseModel):
    line_id: str


class DiscountRequest(BaseModel):
    discount: float = Field(ge=0)


class AdvanceOrderRequest(BaseModel):
    status: str
    reason: str | None = None
    actor_id: str = "system"


class CancelOrderRequest(BaseModel):
    reason: str
    cancelled_by: str = "system"


class OrderStatusResponse(BaseModel):
    order_id: str
    status: str
    payment_status: str | None = None


class OrderLineResponse(BaseModel):
    line_id: str
    menu_item_id: str
    name: str
    quantity: int
    unit_price: float
    customizations: str | None = None
    line_status: str


class OrderHoldResponse(BaseModel):
    ingredient_id: str
    quantity: float
    status: str


class OrderResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    lines: list[OrderLineResponse]
    holds: list[OrderHoldResponse] = []
    subtotal: float
    discount: float
    tax: float
    total: float
    tax_rate: float
    currency: str
    active_authorization_id: str | None = None
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


# ---------------------------------------------------------------------------
# Payment Schemas
# ---------------------------------------------------------------------------
class InitiatePaymentRequest(BaseModel):
    order_id: str
    amount: float | None = Field(gt=0, default=None)
    currency: str | None = None


class AuthorizationIdResponse(BaseModel):
    authorization_id: str


class CancelPaymentRequest(BaseModel):
    reason: str = "cancelled by caller"


class PaymentWebhookRequest(BaseModel):
    authorization_id: str
    status: str  # Gateway vocabulary: succeeded, failed, canceled, expired, ...
    failure_reason: str | None = None


class AuthorizationResponse(BaseModel):
    authorization_id: str
    order_id: str
    external_reference: str
    gateway_name: str | None = None
    status: str
    amount: float
    currency: str
    expires_at: datetime
    failure_reason: str | None = None
    cancellation_reason: str | None = None
    settled_at: datetime | None = None


class ExpireSweepRequest(BaseModel):
    as_of: datetime | None = None


class ExpireSweepResponse(BaseModel):
    expired: list[str]


class ConfigureGatewayRequest(BaseModel):
    available: bool = True
    failure_reason: str = "Card declined"


class SettleAuthorizationRequest(BaseModel):
    status: str


class GatewayConfigResponse(BaseModel):
    gateway: str
    available: bool
    failure_reason: str


class OrderSummaryResponse(BaseModel):
    order_id: str
    order_number: str
    status: str
    payment_status: str
    line_count: int
    ready_lines: int
    total: float
    currency: str | None = None
    placed_at: datetime | None = None


class StatusResponse(BaseModel):
    status: str = "ok"
