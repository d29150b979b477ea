"""Payment initiation — command, handler and operation.

The gateway call happens first and outside every lock. Only then, under the
order lock and in one unit of work, is the authorization recorded and the
order moved to Awaiting_Authorization. If the order refuses, the gateway
authorization just opened is cancelled best-effort.
"""

from datetime import timedelta
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from bistro.config import get_settings
from bistro.domain import bistro
from bistro.gateway import get_gateway
from bistro.gateway.port import GatewayUnavailable
from bistro.order.order import Order
from bistro.payment.authorization import PaymentAuthorization
from bistro.payment.watcher import get_watcher
from bistro.projections.payment_authorization_status import open_authorizations
from bistro.shared.clock import utcnow
from bistro.shared.locks import order_locks
from bistro.shared.retry import retry_on_conflict

logger = structlog.get_logger(__name__)


@bistro.command(part_of="PaymentAuthorization")
class InitiatePayment:
    order_id = Identifier(required=True)
    external_reference = String(required=True, max_length=255)
    gateway_name = String(required=True, max_length=50)
    amount = Float(required=True)
    currency = String(required=True, max_length=3)
    expires_at = DateTime(required=True)


@bistro.command_handler(part_of=PaymentAuthorization)
class InitiatePaymentHandler:
    @handle(InitiatePayment)
    def initiate_payment(self, command):
        order_repo = current_domain.repository_for(Order)
        auth_repo = current_domain.repository_for(PaymentAuthorization)

        order = order_repo.get(command.order_id)
        order.assert_payable()

        # At most one open authorization per order
        superseded = []
        for row in open_authorizations(order_id=command.order_id):
            previous = auth_repo.get(row.authorization_id)
            if previous.is_terminal:
                continue
            previous.cancel("superseded")
            order.reset_payment(previous.id, "superseded")
            auth_repo.add(previous)
            superseded.append(
                {"authorization_id": str(previous.id), "external_reference": previous.external_reference}
            )

        authorization = PaymentAuthorization.create(
            order_id=command.order_id,
            external_reference=command.external_reference,
            gateway_name=command.gateway_name,
            amount=command.amount,
            currency=command.currency,
            expires_at=command.expires_at,
        )
        order.request_payment(authorization.id, command.amount, command.currency)

        auth_repo.add(authorization)
        order_repo.add(order)

        return {"authorization_id": str(authorization.id), "superseded": superseded}


def cancel_at_gateway(external_reference):
    """Best-effort void at the gateway; failures are logged, never raised."""
    try:
        get_gateway().cancel_authorization(external_reference)
    except GatewayUnavailable as exc:
        logger.warning("Gateway cancellation failed", external_reference=external_reference, error=str(exc))


@retry_on_conflict()
def _record_authorization(command):
    with order_locks.hold(command.order_id):
        return current_domain.process(command, asynchronous=False)


def initiate_payment(order_id, amount=None, currency=None, expires_at=None):
    """Open a payment authorization for the order total and return its id."""
    settings = get_settings()

    order = current_domain.repository_for(Order).get(order_id)
    order.assert_payable()

    amount = order.total if amount is None else amount
    currency = currency or order.pricing.currency
    if round(amount, 2) != round(order.total, 2):
        raise ValidationError({"amount": [f"Amount {amount} does not match order total {order.total}"]})

    gateway = get_gateway()
    result = gateway.create_authorization(
        order_id=str(order_id),
        amount=amount,
        currency=currency,
        idempotency_key=f"{order_id}:{uuid4().hex}",
    )

    command = InitiatePayment(
        order_id=order_id,
        external_reference=result.external_reference,
        gateway_name=result.gateway_name,
        amount=amount,
        currency=currency,
        expires_at=expires_at or utcnow() + timedelta(minutes=settings.PAYMENT_TTL_MINUTES),
    )
    try:
        outcome = _record_authorization(command)
    except Exception:
        logger.warning("Authorization rejected by order, voiding at gateway", order_id=str(order_id))
        cancel_at_gateway(result.external_reference)
        raise

    authorization_id = outcome["authorization_id"]
    watcher = get_watcher()
    for previous in outcome["superseded"]:
        cancel_at_gateway(previous["external_reference"])
        if watcher:
            watcher.cancel(previous["authorization_id"])
    if watcher:
        watcher.watch(authorization_id)

    logger.info(
        "Payment initiated",
        order_id=str(order_id),
        authorization_id=authorization_id,
        amount=amount,
        currency=currency,
    )
    return authorization_id
