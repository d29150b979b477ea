"""Payment reconciliation — observe, expire and cancel authorizations.

Polling, webhooks, the expiry sweep and caller aborts all converge here.
Each operation loads the authorization, takes its order's lock, and applies
the outcome to both aggregates in one unit of work:

    Succeeded  → order Paid (and completed when Ready, by policy)
    Failed     → order Failed
    Cancelled  → order Unpaid
    Expired    → order Unpaid

Terminal outcomes are sticky. Repeating one is a no-op; contradicting one
raises PaymentAlreadyTerminal (or PaymentExpired).
"""

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ValidationError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from bistro.config import get_settings
from bistro.domain import bistro
from bistro.gateway.port import normalize_status
from bistro.order.order import Order, OrderStatus
from bistro.payment.authorization import AuthorizationStatus, PaymentAuthorization
from bistro.payment.initiation import cancel_at_gateway
from bistro.payment.watcher import get_watcher
from bistro.projections.payment_authorization_status import overdue_authorizations
from bistro.shared.clock import utcnow
from bistro.shared.locks import order_locks
from bistro.shared.retry import retry_on_conflict

logger = structlog.get_logger(__name__)


@bistro.command(part_of="PaymentAuthorization")
class ObservePayment:
    authorization_id = Identifier(required=True)
    status = String(required=True, choices=AuthorizationStatus)
    failure_reason = String(max_length=500)


@bistro.command(part_of="PaymentAuthorization")
class ExpirePayment:
    authorization_id = Identifier(required=True)
    as_of = DateTime()  # Optional: defaults to now


@bistro.command(part_of="PaymentAuthorization")
class CancelPayment:
    authorization_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


def authorization_snapshot(authorization) -> dict:
    return {
        "authorization_id": str(authorization.id),
        "order_id": str(authorization.order_id),
        "external_reference": authorization.external_reference,
        "gateway_name": authorization.gateway_name,
        "status": authorization.status,
        "amount": authorization.amount.value,
        "currency": authorization.amount.currency,
        "expires_at": authorization.expires_at,
        "failure_reason": authorization.failure_reason,
        "cancellation_reason": authorization.cancellation_reason,
        "settled_at": authorization.settled_at,
    }


def _apply_outcome(order, authorization):
    """Carry a terminal authorization outcome over to its order."""
    outcome = authorization.current_status
    if outcome == AuthorizationStatus.SUCCEEDED:
        order.settle_payment(authorization.id, authorization.amount.value, authorization.amount.currency)
        if get_settings().AUTO_COMPLETE_ON_PAYMENT and order.status == OrderStatus.READY.value:
            order.complete()
    elif outcome == AuthorizationStatus.FAILED:
        order.fail_payment(authorization.id, authorization.failure_reason)
    else:
        order.reset_payment(authorization.id, outcome.value.lower())


@bistro.command_handler(part_of=PaymentAuthorization)
class PaymentReconciliationHandler:
    def _commit(self, authorization):
        order_repo = current_domain.repository_for(Order)
        order = order_repo.get(authorization.order_id)
        _apply_outcome(order, authorization)
        current_domain.repository_for(PaymentAuthorization).add(authorization)
        order_repo.add(order)

    @handle(ObservePayment)
    def observe_payment(self, command):
        authorization = current_domain.repository_for(PaymentAuthorization).get(command.authorization_id)
        if authorization.observe(command.status, command.failure_reason):
            self._commit(authorization)
            logger.info(
                "Payment outcome observed",
                authorization_id=str(authorization.id),
                order_id=str(authorization.order_id),
                status=authorization.status,
            )
        return authorization_snapshot(authorization)

    @handle(ExpirePayment)
    def expire_payment(self, command):
        authorization = current_domain.repository_for(PaymentAuthorization).get(command.authorization_id)
        if authorization.expire(command.as_of):
            self._commit(authorization)
            logger.info(
                "Payment authorization expired",
                authorization_id=str(authorization.id),
                order_id=str(authorization.order_id),
            )
        return authorization_snapshot(authorization)

    @handle(CancelPayment)
    def cancel_payment(self, command):
        authorization = current_domain.repository_for(PaymentAuthorization).get(command.authorization_id)
        authorization.cancel(command.reason)
        self._commit(authorization)
        return authorization_snapshot(authorization)


def _order_id_of(authorization_id):
    return str(current_domain.repository_for(PaymentAuthorization).get(authorization_id).order_id)


def _stop_watch(authorization_id):
    watcher = get_watcher()
    if watcher:
        watcher.cancel(authorization_id)


@retry_on_conflict()
def observe_payment(authorization_id, external_status, failure_reason=None):
    """Feed a gateway status (raw or normalized) into the authorization and its order."""
    status = normalize_status(external_status)
    with order_locks.hold(_order_id_of(authorization_id)):
        snapshot = current_domain.process(
            ObservePayment(authorization_id=authorization_id, status=status, failure_reason=failure_reason),
            asynchronous=False,
        )
    if snapshot["status"] != AuthorizationStatus.AWAITING_PAYMENT_METHOD.value:
        _stop_watch(authorization_id)
    return snapshot


@retry_on_conflict()
def expire_payment(authorization_id, as_of=None):
    with order_locks.hold(_order_id_of(authorization_id)):
        snapshot = current_domain.process(
            ExpirePayment(authorization_id=authorization_id, as_of=as_of),
            asynchronous=False,
        )
    if snapshot["status"] != AuthorizationStatus.AWAITING_PAYMENT_METHOD.value:
        _stop_watch(authorization_id)
    return snapshot


@retry_on_conflict()
def _cancel_locked(authorization_id, reason):
    with order_locks.hold(_order_id_of(authorization_id)):
        return current_domain.process(
            CancelPayment(authorization_id=authorization_id, reason=reason),
            asynchronous=False,
        )


def cancel_payment(authorization_id, reason="cancelled by caller"):
    snapshot = _cancel_locked(authorization_id, reason)
    _stop_watch(authorization_id)
    cancel_at_gateway(snapshot["external_reference"])
    return snapshot


def payment_status(authorization_id) -> dict:
    return authorization_snapshot(current_domain.repository_for(PaymentAuthorization).get(authorization_id))


def expire_stale_payments(as_of=None):
    """Expire every open authorization whose deadline has passed; return their ids."""
    as_of = as_of or utcnow()
    overdue = overdue_authorizations(as_of)
    if not overdue:
        logger.info("No stale payment authorizations found")
        return []

    expired = []
    for row in overdue:
        try:
            snapshot = expire_payment(str(row.authorization_id), as_of=as_of)
        except (ValidationError, InvalidOperationError) as exc:
            logger.warning(
                "Failed to expire payment authorization",
                authorization_id=str(row.authorization_id),
                error=str(exc),
            )
            continue
        if snapshot["status"] == AuthorizationStatus.EXPIRED.value:
            expired.append(snapshot["authorization_id"])

    logger.info("Stale payment sweep complete", expired_count=len(expired))
    return expired
