"""Payment authorization status — one row per authorization, used by the expiry sweep."""

from protean.core.projector import on
from protean.fields import DateTime, Float, Identifier, String
from protean.utils.globals import current_domain

from bistro.domain import bistro
from bistro.payment.authorization import AuthorizationStatus, PaymentAuthorization
from bistro.payment.events import (
    AuthorizationCancelled,
    AuthorizationCreated,
    AuthorizationExpired,
    AuthorizationFailed,
    AuthorizationSucceeded,
)
from bistro.shared.clock import as_utc
from bistro.shared.queries import fetch_all


@bistro.projection
class PaymentAuthorizationStatus:
    authorization_id = Identifier(identifier=True, required=True)
    order_id = Identifier(required=True)
    external_reference = String(required=True)
    amount = Float(required=True)
    currency = String(max_length=3)
    status = String(required=True)
    expires_at = DateTime(required=True)
    created_at = DateTime()
    updated_at = DateTime()


def _set_status(authorization_id, status, at):
    repo = current_domain.repository_for(PaymentAuthorizationStatus)
    row = repo.get(authorization_id)
    row.status = status
    row.updated_at = at
    repo.add(row)


@bistro.projector(projector_for=PaymentAuthorizationStatus, aggregates=[PaymentAuthorization])
class PaymentAuthorizationStatusProjector:
    @on(AuthorizationCreated)
    def on_authorization_created(self, event):
        current_domain.repository_for(PaymentAuthorizationStatus).add(
            PaymentAuthorizationStatus(
                authorization_id=event.authorization_id,
                order_id=event.order_id,
                external_reference=event.external_reference,
                amount=event.amount,
                currency=event.currency,
                status=AuthorizationStatus.AWAITING_PAYMENT_METHOD.value,
                expires_at=event.expires_at,
                created_at=event.created_at,
                updated_at=event.created_at,
            )
        )

    @on(AuthorizationSucceeded)
    def on_authorization_succeeded(self, event):
        _set_status(event.authorization_id, AuthorizationStatus.SUCCEEDED.value, event.settled_at)

    @on(AuthorizationFailed)
    def on_authorization_failed(self, event):
        _set_status(event.authorization_id, AuthorizationStatus.FAILED.value, event.failed_at)

    @on(AuthorizationCancelled)
    def on_authorization_cancelled(self, event):
        _set_status(event.authorization_id, AuthorizationStatus.CANCELLED.value, event.cancelled_at)

    @on(AuthorizationExpired)
    def on_authorization_expired(self, event):
        _set_status(event.authorization_id, AuthorizationStatus.EXPIRED.value, event.expired_at)


def open_authorizations(order_id=None):
    filters = {"status": AuthorizationStatus.AWAITING_PAYMENT_METHOD.value}
    if order_id:
        filters["order_id"] = str(order_id)
    query = current_domain.repository_for(PaymentAuthorizationStatus)._dao.query.filter(**filters)
    return fetch_all(query.order_by("expires_at"))


def overdue_authorizations(as_of):
    as_of = as_utc(as_of)
    return [row for row in open_authorizations() if as_utc(row.expires_at) <= as_of]
