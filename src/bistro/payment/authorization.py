"""PaymentAuthorization aggregate (Event Sourced).

Tracks one externally issued, time-limited authorization for an order.

State Machine:
    AWAITING_PAYMENT_METHOD → SUCCEEDED | FAILED | CANCELLED | EXPIRED
    Every outcome is terminal and sticky: once reached, later observations
    can repeat it (no-op) but never replace it.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import apply
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String, ValueObject

from bistro.domain import bistro
from bistro.errors import PaymentAlreadyTerminal, PaymentExpired
from bistro.payment.events import (
    AuthorizationCancelled,
    AuthorizationCreated,
    AuthorizationExpired,
    AuthorizationFailed,
    AuthorizationSucceeded,
)
from bistro.shared.clock import as_utc


class AuthorizationStatus(Enum):
    AWAITING_PAYMENT_METHOD = "Awaiting_Payment_Method"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


TERMINAL_STATUSES = {
    AuthorizationStatus.SUCCEEDED,
    AuthorizationStatus.FAILED,
    AuthorizationStatus.CANCELLED,
    AuthorizationStatus.EXPIRED,
}


@bistro.value_object(part_of="PaymentAuthorization")
class Money:
    """Monetary amount with currency."""

    currency = String(max_length=3, default="USD")
    value = Float(default=0.0)


@bistro.aggregate(is_event_sourced=True)
class PaymentAuthorization:
    order_id = Identifier(required=True)
    external_reference = String(required=True, max_length=255)
    gateway_name = String(max_length=50)
    amount = ValueObject(Money)
    status = String(
        choices=AuthorizationStatus,
        default=AuthorizationStatus.AWAITING_PAYMENT_METHOD.value,
    )
    expires_at = DateTime(required=True)
    failure_reason = String(max_length=500)
    cancellation_reason = String(max_length=500)
    settled_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, order_id, external_reference, gateway_name, amount, currency, expires_at):
        now = datetime.now(UTC)
        if as_utc(expires_at) <= now:
            raise ValidationError({"expires_at": ["Expiry must be in the future"]})
        if amount is None or amount <= 0:
            raise ValidationError({"amount": ["Amount must be positive"]})

        authorization = cls._create_new()
        authorization.raise_(
            AuthorizationCreated(
                authorization_id=str(authorization.id),
                order_id=str(order_id),
                external_reference=external_reference,
                gateway_name=gateway_name,
                amount=amount,
                currency=currency,
                expires_at=as_utc(expires_at),
                created_at=now,
            )
        )
        return authorization

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> AuthorizationStatus:
        return AuthorizationStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.current_status in TERMINAL_STATUSES

    def has_expired(self, as_of=None) -> bool:
        as_of = as_utc(as_of) if as_of else datetime.now(UTC)
        return as_of >= as_utc(self.expires_at)

    def _assert_open(self, target):
        """Reject a change of outcome once the authorization is terminal."""
        current = self.current_status
        if current == AuthorizationStatus.EXPIRED and target != current:
            raise PaymentExpired(self.id)
        if current in TERMINAL_STATUSES:
            raise PaymentAlreadyTerminal(self.id, current.value)

    # -------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------
    def observe(self, status, failure_reason=None) -> bool:
        """Apply an externally observed status; return True if anything changed.

        Repeating the current terminal status is a no-op. Non-terminal
        statuses carry no information.
        """
        target = AuthorizationStatus(status)
        if target == self.current_status and self.is_terminal:
            return False
        if target == AuthorizationStatus.AWAITING_PAYMENT_METHOD:
            return False
        self._assert_open(target)
        if target == AuthorizationStatus.EXPIRED:
            # The gateway is authoritative about its own deadline
            self._raise_expired()
        elif target == AuthorizationStatus.SUCCEEDED:
            self.succeed()
        elif target == AuthorizationStatus.FAILED:
            self.fail(failure_reason)
        else:
            self.cancel("cancelled at gateway")
        return True

    def succeed(self):
        self._assert_open(AuthorizationStatus.SUCCEEDED)
        self.raise_(
            AuthorizationSucceeded(
                authorization_id=str(self.id),
                order_id=str(self.order_id),
                amount=self.amount.value,
                currency=self.amount.currency,
                settled_at=datetime.now(UTC),
            )
        )

    def fail(self, reason=None):
        self._assert_open(AuthorizationStatus.FAILED)
        self.raise_(
            AuthorizationFailed(
                authorization_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                failed_at=datetime.now(UTC),
            )
        )

    def cancel(self, reason):
        self._assert_open(AuthorizationStatus.CANCELLED)
        self.raise_(
            AuthorizationCancelled(
                authorization_id=str(self.id),
                order_id=str(self.order_id),
                reason=reason,
                cancelled_at=datetime.now(UTC),
            )
        )

    def expire(self, as_of=None) -> bool:
        """Expire an open authorization whose deadline has passed.

        Terminal authorizations are left as they are (returns False), so a
        late expiry can never undo a payment.
        """
        if self.is_terminal:
            return False
        if not self.has_expired(as_of):
            raise ValidationError({"expires_at": [f"Authorization {self.id} does not expire until {self.expires_at}"]})

        self._raise_expired()
        return True

    def _raise_expired(self):
        self.raise_(
            AuthorizationExpired(
                authorization_id=str(self.id),
                order_id=str(self.order_id),
                expires_at=self.expires_at,
                expired_at=datetime.now(UTC),
            )
        )

    # -------------------------------------------------------------------
    # @apply methods — rebuild state during event replay
    # -------------------------------------------------------------------
    @apply
    def _on_created(self, event: AuthorizationCreated):
        self.id = event.authorization_id
        self.order_id = event.order_id
        self.external_reference = event.external_reference
        self.gateway_name = event.gateway_name
        self.amount = Money(value=event.amount, currency=event.currency)
        self.status = AuthorizationStatus.AWAITING_PAYMENT_METHOD.value
        self.expires_at = event.expires_at
        self.created_at = event.created_at
        self.updated_at = event.created_at

    @apply
    def _on_succeeded(self, event: AuthorizationSucceeded):
        self.status = AuthorizationStatus.SUCCEEDED.value
        self.settled_at = event.settled_at
        self.updated_at = event.settled_at

    @apply
    def _on_failed(self, event: AuthorizationFailed):
        self.status = AuthorizationStatus.FAILED.value
        self.failure_reason = event.reason
        self.updated_at = event.failed_at

    @apply
    def _on_cancelled(self, event: AuthorizationCancelled):
        self.status = AuthorizationStatus.CANCELLED.value
        self.cancellation_reason = event.reason
        self.updated_at = event.cancelled_at

    @apply
    def _on_expired(self, event: AuthorizationExpired):
        self.status = AuthorizationStatus.EXPIRED.value
        self.updated_at = event.expired_at
