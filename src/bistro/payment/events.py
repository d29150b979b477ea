"""Domain events for the PaymentAuthorization aggregate.

One event per status change. Terminal events are never followed by another
status event on the same stream.
"""

from protean.fields import DateTime, Float, Identifier, String

from bistro.domain import bistro


@bistro.event(part_of="PaymentAuthorization")
class AuthorizationCreated:
    __version__ = 1

    authorization_id = Identifier(required=True)
    order_id = Identifier(required=True)
    external_reference = String(required=True)
    gateway_name = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    expires_at = DateTime(required=True)
    created_at = DateTime(required=True)


@bistro.event(part_of="PaymentAuthorization")
class AuthorizationSucceeded:
    """The customer paid; the order can be marked Paid."""

    __version__ = 1

    authorization_id = Identifier(required=True)
    order_id = Identifier(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    settled_at = DateTime(required=True)


@bistro.event(part_of="PaymentAuthorization")
class AuthorizationFailed:
    __version__ = 1

    authorization_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@bistro.event(part_of="PaymentAuthorization")
class AuthorizationCancelled:
    __version__ = 1

    authorization_id = Identifier(required=True)
    order_id = Identifier(required=True)
    reason = String(required=True)  # superseded, order cancelled, caller reason
    cancelled_at = DateTime(required=True)


@bistro.event(part_of="PaymentAuthorization")
class AuthorizationExpired:
    """The authorization ran out of time without a terminal gateway status."""

    __version__ = 1

    authorization_id = Identifier(required=True)
    order_id = Identifier(required=True)
    expires_at = DateTime(required=True)
    expired_at = DateTime(required=True)
