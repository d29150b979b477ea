"""Payment gateway port (abstract interface).

Defines the contract every gateway adapter implements. The core only tracks
authorization state; card data and the gateway's wire format stay behind
this interface. Adapters must be safe to call from watcher threads.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from protean.exceptions import ValidationError


class GatewayUnavailable(Exception):
    """The gateway could not be reached; callers treat this as no new information."""


@dataclass(frozen=True)
class AuthorizationResult:
    """Result of opening an authorization at the gateway."""

    external_reference: str
    gateway_name: str
    status: str = "requires_payment_method"


@dataclass(frozen=True)
class StatusResult:
    """The gateway's current view of one authorization."""

    external_reference: str
    status: str
    failure_reason: str | None = None


# Gateway vocabulary → authorization status
_STATUS_MAP = {
    "requires_payment_method": "Awaiting_Payment_Method",
    "awaiting_payment_method": "Awaiting_Payment_Method",
    "requires_action": "Awaiting_Payment_Method",
    "processing": "Awaiting_Payment_Method",
    "pending": "Awaiting_Payment_Method",
    "succeeded": "Succeeded",
    "paid": "Succeeded",
    "failed": "Failed",
    "declined": "Failed",
    "canceled": "Cancelled",
    "cancelled": "Cancelled",
    "expired": "Expired",
}


def normalize_status(raw_status: str) -> str:
    """Map a gateway status string onto the authorization status vocabulary."""
    status = _STATUS_MAP.get((raw_status or "").strip().lower())
    if status is None:
        raise ValidationError({"status": [f"Unknown gateway status: {raw_status}"]})
    return status


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"

    @abstractmethod
    def create_authorization(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> AuthorizationResult:
        """Open a time-limited authorization for the amount."""
        ...

    @abstractmethod
    def fetch_status(self, external_reference: str) -> StatusResult:
        """Return the gateway's current status for the authorization."""
        ...

    @abstractmethod
    def cancel_authorization(self, external_reference: str) -> None:
        """Ask the gateway to void an authorization that will not be used."""
        ...

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: str,
        signature: str,
    ) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
