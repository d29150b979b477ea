"""Configurable fake payment gateway for development and testing.

Simulates a gateway without external calls. Authorizations start in
``requires_payment_method``; tests (or the /payments/gateway endpoint in
development) move them along with ``settle``. ``configure`` makes the
gateway unreachable or makes new authorizations fail outright.
"""

import threading
from uuid import uuid4

from bistro.gateway.port import (
    AuthorizationResult,
    GatewayUnavailable,
    PaymentGateway,
    StatusResult,
)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self) -> None:
        self.available: bool = True
        self.failure_reason: str = "Card declined"
        self.calls: list[dict] = []
        self._statuses: dict[str, str] = {}
        self._lock = threading.Lock()

    def configure(self, available: bool = True, failure_reason: str = "Card declined") -> None:
        """Configure gateway behavior at runtime."""
        self.available = available
        self.failure_reason = failure_reason

    def settle(self, external_reference: str, status: str) -> None:
        """Set the status the gateway reports for an authorization."""
        with self._lock:
            self._statuses[external_reference] = status

    def _record(self, call: dict) -> None:
        with self._lock:
            self.calls.append(call)
        if not self.available:
            raise GatewayUnavailable(f"Fake gateway unavailable during {call['method']}")

    def create_authorization(
        self,
        order_id: str,
        amount: float,
        currency: str,
        idempotency_key: str,
    ) -> AuthorizationResult:
        self._record(
            {
                "method": "create_authorization",
                "order_id": order_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
            }
        )
        reference = f"fake_auth_{uuid4().hex[:12]}"
        with self._lock:
            self._statuses[reference] = "requires_payment_method"
        return AuthorizationResult(external_reference=reference, gateway_name=self.name)

    def fetch_status(self, external_reference: str) -> StatusResult:
        self._record({"method": "fetch_status", "external_reference": external_reference})
        with self._lock:
            status = self._statuses.get(external_reference, "requires_payment_method")
        failure_reason = self.failure_reason if status in ("failed", "declined") else None
        return StatusResult(external_reference=external_reference, status=status, failure_reason=failure_reason)

    def cancel_authorization(self, external_reference: str) -> None:
        self._record({"method": "cancel_authorization", "external_reference": external_reference})
        with self._lock:
            if self._statuses.get(external_reference) == "requires_payment_method":
                self._statuses[external_reference] = "canceled"

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == "test-signature"
