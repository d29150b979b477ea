"""Bistro bounded context — the order, inventory and payment consistency core.

Handles the ingredient ledger (event-sourced), menu availability, the order
lifecycle (event-sourced) and reconciliation of external payment
authorizations (event-sourced) against orders.
"""

import structlog
from protean.domain import Domain

bistro = Domain(name="bistro")

logger = structlog.get_logger(__name__)
