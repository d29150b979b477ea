"""Error taxonomy of the bistro core.

Business-rule failures subclass Protean's ValidationError so they carry the
same ``messages`` dict as every other domain rejection and are never retried.
ConcurrencyConflict is transient: operations retry it internally and surface
it as retryable once retries run out.
"""

from protean.exceptions import ValidationError


class InsufficientStock(ValidationError):
    """One or more ingredients cannot cover the requested quantity.

    ``ingredient_id``/``required``/``available`` describe the first shortage;
    ``shortages`` lists every ingredient that was short.
    """

    def __init__(self, ingredient_id, required, available, shortages=None):
        self.ingredient_id = str(ingredient_id)
        self.required = required
        self.available = available
        self.shortages = shortages or [
            {"ingredient_id": self.ingredient_id, "required": required, "available": available}
        ]
        super().__init__(
            {
                "stock": [
                    f"Insufficient stock for {s['ingredient_id']}: {s['required']} required, {s['available']} available"
                    for s in self.shortages
                ]
            }
        )


class InvalidTransition(ValidationError):
    def __init__(self, from_status, to_status):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__({"status": [f"Cannot transition from {from_status} to {to_status}"]})


class InvalidOrderState(ValidationError):
    """The order is in a state that does not permit the requested action."""

    def __init__(self, order_id, state, action):
        self.order_id = str(order_id)
        self.state = state
        self.action = action
        super().__init__({"order": [f"Cannot {action} while order is {state}"]})


class MenuItemUnavailable(ValidationError):
    def __init__(self, menu_item_ids):
        self.menu_item_ids = [str(i) for i in menu_item_ids]
        super().__init__({"items": [f"Menu item {i} is not available for sale" for i in self.menu_item_ids]})


class PaymentAlreadyTerminal(ValidationError):
    def __init__(self, authorization_id, status):
        self.authorization_id = str(authorization_id)
        self.status = status
        super().__init__({"status": [f"Authorization {authorization_id} is already {status}"]})


class PaymentExpired(ValidationError):
    def __init__(self, authorization_id):
        self.authorization_id = str(authorization_id)
        super().__init__({"status": [f"Authorization {authorization_id} has expired"]})


class ConcurrencyConflict(Exception):
    """An atomic ledger or order operation could not be serialized in time."""

    def __init__(self, key, retryable=True):
        self.key = key
        self.retryable = retryable
        super().__init__(f"Could not serialize access to {key}")
