"""Bounded retry for operations that lose a serialization race.

On ConcurrencyConflict the wrapped operation is re-run with exponential
backoff + jitter. Business errors pass straight through. Once retries are
exhausted the conflict is re-raised so the caller can resubmit unchanged.
"""

import functools
import random
import time

import structlog

from bistro.config import get_settings
from bistro.errors import ConcurrencyConflict

logger = structlog.get_logger(__name__)


def retry_on_conflict(max_retries: int | None = None):
    """Decorator for operations that serialize through ledger or order locks.

    max_retries counts re-runs after the first attempt; 0 runs the operation
    once. None falls back to CONFLICT_MAX_RETRIES.

    Usage:
        @retry_on_conflict()
        def confirm_order(order_id):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            settings = get_settings()
            retries = settings.CONFLICT_MAX_RETRIES if max_retries is None else max_retries
            attempts = max(retries, 0) + 1
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except ConcurrencyConflict as exc:
                    if attempt == attempts:
                        logger.error(
                            "Concurrency conflict unresolved",
                            operation=func.__name__,
                            attempts=attempts,
                            key=exc.key,
                        )
                        raise
                    base_delay = settings.CONFLICT_BASE_DELAY_MS / 1000.0
                    max_delay = settings.CONFLICT_MAX_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.CONFLICT_JITTER_MS / 1000.0)
                    delay = min(base_delay * (2**attempt), max_delay) + jitter
                    logger.warning(
                        "Concurrency conflict, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        delay=round(delay, 3),
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
