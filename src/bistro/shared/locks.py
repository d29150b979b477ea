"""Keyed lock registries that serialize access per ingredient and per order.

Locks are re-entrant so an operation already holding an ingredient can read
its balance again. Several keys are always acquired in sorted order, which
keeps two multi-ingredient commits from deadlocking each other. A key that
cannot be acquired within the timeout raises ConcurrencyConflict.
"""

import threading
from contextlib import contextmanager

import structlog

from bistro.config import get_settings
from bistro.errors import ConcurrencyConflict

logger = structlog.get_logger(__name__)


class KeyedLocks:
    def __init__(self, name: str) -> None:
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *keys, timeout: float | None = None):
        """Hold the locks for every key until the block exits."""
        if timeout is None:
            timeout = get_settings().LOCK_TIMEOUT_SECONDS

        acquired: list[threading.RLock] = []
        try:
            for key in sorted({str(k) for k in keys if k is not None}):
                lock = self._lock_for(key)
                if not lock.acquire(timeout=timeout):
                    logger.warning("Lock acquisition timed out", registry=self.name, key=key)
                    raise ConcurrencyConflict(f"{self.name}:{key}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def reset(self) -> None:
        with self._guard:
            self._locks.clear()


ingredient_locks = KeyedLocks("ingredient")
order_locks = KeyedLocks("order")
