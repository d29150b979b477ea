"""Background reconciliation: one cancellable watch per open authorization.

A watch sleeps ``min(poll interval, time to expiry)``, polls the gateway
outside every lock, feeds what it sees into ``observe_payment`` and expires
the authorization once its deadline passes. It ends on any terminal status,
when cancelled, or on shutdown. An unreachable gateway is logged and
treated as no new information.

The ExpirySweeper is the safety net for authorizations nobody is watching,
e.g. after a restart: it runs ``expire_stale_payments`` on a fixed interval.

No watcher is installed by default; the FastAPI lifespan installs one with
``set_watcher`` and tests install their own.
"""

import threading

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError

from bistro.config import get_settings
from bistro.gateway import get_gateway
from bistro.gateway.port import GatewayUnavailable, normalize_status
from bistro.shared.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)

_AWAITING = "Awaiting_Payment_Method"


class PaymentWatcher:
    def __init__(self, domain, poll_interval: float | None = None) -> None:
        self._domain = domain
        self.poll_interval = poll_interval or get_settings().PAYMENT_POLL_INTERVAL_SECONDS
        self._lock = threading.Lock()
        self._tokens: dict[str, threading.Event] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._stopping = threading.Event()

    # -------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------
    def watch(self, authorization_id) -> None:
        authorization_id = str(authorization_id)
        if self._stopping.is_set():
            return
        with self._lock:
            if authorization_id in self._tokens:
                return
            token = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(authorization_id, token),
                name=f"payment-watch-{authorization_id[:8]}",
                daemon=True,
            )
            self._tokens[authorization_id] = token
            self._threads[authorization_id] = thread
        thread.start()
        logger.debug("Payment watch started", authorization_id=authorization_id)

    def cancel(self, authorization_id) -> None:
        with self._lock:
            token = self._tokens.pop(str(authorization_id), None)
        if token:
            token.set()

    def is_watching(self, authorization_id) -> bool:
        with self._lock:
            return str(authorization_id) in self._tokens

    def join(self, authorization_id, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._threads.get(str(authorization_id))
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    def shutdown(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        with self._lock:
            tokens = list(self._tokens.values())
            threads = list(self._threads.values())
            self._tokens.clear()
        for token in tokens:
            token.set()
        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout)
        logger.info("Payment watcher stopped", watches=len(threads))

    # -------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------
    def _stopped(self, token) -> bool:
        return token.is_set() or self._stopping.is_set()

    def _run(self, authorization_id, token):
        from bistro.payment.reconciliation import expire_payment, payment_status

        try:
            with self._domain.domain_context():
                while not self._stopped(token):
                    snapshot = payment_status(authorization_id)
                    if snapshot["status"] != _AWAITING:
                        break

                    remaining = (as_utc(snapshot["expires_at"]) - utcnow()).total_seconds()
                    if remaining <= 0:
                        expire_payment(authorization_id)
                        break

                    token.wait(min(self.poll_interval, remaining))
                    if self._stopped(token):
                        break
                    if self._poll(authorization_id, snapshot["external_reference"]):
                        break
        except ObjectNotFoundError:
            logger.warning("Watched authorization not found", authorization_id=authorization_id)
        except Exception:
            logger.exception("Payment watch crashed", authorization_id=authorization_id)
        finally:
            with self._lock:
                if self._tokens.get(authorization_id) is token:
                    del self._tokens[authorization_id]
                self._threads.pop(authorization_id, None)

    def _poll(self, authorization_id, external_reference) -> bool:
        """Poll the gateway once; return True when the watch should end."""
        from bistro.payment.reconciliation import observe_payment

        try:
            result = get_gateway().fetch_status(external_reference)
        except GatewayUnavailable as exc:
            logger.warning("Gateway unavailable while polling", authorization_id=authorization_id, error=str(exc))
            return False

        if normalize_status(result.status) == _AWAITING:
            return False
        try:
            observe_payment(authorization_id, result.status, failure_reason=result.failure_reason)
        except ValidationError as exc:
            logger.warning("Polled status rejected", authorization_id=authorization_id, error=exc.messages)
        return True


class ExpirySweeper:
    """Periodically expires overdue authorizations that nobody is watching."""

    def __init__(self, domain, interval: float | None = None) -> None:
        self._domain = domain
        self.interval = interval or get_settings().PAYMENT_SWEEP_INTERVAL_SECONDS
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="payment-expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    def sweep_once(self):
        from bistro.payment.reconciliation import expire_stale_payments

        with self._domain.domain_context():
            return expire_stale_payments()

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Payment expiry sweep failed")


_current_watcher: PaymentWatcher | None = None


def get_watcher() -> PaymentWatcher | None:
    """Return the installed watcher, or None when background watching is off."""
    return _current_watcher


def set_watcher(watcher: PaymentWatcher | None) -> None:
    global _current_watcher
    _current_watcher = watcher


def reset_watcher() -> None:
    """Shut down and remove the installed watcher."""
    global _current_watcher
    if _current_watcher is not None:
        _current_watcher.shutdown()
    _current_watcher = None
