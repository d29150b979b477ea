"""Recording dispatcher — keeps published notifications in memory."""

import threading

import structlog

from bistro.dispatch.port import EventDispatcher

logger = structlog.get_logger(__name__)


class RecordingDispatcher(EventDispatcher):
    """Dispatcher that records notifications for inspection and test assertions."""

    def __init__(self) -> None:
        self.published: list[dict] = []
        self._lock = threading.Lock()

    def publish(self, topic: str, payload: dict) -> None:
        with self._lock:
            self.published.append({"topic": topic, "payload": payload})
        logger.info("Notification published", topic=topic, **payload)

    def topics(self) -> list[str]:
        with self._lock:
            return [record["topic"] for record in self.published]

    def for_topic(self, topic: str) -> list[dict]:
        with self._lock:
            return [record["payload"] for record in self.published if record["topic"] == topic]

    def reset(self) -> None:
        with self._lock:
            self.published.clear()
