"""Notification dispatcher port.

The dispatcher is an external collaborator that owns delivery (Slack, SMS,
kitchen display, ...). The core only hands it a topic and a flat payload.
"""

from abc import ABC, abstractmethod


class EventDispatcher(ABC):
    @abstractmethod
    def publish(self, topic: str, payload: dict) -> None:
        """Hand one notification to the dispatcher."""
        ...
