"""Dispatcher registry.

get_dispatcher() returns the installed dispatcher, defaulting to the
RecordingDispatcher. Deployments install their adapter at startup with
set_dispatcher().
"""

from bistro.dispatch.port import EventDispatcher
from bistro.dispatch.recording_adapter import RecordingDispatcher

_current_dispatcher: EventDispatcher | None = None


def get_dispatcher() -> EventDispatcher:
    global _current_dispatcher
    if _current_dispatcher is None:
        _current_dispatcher = RecordingDispatcher()
    return _current_dispatcher


def set_dispatcher(dispatcher: EventDispatcher) -> None:
    global _current_dispatcher
    _current_dispatcher = dispatcher


def reset_dispatcher() -> None:
    global _current_dispatcher
    _current_dispatcher = None
