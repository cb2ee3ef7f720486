"""Event bus for session events.

Every push notification the engine produces (status changes, output
chunks, exits, detected URLs/directories, file changes, conflicts) is a
:class:`FleetEvent` emitted here. Consumers (the CLI, a UI bridge) subscribe
either to everything or to a single event type.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)

STATUS = "status"
OUTPUT = "output"
EXIT = "exit"
DIRS_CHANGED = "dirs_changed"
URL_DETECTED = "url_detected"
FILES_CHANGED = "files_changed"
CONFLICTS = "conflicts"

EVENT_TYPES = frozenset({STATUS, OUTPUT, EXIT, DIRS_CHANGED, URL_DETECTED, FILES_CHANGED, CONFLICTS})

Subscriber = Callable[["FleetEvent"], Any]


@dataclass(slots=True)
class FleetEvent:
    """A single event about one session."""

    event_type: str
    session_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


class EventBus:
    """In-process pub/sub. Subscriber failures are logged, never propagated."""

    def __init__(self, history_limit: int = 1000) -> None:
        self._subscribers: list[tuple[str | None, Subscriber]] = []
        self._history: list[FleetEvent] = []
        self._history_limit = history_limit

    def emit(self, event_type: str, session_id: str, **data: Any) -> FleetEvent:
        event = FleetEvent(event_type=event_type, session_id=session_id, data=data)
        self._history.append(event)
        if len(self._history) > self._history_limit:
            del self._history[: len(self._history) - self._history_limit]

        for wanted, cb in list(self._subscribers):
            if wanted is not None and wanted != event_type:
                continue
            try:
                cb(event)
            except Exception:
                logger.exception("EventBus subscriber failed for %s", event_type)
        return event

    def subscribe(self, callback: Subscriber, event_type: str | None = None) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        entry = (event_type, callback)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            self._subscribers = [e for e in self._subscribers if e is not entry]

        return _unsubscribe

    @property
    def history(self) -> list[FleetEvent]:
        return list(self._history)

    def recent(self, n: int = 20, event_type: str | None = None) -> list[FleetEvent]:
        events = self._history if event_type is None else [e for e in self._history if e.event_type == event_type]
        return events[-n:]
