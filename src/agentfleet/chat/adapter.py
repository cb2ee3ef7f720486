"""Turns streamed terminal text into discrete, timestamped chat messages."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable

from agentfleet.detectors.ansi import clean_for_display

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3

ROLE_USER = "user"
ROLE_SYSTEM = "system"
ROLE_AGENT = "agent"

MessageListener = Callable[["ChatMessage"], Any]


@dataclass(slots=True)
class ChatMessage:
    id: str
    session_id: str
    role: str
    text: str
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class _PendingOutput:
    raw: str = ""
    timer: asyncio.TimerHandle | None = None


class ChatAdapter:
    """Ordered message list and listeners per session.

    Interactive output arrives as arbitrary pty fragments. Fragments are
    accumulated per session and flushed as one ``agent`` message after
    ``debounce`` seconds of silence. Print-mode text skips the buffer and is
    added directly with :meth:`add_agent_message`.
    """

    def __init__(
        self,
        debounce: float = DEFAULT_DEBOUNCE_SECONDS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._debounce = debounce
        self._loop = loop
        self._messages: dict[str, list[ChatMessage]] = defaultdict(list)
        self._listeners: dict[str, list[MessageListener]] = defaultdict(list)
        self._pending: dict[str, _PendingOutput] = {}
        self._next_id = 1

    def add_user_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add(session_id, ROLE_USER, text)

    def add_system_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add(session_id, ROLE_SYSTEM, text)

    def add_agent_message(self, session_id: str, text: str) -> ChatMessage:
        return self._add(session_id, ROLE_AGENT, text)

    def process_pty_output(self, session_id: str, raw: str) -> None:
        if not raw:
            return
        pending = self._pending.setdefault(session_id, _PendingOutput())
        pending.raw += raw
        if pending.timer is not None:
            pending.timer.cancel()
        loop = self._loop or asyncio.get_running_loop()
        pending.timer = loop.call_later(self._debounce, self._flush, session_id)

    def flush(self, session_id: str) -> ChatMessage | None:
        """Flush buffered output for *session_id* now instead of waiting."""
        pending = self._pending.get(session_id)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        return self._flush(session_id)

    def _flush(self, session_id: str) -> ChatMessage | None:
        pending = self._pending.pop(session_id, None)
        if pending is None:
            return None
        text = clean_for_display(pending.raw).strip()
        if not text:
            return None
        return self.add_agent_message(session_id, text)

    def get_messages(self, session_id: str) -> list[ChatMessage]:
        return list(self._messages.get(session_id, ()))

    def has_agent_message(self, session_id: str) -> bool:
        return any(m.role == ROLE_AGENT for m in self._messages.get(session_id, ()))

    def on_message(self, session_id: str, listener: MessageListener) -> Callable[[], None]:
        self._listeners[session_id].append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(session_id)
            if listeners and listener in listeners:
                listeners.remove(listener)

        return _unsubscribe

    def clear_session(self, session_id: str) -> None:
        pending = self._pending.pop(session_id, None)
        if pending is not None and pending.timer is not None:
            pending.timer.cancel()
        self._messages.pop(session_id, None)
        self._listeners.pop(session_id, None)

    def _add(self, session_id: str, role: str, text: str) -> ChatMessage:
        message = ChatMessage(id=f"msg-{self._next_id}", session_id=session_id, role=role, text=text)
        self._next_id += 1
        self._messages[session_id].append(message)
        for listener in list(self._listeners.get(session_id, ())):
            try:
                listener(message)
            except Exception:
                logger.exception("Chat listener failed for session %s", session_id)
        return message
