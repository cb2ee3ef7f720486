"""Wires a pty handle's output into a session.

Two flavours:

* interactive: raw terminal text is accumulated in the session's bounded
  buffer and classified by the signal detectors on every chunk;
* print mode: stdout carries one JSON event per line (``--output-format
  stream-json``). Lines are re-assembled across chunks with
  :func:`consume_lines` and dispatched one by one.

Every exit handler checks that the exiting handle is still the session's
current one; a superseded process must not touch the live handle.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from agentfleet.chat.adapter import ChatAdapter
from agentfleet.detectors import AgentStatus, detect_add_dir, detect_status, detect_url
from agentfleet.detectors.ansi import trailing_window
from agentfleet.detectors.status import STATUS_WINDOW
from agentfleet.events import DIRS_CHANGED, EXIT, OUTPUT, STATUS, URL_DETECTED, EventBus
from agentfleet.process.pty_pool import PtyPool
from agentfleet.runtimes import RuntimeRegistry
from agentfleet.session.types import OUTPUT_BUFFER_KEEP, OUTPUT_BUFFER_MAX, PrintModeKind, Session
from agentfleet.watch.poller import RepositoryPoller

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Session], None]


def consume_lines(buffer: str, chunk: str) -> tuple[list[str], str]:
    """Split ``buffer + chunk`` into complete lines and the trailing remainder."""
    parts = (buffer + chunk).split("\n")
    return parts[:-1], parts[-1]


def update_status(bus: EventBus, session: Session, status: AgentStatus, *, always: bool = False) -> bool:
    """Set *status*, publishing it when it changed (or when *always*)."""
    changed = session.status != status
    session.status = status
    if changed or always:
        bus.emit(STATUS, session.id, status=str(status))
    return changed


def record_url(bus: EventBus, session: Session, text: str) -> bool:
    """Scan *text* for a preview URL; the first one found sticks."""
    if session.detected_url:
        return False
    found = detect_url(text)
    if found is None:
        return False
    session.detected_url = found.url
    logger.debug("URL detected for %s: %s", session.id, found.url)
    bus.emit(URL_DETECTED, session.id, url=found.url, port=found.port)
    return True


def assistant_text(event: dict[str, Any]) -> str:
    message = event.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if not isinstance(content, list):
        return ""
    parts = [
        block["text"]
        for block in content
        if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
    ]
    return "\n".join(parts)


class SessionStreamWirer:
    """Attaches data/exit listeners for a session's current pty handle.

    Side effects the wirer cannot perform itself (metadata writes, starting
    a dev server) are requested through the two callbacks.
    """

    def __init__(
        self,
        pool: PtyPool,
        bus: EventBus,
        chat: ChatAdapter,
        poller: RepositoryPoller | None,
        runtimes: RuntimeRegistry,
        on_persist_additional_dirs: SessionCallback,
        on_dev_server_needed: SessionCallback,
        *,
        buffer_max: int = OUTPUT_BUFFER_MAX,
        buffer_keep: int = OUTPUT_BUFFER_KEEP,
        detect_window: int = STATUS_WINDOW,
    ) -> None:
        self._pool = pool
        self._bus = bus
        self._chat = chat
        self._poller = poller
        self._runtimes = runtimes
        self._persist_dirs = on_persist_additional_dirs
        self._dev_server_needed = on_dev_server_needed
        self._buffer_max = buffer_max
        self._buffer_keep = buffer_keep
        self._window = detect_window

    # ------------------------------------------------------------------
    # Interactive
    # ------------------------------------------------------------------

    def wire_output_streaming(self, pty_id: str, session: Session) -> None:
        self._pool.on_data(pty_id, lambda data: self._on_interactive_data(session, data))

    def _on_interactive_data(self, session: Session, data: str) -> None:
        session.append_output(data, self._buffer_max, self._buffer_keep)

        if not session.is_shell:
            runtime = self._runtimes.get(session.runtime_id)
            waiting = runtime.waiting_pattern if runtime else None
            update_status(self._bus, session, detect_status(session.output_buffer, session.runtime_id, waiting))

            window = trailing_window(session.output_buffer, self._window)
            # At most one added directory per session; the first one wins.
            added = None if session.additional_dirs else detect_add_dir(window)
            if added:
                session.additional_dirs.append(added)
                logger.info("Session %s added working directory %s", session.id, added)
                self._bus.emit(DIRS_CHANGED, session.id, additional_dirs=list(session.additional_dirs))
                self._persist_dirs(session)
                if self._poller is not None:
                    self._poller.watch_additional_dir(added, session.id)

            record_url(self._bus, session, window)

        self._chat.process_pty_output(session.id, data)
        self._bus.emit(OUTPUT, session.id, data=data)

    def wire_exit_handling(self, pty_id: str, session: Session) -> None:
        def _on_exit(code: int, signal: int | None) -> None:
            if session.pty_id != pty_id:
                logger.debug("Ignoring exit of superseded handle %s for %s", pty_id, session.id)
                return
            session.pty_id = ""
            session.pid = None
            update_status(self._bus, session, AgentStatus.DONE, always=True)
            self._bus.emit(EXIT, session.id, code=code, signal=signal)

        self._pool.on_exit(pty_id, _on_exit)

    # ------------------------------------------------------------------
    # Print mode
    # ------------------------------------------------------------------

    def wire_stream_json_output(self, pty_id: str, session: Session) -> None:
        kind = session.kind
        if not isinstance(kind, PrintModeKind):
            raise TypeError(f"session {session.id} is not a print-mode session")
        kind.line_buffer = ""

        def _on_data(data: str) -> None:
            lines, kind.line_buffer = consume_lines(kind.line_buffer, data)
            for line in lines:
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    event = json.loads(stripped)
                except json.JSONDecodeError:
                    logger.debug("Dropping non-JSON line from %s: %s", session.id, stripped[:200])
                    continue
                if isinstance(event, dict):
                    self.handle_stream_event(session, event)

        self._pool.on_data(pty_id, _on_data)

    def handle_stream_event(self, session: Session, event: dict[str, Any]) -> None:
        kind = session.kind
        if not isinstance(kind, PrintModeKind):
            return
        event_type = event.get("type")
        logger.debug("stream event %s for %s", event_type, session.id)

        if event_type == "assistant":
            text = assistant_text(event)
            if text:
                kind.turn_has_agent_message = True
                self._chat.add_agent_message(session.id, text)
                record_url(self._bus, session, text)
        elif event_type == "result":
            result = event.get("result")
            if isinstance(result, str) and result and event.get("subtype") == "success":
                if not kind.turn_has_agent_message:
                    self._chat.add_agent_message(session.id, result)
                record_url(self._bus, session, result)
            # The process can linger long after its result; the turn is over now.
            kind.turn_result_received = True
            update_status(self._bus, session, AgentStatus.WAITING, always=True)

    def wire_print_mode_initial_exit(self, pty_id: str, session: Session) -> None:
        """First turn: with no preview URL yet, ask for a dev server."""

        def _on_exit(code: int, signal: int | None) -> None:
            if session.pty_id != pty_id:
                return
            session.pty_id = ""
            session.pid = None
            self._bus.emit(EXIT, session.id, code=code, signal=signal)
            if session.detected_url:
                update_status(self._bus, session, AgentStatus.WAITING, always=True)
            else:
                logger.info("Initial turn of %s finished; starting dev server", session.id)
                self._dev_server_needed(session)

        self._pool.on_exit(pty_id, _on_exit)

    def wire_print_mode_exit(self, pty_id: str, session: Session) -> None:
        def _on_exit(code: int, signal: int | None) -> None:
            if session.pty_id != pty_id:
                return
            session.pty_id = ""
            session.pid = None
            self._bus.emit(EXIT, session.id, code=code, signal=signal)
            update_status(self._bus, session, AgentStatus.WAITING, always=True)

        self._pool.on_exit(pty_id, _on_exit)
