"""Processes a print-mode session starts between turns.

After the first turn a preview/dev server is launched when the agent did
not already reveal a URL; every follow-up message respawns the agent with
its "continue" flag.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import pexpect

from agentfleet.chat.adapter import ChatAdapter
from agentfleet.detectors import AgentStatus
from agentfleet.detectors.ansi import trailing_window
from agentfleet.detectors.status import STATUS_WINDOW
from agentfleet.events import EventBus
from agentfleet.process.pty_pool import PtyPool
from agentfleet.runtimes import AgentRuntime, RuntimeRegistry
from agentfleet.session.stream import SessionStreamWirer, record_url, update_status
from agentfleet.session.types import PrintModeKind, Session

logger = logging.getLogger(__name__)

DEFAULT_DEV_SERVER_COMMAND = ("npm", "run", "dev")
CONTINUE_FLAG = "-c"
PRINT_FLAGS = ("--output-format", "stream-json", "--verbose")


def print_mode_args(runtime: AgentRuntime, prompt: str, *, model: str | None = None, resume: bool = False) -> list[str]:
    """``<runtime args> [--model m] [-c] -p <prompt> --output-format stream-json --verbose``."""
    args = list(runtime.args)
    if model:
        args += ["--model", model]
    if resume:
        args.append(CONTINUE_FLAG)
    return [*args, "-p", prompt, *PRINT_FLAGS]


class DevServerManager:
    def __init__(
        self,
        pool: PtyPool,
        bus: EventBus,
        chat: ChatAdapter,
        wirer: SessionStreamWirer,
        runtimes: RuntimeRegistry,
        command: Sequence[str] = DEFAULT_DEV_SERVER_COMMAND,
    ) -> None:
        self._pool = pool
        self._bus = bus
        self._chat = chat
        self._wirer = wirer
        self._runtimes = runtimes
        self._command = list(command)

    def start_dev_server(self, session: Session) -> None:
        """Run the dev server in the session's directory and watch it for a URL.

        A turn that already delivered its result keeps the session
        ``waiting``; otherwise the session is ``running`` until a URL shows
        up or the server exits.
        """
        kind = session.kind
        if not isinstance(kind, PrintModeKind) or not self._command:
            return

        try:
            handle = self._pool.spawn(self._command[0], self._command[1:], cwd=session.worktree_path)
        except (OSError, pexpect.ExceptionPexpect) as exc:
            logger.warning("Dev server failed to start for %s: %s", session.id, exc)
            update_status(self._bus, session, AgentStatus.WAITING, always=True)
            return

        kind.dev_server_pty_id = handle.id
        session.output_buffer = ""
        if not kind.turn_result_received:
            update_status(self._bus, session, AgentStatus.RUNNING, always=True)

        def _on_data(data: str) -> None:
            session.append_output(data)
            window = trailing_window(session.output_buffer, STATUS_WINDOW)
            if record_url(self._bus, session, window) and not session.pty_id:
                update_status(self._bus, session, AgentStatus.WAITING, always=True)

        def _on_exit(code: int, signal: int | None) -> None:
            if kind.dev_server_pty_id == handle.id:
                kind.dev_server_pty_id = ""
            logger.info("Dev server for %s exited with %s", session.id, code)
            if session.status == AgentStatus.RUNNING and not session.pty_id:
                update_status(self._bus, session, AgentStatus.WAITING, always=True)

        self._pool.on_data(handle.id, _on_data)
        self._pool.on_exit(handle.id, _on_exit)

    def spawn_print_mode_follow_up(self, session: Session, prompt: str) -> None:
        if not prompt:
            return
        kind = session.kind
        if not isinstance(kind, PrintModeKind):
            raise TypeError(f"session {session.id} is not a print-mode session")

        if session.pty_id:
            self._pool.kill(session.pty_id)
            session.pty_id = ""
            # A killed process fires no exit listeners, so a first turn that
            # was still lingering never reached its dev-server start.
            if kind.turn == 1 and not session.detected_url and not kind.dev_server_pty_id:
                logger.info("Initial turn of %s superseded; starting dev server", session.id)
                self.start_dev_server(session)

        runtime = self._runtimes.require(session.runtime_id)
        args = print_mode_args(runtime, prompt, model=kind.model, resume=True)
        logger.debug("print-mode follow-up for %s: %s", session.id, args)

        handle = self._pool.spawn(runtime.binary, args, cwd=session.worktree_path, env=runtime.env)
        session.pty_id = handle.id
        session.pid = handle.pid
        session.output_buffer = ""
        kind.start_turn()
        self._chat.add_user_message(session.id, prompt)
        update_status(self._bus, session, AgentStatus.RUNNING, always=True)

        self._wirer.wire_stream_json_output(handle.id, session)
        self._wirer.wire_print_mode_exit(handle.id, session)

    def stop(self, session: Session) -> None:
        kind = session.kind
        if isinstance(kind, PrintModeKind) and kind.dev_server_pty_id:
            self._pool.kill(kind.dev_server_pty_id)
            kind.dev_server_pty_id = ""
