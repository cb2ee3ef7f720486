"""Pool of pseudo-terminal backed child processes.

The only component that touches OS processes for agents. Each child gets
its own pty (via pexpect) so interactive programs render exactly as they
would in a real terminal. Output is read on the asyncio event loop with
``loop.add_reader`` and fanned out synchronously to the registered data
listeners, in registration order, one chunk at a time.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import pexpect

from agentfleet.errors import ProcessNotFoundError

logger = logging.getLogger(__name__)

DataListener = Callable[[str], None]
ExitListener = Callable[[int, "int | None"], None]

# Running from inside an agent session leaks these into our environment and
# makes a nested agent refuse to start.
STRIP_ENV_VARS = frozenset({
    "CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT", "CLAUDE_REPL",
    "CLAUDE_CODE_PACKAGE_DIR",
})

TERM_NAME = "xterm-256color"
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
READ_SIZE = 65536
REAP_INTERVAL = 0.05
KILL_ESCALATE_AFTER = 5.0


@dataclass(frozen=True, slots=True)
class PtyHandle:
    id: str
    pid: int


@dataclass(slots=True)
class _PtyEntry:
    id: str
    process: pexpect.spawn
    data_listeners: list[DataListener] = field(default_factory=list)
    exit_listeners: list[ExitListener] = field(default_factory=list)
    got_data: bool = False


def build_env(extra: Mapping[str, str] | None = None) -> dict[str, str]:
    env = {**os.environ, **(extra or {})}
    for key in STRIP_ENV_VARS:
        env.pop(key, None)
    env["TERM"] = TERM_NAME
    return env


def _exit_code(process: pexpect.spawn) -> tuple[int, int | None]:
    if process.exitstatus is not None:
        return process.exitstatus, None
    sig = process.signalstatus
    return (128 + sig if sig is not None else -1), sig


class PtyPool:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._ptys: dict[str, _PtyEntry] = {}

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def spawn(
        self,
        file: str,
        args: Sequence[str],
        *,
        cwd: str | Path,
        env: Mapping[str, str] | None = None,
        cols: int | None = None,
        rows: int | None = None,
    ) -> PtyHandle:
        loop = self._event_loop()
        pty_id = str(uuid.uuid4())
        logger.debug("spawn file=%s args=%s cwd=%s cols=%s rows=%s", file, list(args), cwd, cols, rows)

        process = pexpect.spawn(
            file,
            list(args),
            cwd=str(cwd),
            env=build_env(env),
            encoding="utf-8",
            codec_errors="replace",
            dimensions=(rows or DEFAULT_ROWS, cols or DEFAULT_COLS),
        )
        # Reaping happens only after the child is gone; no need to sleep on close.
        process.delayafterclose = 0
        process.ptyproc.delayafterclose = 0

        entry = _PtyEntry(id=pty_id, process=process)
        self._ptys[pty_id] = entry
        loop.add_reader(process.child_fd, self._on_readable, entry)
        logger.debug("spawned pid=%s id=%s", process.pid, pty_id)
        return PtyHandle(id=pty_id, pid=process.pid)

    def _on_readable(self, entry: _PtyEntry) -> None:
        try:
            data = entry.process.read_nonblocking(READ_SIZE, timeout=0)
        except pexpect.TIMEOUT:
            return
        except pexpect.EOF:
            self._event_loop().remove_reader(entry.process.child_fd)
            self._reap(entry, notify=True)
            return

        if not entry.got_data:
            logger.debug("first data from pid=%s len=%d", entry.process.pid, len(data))
            entry.got_data = True
        for listener in list(entry.data_listeners):
            try:
                listener(data)
            except Exception:
                logger.exception("PTY data listener failed for %s", entry.id)

    def _reap(self, entry: _PtyEntry, *, notify: bool, waited: float = 0.0) -> None:
        process = entry.process
        if process.isalive():
            if waited >= KILL_ESCALATE_AFTER:
                try:
                    process.kill(signal.SIGKILL)
                except OSError:
                    pass
            self._event_loop().call_later(
                REAP_INTERVAL, lambda: self._reap(entry, notify=notify, waited=waited + REAP_INTERVAL)
            )
            return

        code, sig = _exit_code(process)
        logger.debug("exit pid=%s code=%s signal=%s", process.pid, code, sig)
        if notify:
            for listener in list(entry.exit_listeners):
                try:
                    listener(code, sig)
                except Exception:
                    logger.exception("PTY exit listener failed for %s", entry.id)
        try:
            process.close(force=True)
        except (OSError, pexpect.ExceptionPexpect) as exc:
            logger.debug("close failed for pid=%s: %s", process.pid, exc)
        if self._ptys.get(entry.id) is entry:
            del self._ptys[entry.id]

    def _require(self, pty_id: str) -> _PtyEntry:
        entry = self._ptys.get(pty_id)
        if entry is None:
            raise ProcessNotFoundError(pty_id)
        return entry

    def write(self, pty_id: str, data: str) -> None:
        self._require(pty_id).process.send(data)

    def resize(self, pty_id: str, cols: int, rows: int) -> None:
        self._require(pty_id).process.setwinsize(rows, cols)

    def on_data(self, pty_id: str, callback: DataListener) -> None:
        self._require(pty_id).data_listeners.append(callback)

    def on_exit(self, pty_id: str, callback: ExitListener) -> None:
        self._require(pty_id).exit_listeners.append(callback)

    def kill(self, pty_id: str) -> None:
        """Terminate and forget *pty_id*; its exit listeners never fire."""
        entry = self._ptys.pop(pty_id, None)
        if entry is None:
            return
        process = entry.process
        try:
            self._event_loop().remove_reader(process.child_fd)
        except (ValueError, OSError):
            pass
        try:
            process.kill(signal.SIGTERM)
        except OSError:
            pass
        self._reap(entry, notify=False)

    def kill_all(self) -> None:
        for pty_id in list(self._ptys):
            self.kill(pty_id)

    def active_ids(self) -> list[str]:
        return list(self._ptys)

    def has(self, pty_id: str) -> bool:
        return pty_id in self._ptys
