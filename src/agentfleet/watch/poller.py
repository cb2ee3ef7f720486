"""Repository poller.

Every watched path gets its own ticker task. Each tick runs a porcelain
status query; when the raw text differs from the last text seen for that
path the result is parsed and published as ``files_changed`` (and, for
worktrees, ``conflicts``) on the event bus. A poll still in flight makes
the next tick a no-op, so slow queries skip ticks instead of piling up.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from agentfleet.events import CONFLICTS, FILES_CHANGED, EventBus
from agentfleet.git.exec import git_status
from agentfleet.git.operations import CONFLICT_CODES

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0

ADDED = "added"
MODIFIED = "modified"
DELETED = "deleted"

StatusQuery = Callable[[str | Path], Awaitable[str]]


@dataclass(frozen=True, slots=True)
class FileChange:
    path: str
    type: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "type": self.type}


def _change_type(code: str) -> str:
    if "?" in code or code[0] == "A":
        return ADDED
    if "D" in code:
        return DELETED
    return MODIFIED


def parse_status(text: str) -> tuple[list[FileChange], list[str]]:
    """Split ``git status --porcelain`` text into changes and conflict paths.

    Conflicted entries (``UU``, ``AA``, ``DD``) are listed as conflicts and
    also appear in the change list as ``modified``.
    """
    changes: list[FileChange] = []
    conflicts: list[str] = []
    for line in text.splitlines():
        if len(line) < 4:
            continue
        code, file_path = line[:2], line[3:]
        if " -> " in file_path:
            file_path = file_path.split(" -> ", 1)[1]
        if code in CONFLICT_CODES:
            conflicts.append(file_path)
            changes.append(FileChange(file_path, MODIFIED))
            continue
        changes.append(FileChange(file_path, _change_type(code)))
    return changes, conflicts


@dataclass(slots=True)
class _Watch:
    path: str
    session_id: str
    # Set for additional directories; echoed in files_changed as ``source``.
    source: str | None = None
    ticker: asyncio.Task[None] | None = None
    poll: asyncio.Task[None] | None = None
    last_status: str | None = None


class RepositoryPoller:
    def __init__(
        self,
        bus: EventBus,
        status_fn: StatusQuery = git_status,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._bus = bus
        self._status = status_fn
        self._interval = interval
        self._worktrees: dict[str, _Watch] = {}
        self._extra_dirs: dict[tuple[str, str], _Watch] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def watch(self, path: str, session_id: str) -> None:
        if path in self._worktrees:
            return
        watch = _Watch(path=path, session_id=session_id)
        self._worktrees[path] = watch
        self._start(watch)

    def watch_additional_dir(self, directory: str, session_id: str) -> None:
        key = (directory, session_id)
        if key in self._extra_dirs:
            return
        watch = _Watch(path=directory, session_id=session_id, source=directory)
        self._extra_dirs[key] = watch
        self._start(watch)

    def unwatch(self, path: str) -> None:
        watch = self._worktrees.pop(path, None)
        if watch is not None:
            self._stop(watch)

    def unwatch_additional_dir(self, directory: str, session_id: str) -> None:
        watch = self._extra_dirs.pop((directory, session_id), None)
        if watch is not None:
            self._stop(watch)

    def unwatch_all(self) -> None:
        for watch in [*self._worktrees.values(), *self._extra_dirs.values()]:
            self._stop(watch)
        self._worktrees.clear()
        self._extra_dirs.clear()

    def watched_paths(self) -> list[str]:
        return [*self._worktrees, *(w.path for w in self._extra_dirs.values())]

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _start(self, watch: _Watch) -> None:
        watch.ticker = asyncio.get_running_loop().create_task(self._tick_forever(watch))

    @staticmethod
    def _stop(watch: _Watch) -> None:
        for task in (watch.ticker, watch.poll):
            if task is not None and not task.done():
                task.cancel()
        watch.ticker = None
        watch.poll = None
        watch.last_status = None

    async def _tick_forever(self, watch: _Watch) -> None:
        while True:
            if watch.poll is None or watch.poll.done():
                watch.poll = asyncio.create_task(self._poll(watch))
            await asyncio.sleep(self._interval)

    def _is_current(self, watch: _Watch) -> bool:
        if watch.source is None:
            return self._worktrees.get(watch.path) is watch
        return self._extra_dirs.get((watch.path, watch.session_id)) is watch

    async def _poll(self, watch: _Watch) -> None:
        try:
            status = await self._status(watch.path)
        except Exception as exc:
            logger.debug("Status query failed for %s: %s", watch.path, exc)
            return
        if not self._is_current(watch) or status == watch.last_status:
            return
        watch.last_status = status
        self._publish(watch, status)

    def _publish(self, watch: _Watch, status: str) -> None:
        changes, conflicts = parse_status(status)
        payload: dict[str, Any] = {"changes": [c.to_dict() for c in changes]}
        if watch.source is not None:
            payload["source"] = watch.source
        self._bus.emit(FILES_CHANGED, watch.session_id, **payload)
        if watch.source is None:
            self._bus.emit(CONFLICTS, watch.session_id, conflicts=conflicts)

    async def aclose(self) -> None:
        """Stop every watch and wait for the cancelled tasks to finish."""
        tasks = [
            t
            for w in [*self._worktrees.values(), *self._extra_dirs.values()]
            for t in (w.ticker, w.poll)
            if t is not None
        ]
        self.unwatch_all()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
