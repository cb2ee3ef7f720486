"""Session orchestrator: the one place that owns the session map.

All mutation happens on the event loop. Teardown removes a session from the
map before doing any I/O so a concurrent lookup sees it as already gone.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from agentfleet.chat.adapter import ChatAdapter
from agentfleet.config.schema import FleetConfig, SessionConfig
from agentfleet.detectors import AgentStatus
from agentfleet.errors import NoWorktreeConflictError, ProcessNotFoundError, SessionNotFoundError
from agentfleet.events import EventBus
from agentfleet.git.branch_checkout import BranchCheckoutManager
from agentfleet.git.exec import CommandRunner, gh_exec, git_exec
from agentfleet.git.worktree import WorktreeManager
from agentfleet.git.worktree_meta import WorktreeMeta, WorktreeMetaStore
from agentfleet.process.pty_pool import PtyPool
from agentfleet.runtimes import SHELL_RUNTIME_ID, RuntimeRegistry
from agentfleet.session.creator import SessionCreator
from agentfleet.session.dev_server import DevServerManager
from agentfleet.session.discovery import SessionDiscovery
from agentfleet.session.stream import SessionStreamWirer
from agentfleet.session.types import InteractiveKind, PrintModeKind, Session, ShellKind, SpawnOptions
from agentfleet.store.project_registry import ProjectRegistry
from agentfleet.watch.poller import RepositoryPoller

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/sh"


class SessionManager:
    def __init__(
        self,
        projects: ProjectRegistry,
        runtimes: RuntimeRegistry,
        worktrees: WorktreeManager,
        pool: PtyPool,
        bus: EventBus,
        chat: ChatAdapter,
        poller: RepositoryPoller | None = None,
        *,
        branch_checkout: BranchCheckoutManager | None = None,
        meta_store: WorktreeMetaStore | None = None,
        session_config: SessionConfig | None = None,
        git: CommandRunner = git_exec,
    ) -> None:
        cfg = session_config or SessionConfig()
        self._sessions: dict[str, Session] = {}
        # Projects whose no-worktree session is still being created.
        self._no_worktree_pending: set[str] = set()
        self._projects = projects
        self._runtimes = runtimes
        self._worktrees = worktrees
        self._pool = pool
        self._bus = bus
        self._chat = chat
        self._poller = poller
        self._meta = meta_store or WorktreeMetaStore()

        self._wirer = SessionStreamWirer(
            pool,
            bus,
            chat,
            poller,
            runtimes,
            on_persist_additional_dirs=self._persist_additional_dirs,
            on_dev_server_needed=lambda session: self._dev_server.start_dev_server(session),
            buffer_max=cfg.output_buffer_max,
            buffer_keep=cfg.output_buffer_keep,
            detect_window=cfg.detect_window,
        )
        self._dev_server = DevServerManager(pool, bus, chat, self._wirer, runtimes, cfg.dev_server_command)
        self._creator = SessionCreator(
            projects,
            runtimes,
            worktrees,
            branch_checkout or BranchCheckoutManager(worktrees, git),
            pool,
            self._wirer,
            chat,
            self._meta,
            git,
        )
        self._discovery = SessionDiscovery(self._sessions, projects, worktrees, self._meta, poller, git)

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def chat(self) -> ChatAdapter:
        return self._chat

    @property
    def projects(self) -> ProjectRegistry:
        return self._projects

    @property
    def runtimes(self) -> RuntimeRegistry:
        return self._runtimes

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        session = self._sessions.get(session_id)
        return session.to_public() if session else None

    def list_sessions(self) -> list[dict[str, Any]]:
        return [s.to_public() for s in self._sessions.values()]

    def get_output_buffer(self, session_id: str) -> str:
        session = self._sessions.get(session_id)
        return session.output_buffer if session else ""

    def get_detected_url(self, session_id: str) -> str | None:
        session = self._sessions.get(session_id)
        return session.detected_url if session else None

    def get_session_status(self, session_id: str) -> AgentStatus | None:
        session = self._sessions.get(session_id)
        return session.status if session else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(self, options: SpawnOptions) -> dict[str, Any]:
        if not options.no_worktree:
            return self._register(await self._creator.create(options))

        # The project is reserved before the first await so a concurrent
        # request cannot pass the same check.
        project_id = options.project_id
        if project_id in self._no_worktree_pending or any(
            s.no_worktree and s.project_id == project_id for s in self._sessions.values()
        ):
            raise NoWorktreeConflictError(project_id)
        self._no_worktree_pending.add(project_id)
        try:
            return self._register(await self._creator.create(options))
        finally:
            self._no_worktree_pending.discard(project_id)

    def _register(self, session: Session) -> dict[str, Any]:
        self._sessions[session.id] = session
        if self._poller is not None:
            self._poller.watch(session.worktree_path, session.id)
        return session.to_public()

    def create_shell_session(self, cwd: str | Path) -> str:
        shell = os.environ.get("SHELL") or DEFAULT_SHELL
        handle = self._pool.spawn(shell, [], cwd=cwd)
        session = Session(
            project_id="",
            runtime_id=SHELL_RUNTIME_ID,
            branch_name="",
            worktree_path=str(cwd),
            kind=ShellKind(),
            pid=handle.pid,
            pty_id=handle.id,
        )
        self._sessions[session.id] = session
        self._wirer.wire_output_streaming(handle.id, session)
        self._wirer.wire_exit_handling(handle.id, session)
        return session.id

    def send_input(self, session_id: str, text: str) -> None:
        session = self._require(session_id)
        if session.non_interactive:
            self._dev_server.spawn_print_mode_follow_up(session, text.strip())
            return
        if not session.pty_id:
            return
        try:
            self._pool.write(session.pty_id, text)
        except ProcessNotFoundError:
            logger.debug("Input for %s dropped; process already exited", session_id)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        session = self._sessions.get(session_id)
        if session is None or not session.pty_id:
            return
        try:
            self._pool.resize(session.pty_id, cols, rows)
        except ProcessNotFoundError:
            logger.debug("Resize for %s dropped; process already exited", session_id)

    async def resume_session(self, session_id: str, runtime_id: str | None = None) -> dict[str, Any]:
        """Attach a fresh interactive process to a dormant session.

        Id, branch and worktree stay the same; a print-mode session comes
        back as an interactive one.
        """
        session = self._require(session_id)
        if session.pty_id:
            return session.to_public()

        if isinstance(session.kind, ShellKind):
            shell = os.environ.get("SHELL") or DEFAULT_SHELL
            handle = self._pool.spawn(shell, [], cwd=session.worktree_path)
        else:
            model = session.model
            if not model and not session.no_worktree:
                meta = self._meta.read(session.worktree_path)
                model = meta.model if meta else None
            runtime = self._runtimes.require(runtime_id or session.runtime_id)
            args = list(runtime.args)
            if model:
                args += ["--model", model]
            handle = self._pool.spawn(runtime.binary, args, cwd=session.worktree_path, env=runtime.env)
            self._dev_server.stop(session)
            session.kind = InteractiveKind(task_description=session.task_description, model=model)
            session.runtime_id = runtime.id

        session.pty_id = handle.id
        session.pid = handle.pid
        session.status = AgentStatus.RUNNING
        session.output_buffer = ""
        session.detected_url = None
        self._wirer.wire_output_streaming(handle.id, session)
        self._wirer.wire_exit_handling(handle.id, session)
        if self._poller is not None and session.project_id:
            self._poller.watch(session.worktree_path, session.id)
        logger.info("Resumed session %s on %s", session.id, session.branch_name)
        return session.to_public()

    async def kill_session(self, session_id: str) -> None:
        session = self._require(session_id)
        del self._sessions[session_id]

        if self._poller is not None:
            for directory in session.additional_dirs:
                self._poller.unwatch_additional_dir(directory, session_id)
            if not any(s.worktree_path == session.worktree_path for s in self._sessions.values()):
                self._poller.unwatch(session.worktree_path)

        self._chat.clear_session(session_id)
        if session.pty_id:
            self._pool.kill(session.pty_id)
        self._dev_server.stop(session)

        if session.project_id and not session.no_worktree:
            project = self._projects.get_project(session.project_id)
            try:
                await self._worktrees.remove_worktree(project.path if project else "", session.worktree_path)
            except Exception:
                logger.exception("Worktree cleanup failed for %s", session.worktree_path)
        logger.info("Killed session %s", session_id)

    def kill_all_sessions(self) -> None:
        for session in self._sessions.values():
            if session.pty_id:
                self._pool.kill(session.pty_id)
            self._dev_server.stop(session)
        self._sessions.clear()
        if self._poller is not None:
            self._poller.unwatch_all()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_sessions_for_project(self, project_id: str) -> list[dict[str, Any]]:
        await self._discovery.discover_sessions_for_project(project_id)
        return [s.to_public() for s in self._sessions.values() if s.project_id == project_id]

    async def discover_all_sessions(self, adopt_under: str | Path | None = None) -> list[dict[str, Any]]:
        await self._discovery.discover_all_sessions(adopt_under)
        return self.list_sessions()

    # ------------------------------------------------------------------
    # Wirer callbacks
    # ------------------------------------------------------------------

    def _persist_additional_dirs(self, session: Session) -> None:
        if session.no_worktree:
            return
        self._meta.write_quietly(
            session.worktree_path,
            WorktreeMeta(
                runtime_id=session.runtime_id,
                task_description=session.task_description,
                additional_dirs=list(session.additional_dirs),
                model=session.model,
            ),
        )


def build_session_manager(
    config: FleetConfig,
    *,
    pool: PtyPool | None = None,
    bus: EventBus | None = None,
    git: CommandRunner = git_exec,
    gh: CommandRunner = gh_exec,
) -> SessionManager:
    """Wire a manager and its collaborators from *config*."""
    storage = Path(config.storage_path).expanduser()
    bus = bus or EventBus()
    meta_store = WorktreeMetaStore()
    worktrees = WorktreeManager(storage, git, meta_store)
    return SessionManager(
        ProjectRegistry(storage, git),
        RuntimeRegistry.with_overrides(config.runtimes),
        worktrees,
        pool or PtyPool(),
        bus,
        ChatAdapter(config.chat.debounce_seconds),
        RepositoryPoller(bus, interval=config.watch.poll_interval_seconds),
        branch_checkout=BranchCheckoutManager(worktrees, git, gh),
        meta_store=meta_store,
        session_config=config.session,
        git=git,
    )
