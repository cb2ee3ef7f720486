"""Rebuilds dormant sessions from what is on disk.

Worktrees under a project's namespace become ``done`` sessions with no
process, restored from their metadata file when one exists. Optionally a
project sitting under a managed directory with no session at all is
"adopted": a dormant no-worktree print-mode session on its current (or
first feature) branch.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agentfleet.detectors import AgentStatus
from agentfleet.errors import CommandError, FleetError
from agentfleet.git.exec import CommandRunner, git_exec
from agentfleet.git.worktree import WorktreeManager
from agentfleet.git.worktree_meta import WorktreeMetaStore
from agentfleet.session.types import InteractiveKind, PrintModeKind, Session
from agentfleet.store.project_registry import Project, ProjectRegistry
from agentfleet.watch.poller import RepositoryPoller

logger = logging.getLogger(__name__)


class SessionDiscovery:
    def __init__(
        self,
        sessions: dict[str, Session],
        projects: ProjectRegistry,
        worktrees: WorktreeManager,
        meta_store: WorktreeMetaStore,
        poller: RepositoryPoller | None = None,
        git: CommandRunner = git_exec,
    ) -> None:
        self._sessions = sessions
        self._projects = projects
        self._worktrees = worktrees
        self._meta = meta_store
        self._poller = poller
        self._git = git

    def _has_sessions(self, project_id: str) -> bool:
        return any(s.project_id == project_id for s in self._sessions.values())

    async def discover_sessions_for_project(self, project_id: str) -> list[Session]:
        """Track every untracked worktree of *project_id*; returns the new sessions."""
        project = self._projects.require(project_id)
        worktrees = await self._worktrees.list_worktrees(project.path, project.name)
        tracked = {s.worktree_path for s in self._sessions.values() if s.project_id == project_id}

        found: list[Session] = []
        for wt in worktrees:
            if wt.path in tracked:
                continue
            meta = self._meta.read(wt.path)
            session = Session(
                project_id=project_id,
                runtime_id=meta.runtime_id if meta else "",
                branch_name=wt.branch,
                worktree_path=wt.path,
                kind=InteractiveKind(
                    task_description=meta.task_description if meta else None,
                    model=meta.model if meta else None,
                ),
                status=AgentStatus.DONE,
                additional_dirs=list(meta.additional_dirs) if meta else [],
            )
            self._sessions[session.id] = session
            found.append(session)
            if self._poller is not None:
                for directory in session.additional_dirs:
                    self._poller.watch_additional_dir(directory, session.id)

        if found:
            logger.info("Discovered %d dormant session(s) for %s", len(found), project.name)
        return found

    async def discover_all_sessions(self, adopt_under: str | Path | None = None) -> list[Session]:
        found: list[Session] = []
        for project in self._projects.list_projects():
            if self._has_sessions(project.id):
                continue
            try:
                found += await self.discover_sessions_for_project(project.id)
            except (FleetError, OSError) as exc:
                # The project directory may be gone.
                logger.warning("Discovery failed for %s: %s", project.path, exc)

            if adopt_under is not None and not self._has_sessions(project.id) and _is_under(project.path, adopt_under):
                adopted = await self._adopt_branch(project)
                if adopted is not None:
                    found.append(adopted)
        return found

    async def _adopt_branch(self, project: Project) -> Session | None:
        try:
            branch = (await self._git(["branch", "--show-current"], project.path)).strip()
            if branch == project.base_branch:
                raw = await self._git(["branch", "--format=%(refname:short)"], project.path)
                feature = next(
                    (b.strip() for b in raw.splitlines() if b.strip() and b.strip() != project.base_branch),
                    None,
                )
                if feature:
                    branch = feature
        except CommandError as exc:
            logger.debug("Cannot adopt %s: %s", project.path, exc)
            return None
        if not branch:
            return None

        session = Session(
            project_id=project.id,
            runtime_id="",
            branch_name=branch,
            worktree_path=project.path,
            kind=PrintModeKind(),
            status=AgentStatus.DONE,
            no_worktree=True,
        )
        self._sessions[session.id] = session
        logger.info("Adopted branch %s of %s as a dormant session", branch, project.name)
        return session


def _is_under(path: str | Path, base: str | Path) -> bool:
    return Path(path).expanduser().resolve().is_relative_to(Path(base).expanduser().resolve())
