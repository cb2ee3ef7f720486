"""Workspace isolation: one branch-scoped git worktree per agent session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agentfleet.errors import GitCommandError
from agentfleet.git.branch_namer import (
    branch_prefix,
    generate_branch_name,
    generate_task_branch_name,
    namespace_for,
)
from agentfleet.git.exec import CommandRunner, git_exec
from agentfleet.git.worktree_meta import WorktreeMetaStore

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WorktreeInfo:
    branch: str
    path: str


@dataclass(slots=True)
class PorcelainEntry:
    path: str
    branch: str | None = None


def parse_worktree_porcelain(raw: str) -> list[PorcelainEntry]:
    """Parse ``git worktree list --porcelain`` into entries, in listing order.

    The first entry is always the main checkout. Detached or bare entries
    have ``branch=None``.
    """
    entries: list[PorcelainEntry] = []
    current: PorcelainEntry | None = None
    for line in raw.splitlines():
        if line.startswith("worktree "):
            current = PorcelainEntry(path=line[len("worktree "):].strip())
            entries.append(current)
        elif line.startswith("branch ") and current is not None:
            ref = line[len("branch "):].strip()
            current.branch = ref.removeprefix("refs/heads/")
        elif not line.strip():
            current = None
    return entries


def safe_dir_name(branch: str) -> str:
    """Branch name flattened to a single path segment."""
    return branch.replace("/", "-")


def _same_path(a: str | Path, b: str | Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


class WorktreeManager:
    """Create, list and remove session worktrees under ``<storage>/worktrees``."""

    def __init__(
        self,
        storage_path: str | Path,
        git: CommandRunner = git_exec,
        meta_store: WorktreeMetaStore | None = None,
    ) -> None:
        self._storage_path = Path(storage_path).expanduser()
        self._git = git
        self._meta = meta_store or WorktreeMetaStore()

    def worktree_base(self, namespace: str) -> Path:
        return self._storage_path / "worktrees" / namespace

    def worktree_dir(self, namespace: str, branch: str) -> Path:
        return self.worktree_base(namespace) / safe_dir_name(branch)

    async def _prune(self, repo_path: str | Path) -> None:
        """Drop stale bookkeeping for worktrees whose directory is gone."""
        try:
            await self._git(["worktree", "prune"], repo_path)
        except GitCommandError as exc:
            log.warning("git worktree prune failed: %s", exc.stderr.strip())

    async def _delete_branch(self, repo_path: str | Path, branch: str) -> None:
        try:
            await self._git(["branch", "-D", branch], repo_path)
        except GitCommandError:
            # Already gone, or checked out in another worktree.
            log.debug("Branch %s not deleted", branch)

    async def create_worktree(
        self,
        repo_path: str | Path,
        base_branch: str,
        namespace: str,
        branch_name: str | None = None,
        task_description: str | None = None,
    ) -> WorktreeInfo:
        if branch_name:
            branch = branch_name
        elif task_description:
            branch = await generate_task_branch_name(repo_path, task_description, namespace, self._git)
        else:
            branch = await generate_branch_name(repo_path, namespace, self._git)

        path = self.worktree_dir(namespace, branch)
        path.parent.mkdir(parents=True, exist_ok=True)

        await self._prune(repo_path)
        await self._git(["worktree", "add", "-b", branch, str(path), base_branch], repo_path)
        log.info("Created worktree %s on branch %s (base %s)", path, branch, base_branch)
        return WorktreeInfo(branch=branch, path=str(path))

    async def add_existing_branch(
        self,
        repo_path: str | Path,
        branch: str,
        namespace: str,
    ) -> WorktreeInfo:
        """Check out an already existing *branch* into a fresh worktree (no ``-b``)."""
        path = self.worktree_dir(namespace, branch)
        path.parent.mkdir(parents=True, exist_ok=True)

        await self._prune(repo_path)
        await self._git(["worktree", "add", str(path), branch], repo_path)
        log.info("Created worktree %s for existing branch %s", path, branch)
        return WorktreeInfo(branch=branch, path=str(path))

    async def remove_worktree(self, repo_path: str | Path, worktree_path: str | Path) -> None:
        worktrees = await self.list_worktrees(repo_path)
        target = next((w for w in worktrees if _same_path(w.path, worktree_path)), None)

        await self._git(["worktree", "remove", str(worktree_path), "--force"], repo_path)
        self._meta.remove(worktree_path)

        if target is not None:
            await self._delete_branch(repo_path, target.branch)
        log.info("Removed worktree %s", worktree_path)

    async def list_worktrees(
        self,
        repo_path: str | Path,
        namespace: str | None = None,
    ) -> list[WorktreeInfo]:
        prefix = branch_prefix(namespace or namespace_for(repo_path))
        raw = await self._git(["worktree", "list", "--porcelain"], repo_path)
        return [
            WorktreeInfo(branch=e.branch, path=e.path)
            for e in parse_worktree_porcelain(raw)
            if e.branch and e.branch.startswith(prefix)
        ]
