"""Net change of a worktree against its base branch.

Everything is staged first so untracked files show up, then the index is
compared with the base: the result is what merging the branch would bring
in, regardless of how many commits the agent made.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agentfleet.errors import CommandError
from agentfleet.git.exec import CommandRunner, git_exec

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FileChange:
    path: str
    type: str  # "added" | "modified" | "deleted"
    insertions: int = 0
    deletions: int = 0

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "type": self.type}


def _count(field: str) -> int:
    # Binary files report "-".
    return 0 if field == "-" else int(field)


def parse_numstat(output: str) -> list[FileChange]:
    """Classify ``git diff --numstat`` lines by their line counts."""
    changes: list[FileChange] = []
    for line in output.splitlines():
        parts = line.split("\t", 2)
        if len(parts) < 3:
            continue
        try:
            insertions, deletions = _count(parts[0]), _count(parts[1])
        except ValueError:
            continue
        if deletions and not insertions:
            change_type = "deleted"
        elif insertions and not deletions:
            change_type = "added"
        else:
            change_type = "modified"
        changes.append(FileChange(parts[2], change_type, insertions, deletions))
    return changes


class DiffProvider:
    def __init__(self, git: CommandRunner = git_exec) -> None:
        self._git = git

    async def _stage_all(self, worktree_path: str | Path) -> None:
        try:
            await self._git(["add", "."], worktree_path)
        except CommandError as exc:
            logger.debug("Staging %s before diff failed: %s", worktree_path, exc)

    async def get_diff(self, worktree_path: str | Path, base_branch: str) -> str:
        """Unified diff of the staged worktree against *base_branch*."""
        if not Path(worktree_path).exists():
            return ""
        await self._stage_all(worktree_path)
        return await self._git(["diff", "--cached", base_branch], worktree_path)

    async def get_changed_files(self, worktree_path: str | Path, base_branch: str) -> list[FileChange]:
        if not Path(worktree_path).exists():
            return []
        await self._stage_all(worktree_path)
        try:
            stdout = await self._git(["diff", "--cached", "--numstat", base_branch], worktree_path)
        except CommandError as exc:
            # No commits on the branch yet, or the base is unknown.
            logger.debug("numstat for %s failed: %s", worktree_path, exc)
            return []
        return parse_numstat(stdout)
