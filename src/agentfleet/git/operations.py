"""Small git helpers used around a session's worktree (commit, conflicts, ahead/behind)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentfleet.errors import CommandError
from agentfleet.git.exec import CommandRunner, git_exec

logger = logging.getLogger(__name__)

CONFLICT_CODES = frozenset({"UU", "AA", "DD"})
AI_GENERATE_TIMEOUT_SECONDS = 15.0


@dataclass(slots=True)
class AheadBehind:
    ahead: int = 0
    behind: int = 0


@dataclass(slots=True)
class StatusDetail:
    conflicts: list[str] = field(default_factory=list)
    staged: list[str] = field(default_factory=list)
    unstaged: list[str] = field(default_factory=list)


def parse_status_detail(porcelain: str) -> StatusDetail:
    detail = StatusDetail()
    for line in porcelain.splitlines():
        if len(line) < 4:
            continue
        xy, file_path = line[:2], line[3:]
        if xy in CONFLICT_CODES:
            detail.conflicts.append(file_path)
            continue
        x, y = xy[0], xy[1]
        if x not in (" ", "?"):
            detail.staged.append(file_path)
        if y not in (" ", "?") or xy.startswith("?"):
            detail.unstaged.append(file_path)
    return detail


class GitOperations:
    def __init__(
        self,
        git: CommandRunner = git_exec,
        ai_generate_timeout: float = AI_GENERATE_TIMEOUT_SECONDS,
    ) -> None:
        self._git = git
        self._ai_timeout = ai_generate_timeout

    async def commit(self, worktree_path: str | Path, message: str) -> None:
        await self._git(["add", "."], worktree_path)
        await self._git(["commit", "-m", message], worktree_path)

    async def status_detail(self, worktree_path: str | Path) -> StatusDetail:
        return parse_status_detail(await self._git(["status", "--porcelain"], worktree_path))

    async def ahead_behind(self, worktree_path: str | Path, base_branch: str) -> AheadBehind:
        try:
            stdout = await self._git(
                ["rev-list", "--left-right", "--count", f"{base_branch}...HEAD"],
                worktree_path,
            )
        except CommandError:
            # No common ancestor yet, or the base is unknown.
            return AheadBehind()
        parts = stdout.split()
        try:
            behind = int(parts[0]) if parts else 0
            ahead = int(parts[1]) if len(parts) > 1 else 0
        except ValueError:
            return AheadBehind()
        return AheadBehind(ahead=ahead, behind=behind)

    async def resolve_conflict(
        self,
        worktree_path: str | Path,
        file_path: str,
        resolved_content: str,
    ) -> None:
        root = Path(worktree_path).resolve()
        target = (root / file_path).resolve()
        if not target.is_relative_to(root):
            raise ValueError("Path traversal denied: file outside worktree")
        target.write_text(resolved_content, encoding="utf-8")
        await self._git(["add", "--", file_path], worktree_path)

    async def ai_generate(
        self,
        runtime_binary: str,
        prompt: str,
        cwd: str | Path,
        flag: str = "-p",
    ) -> str:
        """Run ``<binary> <flag> <prompt>`` once, e.g. to draft a commit message.

        The process is killed once the timeout ceiling passes. Any failure
        yields an empty string.
        """
        try:
            process = await asyncio.create_subprocess_exec(
                runtime_binary,
                flag,
                prompt,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.warning("ai_generate spawn failed: %s", exc)
            return ""

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=self._ai_timeout)
        except TimeoutError:
            logger.warning("ai_generate timed out after %ss", self._ai_timeout)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return ""

        if process.returncode != 0:
            logger.warning("ai_generate failed: exit code %s", process.returncode)
            return ""
        return stdout.decode("utf-8", errors="replace").strip()
