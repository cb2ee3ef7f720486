"""Resolve external branch / PR references and list suggestible branches."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from agentfleet.errors import CommandError, InvalidPRIdentifierError
from agentfleet.git.exec import CommandRunner, gh_exec, git_exec
from agentfleet.git.worktree import WorktreeInfo, WorktreeManager, parse_worktree_porcelain

logger = logging.getLogger(__name__)

BranchSource = Literal["local", "remote", "both"]

_PR_URL = re.compile(r"/pull/(\d+)")


@dataclass(frozen=True, slots=True)
class BranchInfo:
    name: str
    source: BranchSource


@dataclass(frozen=True, slots=True)
class PRInfo:
    number: int
    title: str
    head_ref_name: str
    author: str


def parse_pr_number(identifier: str) -> str:
    """Extract the PR number from ``"123"`` or ``https://.../pull/123``."""
    text = identifier.strip()
    if text.isdigit():
        return text
    match = _PR_URL.search(text)
    if match:
        return match.group(1)
    raise InvalidPRIdentifierError(identifier)


def parse_branch_refs(raw: str, checked_out: set[str]) -> list[BranchInfo]:
    """Turn ``git branch -a --format=%(refname)`` output into de-duplicated names.

    Remote HEAD pointers and anything in *checked_out* are dropped. Order
    follows first appearance.
    """
    local: set[str] = set()
    remote: set[str] = set()
    order: list[str] = []

    for line in raw.splitlines():
        ref = line.strip()
        if not ref:
            continue
        if ref.startswith("refs/heads/"):
            name = ref[len("refs/heads/"):]
            bucket = local
        elif ref.startswith("refs/remotes/"):
            if ref.endswith("/HEAD"):
                continue
            remote_and_name = ref[len("refs/remotes/"):]
            if "/" not in remote_and_name:
                continue
            name = remote_and_name.split("/", 1)[1]
            bucket = remote
        else:
            continue
        if name in checked_out:
            continue
        if name not in local and name not in remote:
            order.append(name)
        bucket.add(name)

    branches: list[BranchInfo] = []
    for name in order:
        is_local = name in local
        is_remote = name in remote
        source: BranchSource = "both" if is_local and is_remote else "local" if is_local else "remote"
        branches.append(BranchInfo(name=name, source=source))
    return branches


def secondary_worktree_branches(raw: str) -> set[str]:
    """Branches checked out in any worktree except the first (main) one."""
    entries = parse_worktree_porcelain(raw)
    return {e.branch for e in entries[1:] if e.branch}


class BranchCheckoutManager:
    def __init__(
        self,
        worktrees: WorktreeManager,
        git: CommandRunner = git_exec,
        gh: CommandRunner = gh_exec,
    ) -> None:
        self._worktrees = worktrees
        self._git = git
        self._gh = gh

    async def list_branches(self, repo_path: str | Path) -> list[BranchInfo]:
        try:
            await self._git(["fetch", "--all", "--prune"], repo_path)
        except CommandError as exc:
            # Offline or no remote: fall back to what is known locally.
            logger.info("git fetch failed, listing local refs only: %s", exc)

        raw = await self._git(["branch", "-a", "--format=%(refname)"], repo_path)
        checked_out = await self._worktree_branches(repo_path)
        return parse_branch_refs(raw, checked_out)

    async def _worktree_branches(self, repo_path: str | Path) -> set[str]:
        try:
            raw = await self._git(["worktree", "list", "--porcelain"], repo_path)
        except CommandError:
            return set()
        return secondary_worktree_branches(raw)

    async def list_open_prs(self, repo_path: str | Path) -> list[PRInfo]:
        raw = await self._gh(
            ["pr", "list", "--state=open", "--json", "number,title,headRefName,author", "--limit", "50"],
            repo_path,
        )
        parsed = json.loads(raw or "[]")
        return [
            PRInfo(
                number=int(pr["number"]),
                title=str(pr.get("title", "")),
                head_ref_name=str(pr.get("headRefName", "")),
                author=str((pr.get("author") or {}).get("login", "")),
            )
            for pr in parsed
        ]

    async def fetch_pr_branch(self, repo_path: str | Path, pr_identifier: str) -> str:
        number = parse_pr_number(pr_identifier)
        branch = (
            await self._gh(
                ["pr", "view", number, "--json", "headRefName", "-q", ".headRefName"],
                repo_path,
            )
        ).strip()
        await self._git(["fetch", "origin", branch], repo_path)
        logger.info("Fetched PR #%s head branch %s", number, branch)
        return branch

    async def create_worktree_from_branch(
        self,
        repo_path: str | Path,
        branch: str,
        namespace: str,
    ) -> WorktreeInfo:
        return await self._worktrees.add_existing_branch(repo_path, branch, namespace)
