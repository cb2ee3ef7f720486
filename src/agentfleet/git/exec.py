"""Single choke point for running git and the GitHub CLI.

Both helpers run the program with stdin closed and stdout/stderr piped,
return decoded stdout on success and raise on a non-zero exit with stderr
attached to the exception.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from agentfleet.errors import GhCommandError, GitCommandError

logger = logging.getLogger(__name__)

# Signature shared by git_exec / gh_exec so collaborators can take either
# (or a test double) as a constructor argument.
CommandRunner = Callable[[list[str], str | Path], Awaitable[str]]


async def _run(program: str, args: list[str], cwd: str | Path) -> tuple[int | None, str, str]:
    process = await asyncio.create_subprocess_exec(
        program,
        *args,
        cwd=str(cwd),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    return (
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


async def git_exec(args: list[str], cwd: str | Path) -> str:
    """Run ``git <args>`` in *cwd* and return stdout."""
    try:
        code, out, err = await _run("git", args, cwd)
    except OSError as exc:
        raise GitCommandError(args, None, str(exc)) from exc
    if code != 0:
        logger.debug("git %s failed in %s: %s", " ".join(args), cwd, err.strip())
        raise GitCommandError(args, code, err)
    return out


async def gh_exec(args: list[str], cwd: str | Path) -> str:
    """Run ``gh <args>`` in *cwd* and return stdout."""
    try:
        code, out, err = await _run("gh", args, cwd)
    except OSError as exc:
        raise GhCommandError(args, None, str(exc)) from exc
    if code != 0:
        logger.debug("gh %s failed in %s: %s", " ".join(args), cwd, err.strip())
        raise GhCommandError(args, code, err)
    return out


async def git_status(cwd: str | Path) -> str:
    """Porcelain status text for a working copy."""
    return await git_exec(["status", "--porcelain"], cwd)
