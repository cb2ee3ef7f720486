"""Infer an agent's status from the tail of its terminal output."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from agentfleet.detectors.ansi import trailing_window

STATUS_WINDOW = 2000


class AgentStatus(StrEnum):
    RUNNING = "running"
    WAITING = "waiting"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StatusPattern:
    pattern: re.Pattern[str]
    status: AgentStatus


def _p(regex: str, status: AgentStatus, flags: int = 0) -> StatusPattern:
    return StatusPattern(re.compile(regex, flags), status)


COMMON_ERROR_PATTERNS: tuple[StatusPattern, ...] = (
    _p(r"error:|Error:|ERROR:|fatal:|FATAL:|panic:|PANIC:", AgentStatus.ERROR),
    _p(r"Traceback \(most recent call last\)", AgentStatus.ERROR),
    _p(r"command not found", AgentStatus.ERROR),
)

RUNTIME_PATTERNS: dict[str, tuple[StatusPattern, ...]] = {
    "claude": (
        _p(r"❯", AgentStatus.WAITING),
        _p(r"waiting for input", AgentStatus.WAITING, re.IGNORECASE),
        _p(r"Do you want to proceed", AgentStatus.WAITING, re.IGNORECASE),
        _p(r"Allow|Deny|Yes|No.*\?", AgentStatus.WAITING, re.IGNORECASE),
        _p(r"Interrupt to stop", AgentStatus.RUNNING),
    ),
    "codex": (
        _p(r"> \Z", AgentStatus.WAITING),
        _p(r"codex>", AgentStatus.WAITING, re.IGNORECASE),
    ),
    "copilot": (
        _p(r"> \Z", AgentStatus.WAITING),
        _p(r"❯", AgentStatus.WAITING),
        _p(r"Allow|Deny|Yes|No.*\?", AgentStatus.WAITING, re.IGNORECASE),
    ),
    "gemini": (
        _p(r"❯", AgentStatus.WAITING),
        _p(r">>> \Z", AgentStatus.WAITING),
    ),
}


def build_patterns(runtime_id: str, waiting_pattern: str | None = None) -> list[StatusPattern]:
    """Ordered pattern list: built-ins, then the custom waiting pattern, then errors.

    *waiting_pattern* is a ``|``-separated list of literal markers.
    """
    patterns: list[StatusPattern] = list(RUNTIME_PATTERNS.get(runtime_id, ()))
    if waiting_pattern:
        for part in waiting_pattern.split("|"):
            if part.strip():
                patterns.append(StatusPattern(re.compile(re.escape(part.strip())), AgentStatus.WAITING))
    patterns.extend(COMMON_ERROR_PATTERNS)
    return patterns


def detect_status(
    output: str,
    runtime_id: str,
    waiting_pattern: str | None = None,
) -> AgentStatus:
    recent = trailing_window(output, STATUS_WINDOW)
    for entry in build_patterns(runtime_id, waiting_pattern):
        if entry.pattern.search(recent):
            return entry.status
    # Silence means still working, never finished.
    return AgentStatus.RUNNING
