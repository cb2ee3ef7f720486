"""Session entity and its mode-specific variants."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from agentfleet.detectors.status import AgentStatus
from agentfleet.runtimes import SHELL_RUNTIME_ID

OUTPUT_BUFFER_MAX = 100_000
OUTPUT_BUFFER_KEEP = 50_000


# ----------------------------------------------------------------------
# Kinds
# ----------------------------------------------------------------------


@dataclass(slots=True)
class InteractiveKind:
    """A resident agent process driven through its terminal."""

    task_description: str | None = None
    model: str | None = None


@dataclass(slots=True)
class PrintModeKind:
    """One agent process per turn, speaking line-delimited JSON on stdout."""

    task_description: str | None = None
    model: str | None = None
    line_buffer: str = ""
    dev_server_pty_id: str = ""
    turn: int = 1
    turn_has_agent_message: bool = False
    turn_result_received: bool = False

    def start_turn(self) -> None:
        self.turn += 1
        self.line_buffer = ""
        self.turn_has_agent_message = False
        self.turn_result_received = False


@dataclass(slots=True)
class ShellKind:
    """A plain login shell; no task and no status detection."""


SessionKind = InteractiveKind | PrintModeKind | ShellKind


def kind_name(kind: SessionKind) -> str:
    if isinstance(kind, PrintModeKind):
        return "print"
    if isinstance(kind, ShellKind):
        return "shell"
    return "interactive"


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------


def new_session_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class Session:
    project_id: str
    runtime_id: str
    branch_name: str
    worktree_path: str
    kind: SessionKind = field(default_factory=InteractiveKind)
    id: str = field(default_factory=new_session_id)
    status: AgentStatus = AgentStatus.RUNNING
    pid: int | None = None
    no_worktree: bool = False
    additional_dirs: list[str] = field(default_factory=list)
    detected_url: str | None = None
    # Internal: never part of the public snapshot.
    pty_id: str = ""
    output_buffer: str = ""

    @property
    def non_interactive(self) -> bool:
        return isinstance(self.kind, PrintModeKind)

    @property
    def is_shell(self) -> bool:
        return isinstance(self.kind, ShellKind) or self.runtime_id == SHELL_RUNTIME_ID

    @property
    def is_dormant(self) -> bool:
        return not self.pty_id

    @property
    def task_description(self) -> str | None:
        return getattr(self.kind, "task_description", None)

    @property
    def model(self) -> str | None:
        return getattr(self.kind, "model", None)

    def append_output(
        self,
        data: str,
        max_chars: int = OUTPUT_BUFFER_MAX,
        keep_chars: int = OUTPUT_BUFFER_KEEP,
    ) -> None:
        self.output_buffer += data
        if len(self.output_buffer) > max_chars:
            self.output_buffer = self.output_buffer[-keep_chars:]

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "runtimeId": self.runtime_id,
            "branchName": self.branch_name,
            "worktreePath": self.worktree_path,
            "status": str(self.status),
            "pid": self.pid,
            "kind": kind_name(self.kind),
            "taskDescription": self.task_description,
            "model": self.model,
            "additionalDirs": list(self.additional_dirs),
            "detectedUrl": self.detected_url,
            "noWorktree": self.no_worktree,
            "nonInteractive": self.non_interactive,
        }


@dataclass(slots=True)
class SpawnOptions:
    """What to start: which project/runtime, where, and in which mode.

    At most one of ``existing_branch`` and ``pr_identifier`` applies; with
    neither a new branch is cut (named ``branch_name`` or generated).
    """

    project_id: str
    runtime_id: str
    prompt: str = ""
    branch_name: str | None = None
    existing_branch: str | None = None
    pr_identifier: str | None = None
    no_worktree: bool = False
    non_interactive: bool = False
    model: str | None = None
    user_message: str | None = None
    cols: int | None = None
    rows: int | None = None
