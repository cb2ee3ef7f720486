"""Agentfleet error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    NOT_FOUND = "not_found"
    COMMAND = "command"
    CONFLICT = "conflict"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class FleetError(Exception):
    """Base error for all agentfleet exceptions."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class NotFoundError(FleetError):
    """An id (session, project, runtime, process handle) does not resolve."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.NOT_FOUND, retryable=False, **kwargs)


class SessionNotFoundError(NotFoundError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", details={"session_id": session_id})
        self.session_id = session_id


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}", details={"project_id": project_id})
        self.project_id = project_id


class RuntimeNotFoundError(NotFoundError):
    def __init__(self, runtime_id: str) -> None:
        super().__init__(f"Runtime not found: {runtime_id}", details={"runtime_id": runtime_id})
        self.runtime_id = runtime_id


class ProcessNotFoundError(NotFoundError):
    """Raised when acting on a pty handle that has exited or was killed."""

    def __init__(self, pty_id: str) -> None:
        super().__init__(f"PTY not found: {pty_id}", details={"pty_id": pty_id})
        self.pty_id = pty_id


class InvalidPRIdentifierError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__(
            f'Invalid PR identifier: "{identifier}". Use a PR number or GitHub URL.',
            details={"identifier": identifier},
        )
        self.identifier = identifier


class CommandError(FleetError):
    """An external command (git, gh) exited non-zero."""

    def __init__(
        self,
        program: str,
        args: list[str],
        returncode: int | None,
        stderr: str = "",
    ) -> None:
        sub = args[0] if args else ""
        super().__init__(
            f"{program} {sub} failed (code {returncode}): {stderr.strip()}",
            category=ErrorCategory.COMMAND,
            retryable=True,
            details={"args": list(args), "returncode": returncode},
        )
        self.program = program
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr


class GitCommandError(CommandError):
    def __init__(self, args: list[str], returncode: int | None, stderr: str = "") -> None:
        super().__init__("git", args, returncode, stderr)


class GhCommandError(CommandError):
    def __init__(self, args: list[str], returncode: int | None, stderr: str = "") -> None:
        super().__init__("gh", args, returncode, stderr)


class ResourceConflictError(FleetError):
    """The requested operation collides with existing state."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.CONFLICT, retryable=False, **kwargs)


class NoWorktreeConflictError(ResourceConflictError):
    def __init__(self, project_id: str) -> None:
        super().__init__(
            "A no-worktree agent is already running for this project. "
            "Only one no-worktree agent can run at a time per project.",
            details={"project_id": project_id},
        )


class DirtyWorkingTreeError(ResourceConflictError):
    def __init__(self, path: str) -> None:
        super().__init__(
            "Cannot switch branches: your working tree has uncommitted changes. "
            "Please commit or stash them before starting a no-worktree agent.",
            details={"path": path},
        )


class ConfigurationError(FleetError):
    """Invalid or missing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False)
