"""Session orchestration."""

from agentfleet.session.manager import SessionManager, build_session_manager
from agentfleet.session.types import (
    InteractiveKind,
    PrintModeKind,
    Session,
    SessionKind,
    ShellKind,
    SpawnOptions,
)

__all__ = [
    "InteractiveKind",
    "PrintModeKind",
    "Session",
    "SessionKind",
    "SessionManager",
    "ShellKind",
    "SpawnOptions",
    "build_session_manager",
]
