"""Configuration schema for agentfleet YAML files."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class RuntimeConfig:
    runtime_id: str
    binary: str
    name: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    waiting_pattern: str = ""


@dataclass(slots=True)
class SessionConfig:
    output_buffer_max: int = 100_000
    output_buffer_keep: int = 50_000
    detect_window: int = 2000
    dev_server_command: list[str] = field(default_factory=lambda: ["npm", "run", "dev"])


@dataclass(slots=True)
class WatchConfig:
    poll_interval_seconds: float = 2.0


@dataclass(slots=True)
class ChatConfig:
    debounce_seconds: float = 0.3


@dataclass(slots=True)
class GitConfig:
    ai_generate_timeout_seconds: float = 15.0


@dataclass(slots=True)
class FleetConfig:
    version: int = 1
    storage_path: str = "~/.agentfleet"
    debug: bool = False
    session: SessionConfig = field(default_factory=SessionConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    git: GitConfig = field(default_factory=GitConfig)
    runtimes: list[RuntimeConfig] = field(default_factory=list)
