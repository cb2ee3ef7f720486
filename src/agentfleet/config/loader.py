"""YAML config loader for agentfleet."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from agentfleet.config.schema import (
    ChatConfig,
    FleetConfig,
    GitConfig,
    RuntimeConfig,
    SessionConfig,
    WatchConfig,
)
from agentfleet.errors import ConfigurationError

HOME_ENV_VAR = "AGENTFLEET_HOME"
DEFAULT_HOME = "~/.agentfleet"


def fleet_home() -> Path:
    """Directory holding ``config.yaml``, ``projects.json`` and worktrees."""
    return Path(os.environ.get(HOME_ENV_VAR, DEFAULT_HOME)).expanduser()


def default_config_path() -> Path:
    return fleet_home() / "config.yaml"


def load_fleet_yaml(path: str | Path | None = None) -> FleetConfig:
    p = Path(path) if path is not None else default_config_path()
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raw = {}

    session_raw = _section(raw, "session")
    watch_raw = _section(raw, "watch")
    chat_raw = _section(raw, "chat")
    git_raw = _section(raw, "git")

    runtimes: list[RuntimeConfig] = []
    raw_runtimes = raw.get("runtimes", [])
    if isinstance(raw_runtimes, list):
        for item in raw_runtimes:
            if isinstance(item, dict) and "runtime_id" in item and "binary" in item:
                runtimes.append(RuntimeConfig(**_pick(item, RuntimeConfig)))

    storage_default = str(fleet_home()) if HOME_ENV_VAR in os.environ else DEFAULT_HOME
    return FleetConfig(
        version=int(raw.get("version", 1)),
        storage_path=str(raw.get("storage_path", storage_default)),
        debug=bool(raw.get("debug", False)),
        session=SessionConfig(**_pick(session_raw, SessionConfig)),
        watch=WatchConfig(**_pick(watch_raw, WatchConfig)),
        chat=ChatConfig(**_pick(chat_raw, ChatConfig)),
        git=GitConfig(**_pick(git_raw, GitConfig)),
        runtimes=runtimes,
    )


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
