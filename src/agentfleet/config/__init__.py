"""Configuration loading for agentfleet."""

from agentfleet.config.loader import default_config_path, fleet_home, load_fleet_yaml
from agentfleet.config.schema import (
    ChatConfig,
    FleetConfig,
    GitConfig,
    RuntimeConfig,
    SessionConfig,
    WatchConfig,
)

__all__ = [
    "ChatConfig",
    "FleetConfig",
    "GitConfig",
    "RuntimeConfig",
    "SessionConfig",
    "WatchConfig",
    "default_config_path",
    "fleet_home",
    "load_fleet_yaml",
]
