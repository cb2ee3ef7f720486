"""Agent runtimes: which binary to launch and how to recognise its prompt."""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from agentfleet.config.schema import RuntimeConfig
from agentfleet.errors import RuntimeNotFoundError

SHELL_RUNTIME_ID = "__shell__"


@dataclass(frozen=True, slots=True)
class AgentRuntime:
    id: str
    name: str
    binary: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    waiting_pattern: str = ""

    @classmethod
    def from_config(cls, cfg: RuntimeConfig) -> AgentRuntime:
        return cls(
            id=cfg.runtime_id,
            name=cfg.name or cfg.runtime_id,
            binary=cfg.binary,
            args=tuple(cfg.args),
            env=MappingProxyType(dict(cfg.env)),
            waiting_pattern=cfg.waiting_pattern,
        )


BUILT_IN_RUNTIMES: tuple[AgentRuntime, ...] = (
    AgentRuntime(
        id="claude",
        name="Claude Code",
        binary="claude",
        args=("--dangerously-skip-permissions",),
        waiting_pattern="❯|waiting for input|Interrupt to stop",
    ),
    AgentRuntime(
        id="codex",
        name="Codex",
        binary="codex",
        waiting_pattern="> |codex>",
    ),
    AgentRuntime(
        id="gemini",
        name="Gemini CLI",
        binary="gemini",
        waiting_pattern="❯|>>> ",
    ),
)


@dataclass(frozen=True, slots=True)
class RuntimeStatus:
    runtime: AgentRuntime
    installed: bool


class RuntimeRegistry:
    """Immutable lookup table of runtimes, injected where needed."""

    def __init__(self, runtimes: Iterable[AgentRuntime] = BUILT_IN_RUNTIMES) -> None:
        self._by_id: Mapping[str, AgentRuntime] = MappingProxyType({r.id: r for r in runtimes})

    @classmethod
    def with_overrides(cls, extra: Iterable[RuntimeConfig]) -> RuntimeRegistry:
        """Built-ins plus configured runtimes; a configured id replaces a built-in."""
        merged = {r.id: r for r in BUILT_IN_RUNTIMES}
        for cfg in extra:
            merged[cfg.runtime_id] = AgentRuntime.from_config(cfg)
        return cls(merged.values())

    def get(self, runtime_id: str) -> AgentRuntime | None:
        return self._by_id.get(runtime_id)

    def require(self, runtime_id: str) -> AgentRuntime:
        runtime = self.get(runtime_id)
        if runtime is None:
            raise RuntimeNotFoundError(runtime_id)
        return runtime

    def list_runtimes(self) -> list[AgentRuntime]:
        return list(self._by_id.values())

    def list_with_status(self) -> list[RuntimeStatus]:
        return [RuntimeStatus(r, shutil.which(r.binary) is not None) for r in self._by_id.values()]
