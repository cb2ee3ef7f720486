"""Per-worktree metadata persisted next to (not inside) the worktree.

The file is ``<worktree path>.agentfleet.json`` holding a small JSON object::

    {"runtimeId": "claude", "taskDescription": "...", "additionalDirs": [...], "model": "..."}

Only ``runtimeId`` is required. Reads of a missing or corrupt file yield
``None``; writes and removals are used fire-and-forget by the orchestrator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentfleet.store.json_file import JsonFile

logger = logging.getLogger(__name__)

META_SUFFIX = ".agentfleet.json"


@dataclass(slots=True)
class WorktreeMeta:
    runtime_id: str
    task_description: str | None = None
    additional_dirs: list[str] = field(default_factory=list)
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"runtimeId": self.runtime_id}
        if self.task_description:
            data["taskDescription"] = self.task_description
        if self.additional_dirs:
            data["additionalDirs"] = list(self.additional_dirs)
        if self.model:
            data["model"] = self.model
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorktreeMeta:
        dirs = data.get("additionalDirs")
        return cls(
            runtime_id=str(data.get("runtimeId", "")),
            task_description=data.get("taskDescription") or None,
            additional_dirs=[str(d) for d in dirs] if isinstance(dirs, list) else [],
            model=data.get("model") or None,
        )


def meta_path(worktree_path: str | Path) -> Path:
    return Path(str(worktree_path) + META_SUFFIX)


class WorktreeMetaStore:
    """Read/write/remove metadata files keyed by worktree path."""

    def write(self, worktree_path: str | Path, meta: WorktreeMeta) -> None:
        JsonFile(meta_path(worktree_path), pretty=False).save(meta.to_dict())

    def read(self, worktree_path: str | Path) -> WorktreeMeta | None:
        raw = JsonFile(meta_path(worktree_path)).load()
        if not isinstance(raw, dict):
            return None
        return WorktreeMeta.from_dict(raw)

    def remove(self, worktree_path: str | Path) -> None:
        JsonFile(meta_path(worktree_path)).delete()

    def write_quietly(self, worktree_path: str | Path, meta: WorktreeMeta) -> None:
        """Write, logging instead of raising; metadata is advisory."""
        try:
            self.write(worktree_path, meta)
        except OSError as exc:
            logger.warning("Failed to write worktree metadata for %s: %s", worktree_path, exc)
