"""Registry of known projects, persisted as a JSON array."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from agentfleet.errors import CommandError, ProjectNotFoundError
from agentfleet.git.exec import CommandRunner, git_exec
from agentfleet.store.json_file import JsonFile

logger = logging.getLogger(__name__)

PROJECTS_FILE = "projects.json"


@dataclass(slots=True)
class Project:
    id: str
    name: str
    path: str
    base_branch: str
    added_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "baseBranch": self.base_branch,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            path=str(data["path"]),
            base_branch=str(data.get("baseBranch", "main")),
            added_at=str(data.get("addedAt", "")),
        )


class ProjectRegistry:
    def __init__(self, storage_path: str | Path, git: CommandRunner = git_exec) -> None:
        self._file = JsonFile(Path(storage_path).expanduser() / PROJECTS_FILE)
        self._git = git
        self._projects: list[Project] = self._load()

    def _load(self) -> list[Project]:
        raw = self._file.load([])
        if not isinstance(raw, list):
            return []
        projects: list[Project] = []
        for item in raw:
            try:
                projects.append(Project.from_dict(item))
            except (KeyError, TypeError):
                logger.warning("Skipping malformed project entry in %s: %r", self._file.path, item)
        return projects

    def _save(self) -> None:
        self._file.save([p.to_dict() for p in self._projects])

    async def detect_base_branch(self, project_path: str | Path) -> str:
        try:
            stdout = await self._git(["branch", "-a", "--format=%(refname:short)"], project_path)
            branches = [b.strip() for b in stdout.splitlines() if b.strip()]
            if "main" in branches:
                return "main"
            if "master" in branches:
                return "master"
            current = await self._git(["branch", "--show-current"], project_path)
            return current.strip() or "main"
        except CommandError:
            return "main"

    def list_projects(self) -> list[Project]:
        return list(self._projects)

    def get_project(self, project_id: str) -> Project | None:
        return next((p for p in self._projects if p.id == project_id), None)

    def require(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    async def add_project(self, project_path: str | Path) -> Project:
        resolved = str(Path(project_path).expanduser().resolve())
        existing = next((p for p in self._projects if p.path == resolved), None)
        if existing is not None:
            return existing

        project = Project(
            id=str(uuid.uuid4()),
            name=Path(resolved).name,
            path=resolved,
            base_branch=await self.detect_base_branch(resolved),
            added_at=datetime.now(UTC).isoformat(),
        )
        self._projects.append(project)
        self._save()
        logger.info("Registered project %s at %s (base %s)", project.name, resolved, project.base_branch)
        return project

    def remove_project(self, project_id: str) -> bool:
        before = len(self._projects)
        self._projects = [p for p in self._projects if p.id != project_id]
        if len(self._projects) == before:
            return False
        self._save()
        return True
