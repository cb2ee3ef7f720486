"""Tests for the project and runtime registries."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agentfleet.config.schema import RuntimeConfig
from agentfleet.errors import ProjectNotFoundError, RuntimeNotFoundError
from agentfleet.runtimes import RuntimeRegistry
from agentfleet.store.project_registry import PROJECTS_FILE, ProjectRegistry
from tests.helpers import FakeGit, git_failure

# ---------------------------------------------------------------------------
# ProjectRegistry
# ---------------------------------------------------------------------------


class TestProjectRegistry:
    @pytest.mark.asyncio
    async def test_add_persists_and_dedupes(self, storage: Path, tmp_path: Path) -> None:
        repo = tmp_path / "shop"
        repo.mkdir()
        git = FakeGit({("branch", "-a"): "main\norigin/main\nfeat/x\n"})
        registry = ProjectRegistry(storage, git)

        project = await registry.add_project(repo)
        again = await registry.add_project(str(repo) + "/")

        assert again is project
        assert project.name == "shop"
        assert project.path == str(repo.resolve())
        assert project.base_branch == "main"
        saved = json.loads((storage / PROJECTS_FILE).read_text())
        assert saved == [project.to_dict()]
        assert set(saved[0]) == {"id", "name", "path", "baseBranch", "addedAt"}

        reloaded = ProjectRegistry(storage, git)
        assert reloaded.get_project(project.id) == project

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("branches", "current", "expected"),
        [
            ("master\ndev\n", "dev\n", "master"),
            ("dev\ntrunk\n", "trunk\n", "trunk"),
            ("", "", "main"),
        ],
    )
    async def test_base_branch_detection(
        self, storage: Path, branches: str, current: str, expected: str
    ) -> None:
        git = FakeGit({("branch", "-a"): branches, ("branch", "--show-current"): current})
        assert await ProjectRegistry(storage, git).detect_base_branch("/repo") == expected

    @pytest.mark.asyncio
    async def test_base_branch_falls_back_on_git_failure(self, storage: Path) -> None:
        git = FakeGit({("branch",): git_failure("branch", stderr="not a git repository")})
        assert await ProjectRegistry(storage, git).detect_base_branch("/nowhere") == "main"

    def test_remove(self, storage: Path) -> None:
        (storage / PROJECTS_FILE).write_text(
            json.dumps([{"id": "p1", "name": "a", "path": "/a", "baseBranch": "main", "addedAt": ""}])
        )
        registry = ProjectRegistry(storage, FakeGit())
        assert registry.remove_project("nope") is False
        assert registry.remove_project("p1") is True
        assert registry.list_projects() == []
        assert json.loads((storage / PROJECTS_FILE).read_text()) == []
        with pytest.raises(ProjectNotFoundError):
            registry.require("p1")

    def test_malformed_entries_skipped(self, storage: Path) -> None:
        (storage / PROJECTS_FILE).write_text(json.dumps([{"name": "no id"}, {"id": "p2", "path": "/b"}]))
        projects = ProjectRegistry(storage, FakeGit()).list_projects()
        assert [p.id for p in projects] == ["p2"]
        assert projects[0].base_branch == "main"


# ---------------------------------------------------------------------------
# RuntimeRegistry
# ---------------------------------------------------------------------------


class TestRuntimeRegistry:
    def test_builtins(self) -> None:
        registry = RuntimeRegistry()
        assert [r.id for r in registry.list_runtimes()] == ["claude", "codex", "gemini"]
        assert registry.require("claude").args == ("--dangerously-skip-permissions",)
        assert registry.get("nope") is None
        with pytest.raises(RuntimeNotFoundError):
            registry.require("nope")

    def test_configured_runtime_overrides_builtin(self) -> None:
        registry = RuntimeRegistry.with_overrides(
            [
                RuntimeConfig(runtime_id="codex", binary="/opt/codex", args=["--full-auto"]),
                RuntimeConfig(runtime_id="aider", binary="aider", env={"AIDER_DARK": "1"}),
            ]
        )
        codex = registry.require("codex")
        assert (codex.binary, codex.args, codex.name) == ("/opt/codex", ("--full-auto",), "codex")
        assert registry.require("aider").env["AIDER_DARK"] == "1"
        assert len(registry.list_runtimes()) == 4

    def test_list_with_status(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("agentfleet.runtimes.shutil.which", lambda b: "/usr/bin/codex" if b == "codex" else None)
        installed = {s.runtime.id: s.installed for s in RuntimeRegistry().list_with_status()}
        assert installed == {"claude": False, "codex": True, "gemini": False}
