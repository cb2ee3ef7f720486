"""Tests for agentfleet.session.manager.SessionManager."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from agentfleet.chat.adapter import ChatAdapter
from agentfleet.detectors import AgentStatus
from agentfleet.errors import (
    DirtyWorkingTreeError,
    NoWorktreeConflictError,
    ProjectNotFoundError,
    RuntimeNotFoundError,
    SessionNotFoundError,
)
from agentfleet.events import EventBus
from agentfleet.git.branch_checkout import BranchCheckoutManager
from agentfleet.git.worktree import WorktreeManager
from agentfleet.git.worktree_meta import WorktreeMeta, WorktreeMetaStore, meta_path
from agentfleet.runtimes import RuntimeRegistry
from agentfleet.session import SessionManager, SpawnOptions
from agentfleet.store.json_file import JsonFile
from agentfleet.store.project_registry import PROJECTS_FILE, ProjectRegistry
from tests.helpers import FakeGit, FakePool

PRINT_TAIL = ["--output-format", "stream-json", "--verbose"]


class YieldingGit(FakeGit):
    """FakeGit that gives the loop a turn on every command, like a real subprocess."""

    async def __call__(self, args: list[str], cwd: str | Path) -> str:
        await asyncio.sleep(0)
        return await super().__call__(args, cwd)


class World:
    """A manager over one registered project ``web`` with id ``p1``."""

    def __init__(self, tmp_path: Path, git: FakeGit | None = None, gh: FakeGit | None = None) -> None:
        self.repo = tmp_path / "web"
        self.repo.mkdir()
        self.storage = tmp_path / "fleet"
        JsonFile(self.storage / PROJECTS_FILE).save(
            [{"id": "p1", "name": "web", "path": str(self.repo), "baseBranch": "main", "addedAt": ""}]
        )
        self.git = git or FakeGit()
        self.gh = gh or FakeGit()
        self.pool = FakePool()
        self.bus = EventBus()
        self.chat = ChatAdapter(debounce=10)
        self.poller = MagicMock()
        self.meta = WorktreeMetaStore()
        worktrees = WorktreeManager(self.storage, self.git, self.meta)
        self.manager = SessionManager(
            ProjectRegistry(self.storage, self.git),
            RuntimeRegistry(),
            worktrees,
            self.pool,
            self.bus,
            self.chat,
            self.poller,
            branch_checkout=BranchCheckoutManager(worktrees, self.git, self.gh),
            meta_store=self.meta,
            git=self.git,
        )

    def worktree(self, branch_dir: str) -> str:
        return str(self.storage / "worktrees" / "web" / branch_dir)

    async def create(self, **kwargs) -> dict:
        kwargs.setdefault("runtime_id", "claude")
        return await self.manager.create_session(SpawnOptions(project_id="p1", **kwargs))


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_worktree_session(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create()

        path = w.worktree("web-oslo")
        assert session["branchName"] == "web/oslo"
        assert session["worktreePath"] == path
        assert session["status"] == "running"
        assert session["kind"] == "interactive"
        assert session["pid"] == 1001
        assert ["worktree", "add", "-b", "web/oslo", path, "main"] in w.git.commands()

        spawned = w.pool.last()
        assert (spawned["file"], spawned["args"], spawned["cwd"]) == ("claude", ["--dangerously-skip-permissions"], path)
        w.poller.watch.assert_called_once_with(path, session["id"])
        assert w.meta.read(path) == WorktreeMeta(runtime_id="claude")
        assert w.manager.has_session(session["id"])

    @pytest.mark.asyncio
    async def test_task_prompt_names_branch(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(prompt="Add dark mode!", model="opus")

        assert session["branchName"] == "web/add-dark-mode"
        assert session["taskDescription"] == "Add dark mode!"
        assert w.pool.last()["args"] == ["--dangerously-skip-permissions", "--model", "opus"]
        assert w.meta.read(session["worktreePath"]).model == "opus"

    @pytest.mark.asyncio
    async def test_print_mode_session(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(prompt="Add search", non_interactive=True, user_message="please add search")

        assert session["kind"] == "print"
        assert session["nonInteractive"] is True
        assert w.pool.last()["args"] == ["--dangerously-skip-permissions", "-p", "Add search", *PRINT_TAIL]
        assert [(m.role, m.text) for m in w.chat.get_messages(session["id"])] == [("user", "please add search")]

    @pytest.mark.asyncio
    async def test_print_mode_needs_prompt(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        with pytest.raises(ValueError):
            await w.create(non_interactive=True)
        assert not w.git.called_with("worktree", "add")

    @pytest.mark.asyncio
    async def test_unknown_project_and_runtime(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        with pytest.raises(ProjectNotFoundError):
            await w.manager.create_session(SpawnOptions(project_id="nope", runtime_id="claude"))
        with pytest.raises(RuntimeNotFoundError):
            await w.create(runtime_id="nope")
        assert w.pool.spawned == []

    @pytest.mark.asyncio
    async def test_existing_branch(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(existing_branch="feat/login")

        path = w.worktree("feat-login")
        assert session["branchName"] == "feat/login"
        assert ["worktree", "add", path, "feat/login"] in w.git.commands()

    @pytest.mark.asyncio
    async def test_pull_request(self, tmp_path: Path) -> None:
        gh = FakeGit({("pr", "view"): "fix/typo\n"})
        w = World(tmp_path, gh=gh)
        session = await w.create(pr_identifier="https://github.com/acme/web/pull/31")

        assert session["branchName"] == "fix/typo"
        assert gh.commands()[0][:3] == ["pr", "view", "31"]
        assert ["fetch", "origin", "fix/typo"] in w.git.commands()

    @pytest.mark.asyncio
    async def test_spawn_failure_removes_worktree(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        w.pool.fail_spawn = OSError("claude: not found")

        with pytest.raises(OSError):
            await w.create()

        path = w.worktree("web-oslo")
        assert ["worktree", "remove", path, "--force"] in w.git.commands()
        assert w.manager.list_sessions() == []
        w.poller.watch.assert_not_called()


class TestNoWorktree:
    @pytest.mark.asyncio
    async def test_checks_out_in_place(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(no_worktree=True)

        assert session["noWorktree"] is True
        assert session["worktreePath"] == str(w.repo)
        assert ["checkout", "-b", "web/oslo"] in w.git.commands()
        assert not meta_path(w.repo).exists()

    @pytest.mark.asyncio
    async def test_dirty_tree_refused(self, tmp_path: Path) -> None:
        w = World(tmp_path, git=FakeGit({("status", "--porcelain"): " M src/app.ts\n"}))
        with pytest.raises(DirtyWorkingTreeError):
            await w.create(no_worktree=True)
        assert not w.git.called_with("checkout")
        assert w.pool.spawned == []

    @pytest.mark.asyncio
    async def test_one_per_project(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        await w.create(no_worktree=True)
        with pytest.raises(NoWorktreeConflictError):
            await w.create(no_worktree=True, existing_branch="other")
        assert len(w.pool.spawned) == 1

    @pytest.mark.asyncio
    async def test_one_per_project_under_concurrent_requests(self, tmp_path: Path) -> None:
        w = World(tmp_path, git=YieldingGit())
        results = await asyncio.gather(
            w.create(no_worktree=True),
            w.create(no_worktree=True, existing_branch="other"),
            return_exceptions=True,
        )

        assert isinstance(results[0], dict)
        assert isinstance(results[1], NoWorktreeConflictError)
        assert len(w.pool.spawned) == 1
        assert not w.git.called_with("checkout", "other")
        assert sum(s["noWorktree"] for s in w.manager.list_sessions()) == 1

    @pytest.mark.asyncio
    async def test_failed_creation_releases_project(self, tmp_path: Path) -> None:
        w = World(tmp_path, git=YieldingGit({("status", "--porcelain"): " M src/app.ts\n"}))
        with pytest.raises(DirtyWorkingTreeError):
            await w.create(no_worktree=True)

        w.git.responses.clear()
        session = await w.create(no_worktree=True)
        assert session["noWorktree"] is True

    @pytest.mark.asyncio
    async def test_existing_branch_checkout(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(no_worktree=True, existing_branch="feat/login")
        assert session["branchName"] == "feat/login"
        assert ["checkout", "feat/login"] in w.git.commands()


# ---------------------------------------------------------------------------
# Input and lifecycle
# ---------------------------------------------------------------------------


class TestInput:
    @pytest.mark.asyncio
    async def test_send_input_and_resize(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create())["id"]

        w.manager.send_input(sid, "hello\r")
        w.manager.resize(sid, 120, 40)
        assert w.pool.writes == [("pty-1", "hello\r")]
        assert w.pool.resizes == [("pty-1", 120, 40)]

        w.pool.finish("pty-1")
        w.manager.send_input(sid, "ignored")
        w.manager.resize(sid, 80, 24)
        w.manager.resize("missing", 80, 24)
        assert len(w.pool.writes) == 1
        assert w.manager.get_session_status(sid) == AgentStatus.DONE

        with pytest.raises(SessionNotFoundError):
            w.manager.send_input("missing", "x")

    @pytest.mark.asyncio
    async def test_print_mode_follow_up(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create(prompt="Add search", non_interactive=True, model="sonnet"))["id"]

        w.pool.finish("pty-1")
        dev = w.pool.last()["handle"].id
        w.manager.send_input(sid, "  now add tests \n")

        assert w.pool.last()["args"] == [
            "--dangerously-skip-permissions", "--model", "sonnet", "-c", "-p", "now add tests", *PRINT_TAIL,
        ]
        assert [m.text for m in w.chat.get_messages(sid)] == ["Add search", "now add tests"]
        assert w.manager.get_session_status(sid) == AgentStatus.RUNNING
        assert w.pool.killed == []
        assert dev in w.pool.live

        follow_up = w.pool.last()["handle"].id
        w.pool.feed(follow_up, json.dumps({"type": "result", "subtype": "success", "result": "Tests added"}) + "\n")
        assert w.manager.get_session_status(sid) == AgentStatus.WAITING

    @pytest.mark.asyncio
    async def test_follow_up_during_lingering_first_turn_starts_dev_server(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create(prompt="Add search", non_interactive=True))["id"]
        w.pool.feed("pty-1", json.dumps({"type": "result", "subtype": "success", "result": "Done"}) + "\n")
        assert w.manager.get_session_status(sid) == AgentStatus.WAITING

        w.manager.send_input(sid, "now add tests")

        assert w.pool.killed == ["pty-1"]
        assert [s["file"] for s in w.pool.spawned] == ["claude", "npm", "claude"]
        dev, follow_up = w.pool.spawned[1]["handle"].id, w.pool.spawned[2]["handle"].id

        # The superseded first process exiting late changes nothing.
        w.pool.finish("pty-1")
        assert w.manager.get_session_status(sid) == AgentStatus.RUNNING
        assert [s["file"] for s in w.pool.spawned].count("npm") == 1

        w.pool.feed(dev, "  Local: http://localhost:5173/\n")
        assert w.manager.get_detected_url(sid) == "http://localhost:5173/"

        w.pool.feed(follow_up, json.dumps({"type": "result", "subtype": "success", "result": "Tests added"}) + "\n")
        w.pool.finish(follow_up)
        assert w.manager.get_session_status(sid) == AgentStatus.WAITING
        assert [s["file"] for s in w.pool.spawned].count("npm") == 1

    @pytest.mark.asyncio
    async def test_follow_up_keeps_known_preview(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create(prompt="Add search", non_interactive=True))["id"]
        w.pool.feed(
            "pty-1",
            json.dumps({"type": "result", "subtype": "success", "result": "Open http://localhost:3000"}) + "\n",
        )

        w.manager.send_input(sid, "now add tests")

        assert [s["file"] for s in w.pool.spawned] == ["claude", "claude"]
        assert w.manager.get_detected_url(sid) == "http://localhost:3000"

    @pytest.mark.asyncio
    async def test_first_turn_exit_starts_dev_server(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create(prompt="Add search", non_interactive=True))["id"]

        w.pool.finish("pty-1")

        dev = w.pool.last()
        assert (dev["file"], dev["args"]) == ("npm", ["run", "dev"])
        assert w.manager.get_session_status(sid) == AgentStatus.RUNNING

        w.pool.feed(dev["handle"].id, "  VITE ready\n  ➜  Local: http://localhost:5173/\n")
        assert w.manager.get_detected_url(sid) == "http://localhost:5173/"
        assert w.manager.get_session_status(sid) == AgentStatus.WAITING


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_after_exit(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        created = await w.create(prompt="Fix login", model="opus")
        w.pool.finish("pty-1")

        resumed = await w.manager.resume_session(created["id"])

        assert resumed["id"] == created["id"]
        assert resumed["worktreePath"] == created["worktreePath"]
        assert resumed["status"] == "running"
        assert w.pool.last()["args"] == ["--dangerously-skip-permissions", "--model", "opus"]
        assert w.manager.get_output_buffer(created["id"]) == ""

    @pytest.mark.asyncio
    async def test_resume_live_session_is_noop(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        created = await w.create()
        await w.manager.resume_session(created["id"])
        assert len(w.pool.spawned) == 1

    @pytest.mark.asyncio
    async def test_resume_print_session_turns_interactive(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        sid = (await w.create(prompt="Add search", non_interactive=True))["id"]
        w.pool.finish("pty-1")
        dev_id = w.pool.last()["handle"].id

        resumed = await w.manager.resume_session(sid, runtime_id="codex")

        assert dev_id in w.pool.killed
        assert resumed["kind"] == "interactive"
        assert resumed["runtimeId"] == "codex"
        assert resumed["taskDescription"] == "Add search"
        assert w.pool.last()["file"] == "codex"


class TestKill:
    @pytest.mark.asyncio
    async def test_kill_session(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create()
        w.chat.add_user_message(session["id"], "hi")

        await w.manager.kill_session(session["id"])

        assert w.manager.get_session(session["id"]) is None
        assert w.pool.killed == ["pty-1"]
        assert w.chat.get_messages(session["id"]) == []
        w.poller.unwatch.assert_called_once_with(session["worktreePath"])
        assert ["worktree", "remove", session["worktreePath"], "--force"] in w.git.commands()

        with pytest.raises(SessionNotFoundError):
            await w.manager.kill_session(session["id"])

    @pytest.mark.asyncio
    async def test_kill_no_worktree_keeps_checkout(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create(no_worktree=True)
        await w.manager.kill_session(session["id"])
        assert not w.git.called_with("worktree", "remove")

    @pytest.mark.asyncio
    async def test_worktree_removal_failure_is_logged(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        session = await w.create()
        w.git.responses[("worktree", "remove")] = OSError("busy")

        await w.manager.kill_session(session["id"])
        assert not w.manager.has_session(session["id"])

    @pytest.mark.asyncio
    async def test_kill_all(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        await w.create()
        await w.create(branch_name="web/second")

        w.manager.kill_all_sessions()

        assert w.manager.list_sessions() == []
        assert sorted(w.pool.killed) == ["pty-1", "pty-2"]
        w.poller.unwatch_all.assert_called_once()


class TestShellSession:
    def test_spawns_login_shell(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHELL", "/bin/zsh")
        w = World(tmp_path)

        sid = w.manager.create_shell_session(tmp_path)

        assert w.pool.last()["file"] == "/bin/zsh"
        public = w.manager.get_session(sid)
        assert public["kind"] == "shell"
        assert public["runtimeId"] == "__shell__"
        assert public["worktreePath"] == str(tmp_path)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def _porcelain(self, w: World, wt: str) -> str:
        return (
            f"worktree {w.repo}\nHEAD aaa\nbranch refs/heads/main\n\n"
            f"worktree {wt}\nHEAD bbb\nbranch refs/heads/web/oslo\n\n"
            f"worktree /elsewhere\nHEAD ccc\nbranch refs/heads/other/thing\n"
        )

    @pytest.mark.asyncio
    async def test_discovers_dormant_worktrees(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        wt = w.worktree("web-oslo")
        w.git.responses[("worktree", "list")] = self._porcelain(w, wt)
        w.meta.write(wt, WorktreeMeta("codex", "Fix login", ["/shared/lib"], "o3"))

        sessions = await w.manager.discover_sessions_for_project("p1")

        assert len(sessions) == 1
        found = sessions[0]
        assert found["status"] == "done"
        assert found["pid"] is None
        assert found["runtimeId"] == "codex"
        assert found["taskDescription"] == "Fix login"
        assert found["model"] == "o3"
        assert found["additionalDirs"] == ["/shared/lib"]
        w.poller.watch_additional_dir.assert_called_once_with("/shared/lib", found["id"])

        again = await w.manager.discover_sessions_for_project("p1")
        assert [s["id"] for s in again] == [found["id"]]

    @pytest.mark.asyncio
    async def test_missing_metadata_uses_defaults(self, tmp_path: Path) -> None:
        w = World(tmp_path)
        wt = w.worktree("web-oslo")
        w.git.responses[("worktree", "list")] = self._porcelain(w, wt)

        [found] = await w.manager.discover_sessions_for_project("p1")
        assert found["runtimeId"] == ""
        assert found["taskDescription"] is None

    @pytest.mark.asyncio
    async def test_adopts_branch_under_managed_dir(self, tmp_path: Path) -> None:
        git = FakeGit(
            {
                ("branch", "--show-current"): "main\n",
                ("branch", "--format=%(refname:short)"): "main\nfeat/x\n",
            }
        )
        w = World(tmp_path, git=git)

        assert await w.manager.discover_all_sessions() == []

        [adopted] = await w.manager.discover_all_sessions(adopt_under=tmp_path)
        assert adopted["branchName"] == "feat/x"
        assert adopted["noWorktree"] is True
        assert adopted["kind"] == "print"
        assert adopted["status"] == "done"

    @pytest.mark.asyncio
    async def test_adopt_skipped_outside_managed_dir(self, tmp_path: Path) -> None:
        w = World(tmp_path, git=FakeGit({("branch", "--show-current"): "feat/y\n"}))
        other = tmp_path / "managed"
        other.mkdir()
        assert await w.manager.discover_all_sessions(adopt_under=other) == []
