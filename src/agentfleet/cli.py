"""CLI entrypoint for agentfleet."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, NoReturn

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from agentfleet.chat.adapter import ChatAdapter, ChatMessage, MessageListener
from agentfleet.config.loader import load_fleet_yaml
from agentfleet.config.schema import FleetConfig
from agentfleet.errors import FleetError
from agentfleet.events import EXIT, STATUS, FleetEvent
from agentfleet.git.branch_checkout import BranchCheckoutManager
from agentfleet.git.diff import DiffProvider, FileChange
from agentfleet.git.operations import GitOperations
from agentfleet.git.worktree import WorktreeManager
from agentfleet.logger import get_logger, setup_logging
from agentfleet.runtimes import RuntimeRegistry
from agentfleet.session.manager import SessionManager, build_session_manager
from agentfleet.session.types import SpawnOptions
from agentfleet.store.project_registry import ProjectRegistry

console = Console()
log = get_logger(__name__)

DEBUG_LOG_NAME = "debug.log"


def _config(ctx: click.Context) -> FleetConfig:
    return ctx.obj["config"]


def _storage(cfg: FleetConfig) -> Path:
    return Path(cfg.storage_path).expanduser()


def _fail(exc: FleetError) -> NoReturn:
    raise click.ClickException(str(exc)) from exc


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $AGENTFLEET_HOME/config.yaml)",
)
@click.option("--debug", "debug_flag", is_flag=True, help="Verbose logging, also written to debug.log")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, debug_flag: bool, json_logs: bool) -> None:
    """Supervise coding agents running in isolated git worktrees."""
    load_dotenv()
    try:
        cfg = load_fleet_yaml(config_path)
    except FleetError as exc:
        _fail(exc)
    debug = debug_flag or cfg.debug
    setup_logging(
        debug=debug,
        json_output=json_logs,
        log_file=_storage(cfg) / DEBUG_LOG_NAME if debug else None,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


# ----------------------------------------------------------------------
# projects
# ----------------------------------------------------------------------


@main.group("projects")
def projects_group() -> None:
    """Manage registered projects."""


@projects_group.command("add")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def projects_add(ctx: click.Context, path: Path) -> None:
    registry = ProjectRegistry(_storage(_config(ctx)))
    project = asyncio.run(registry.add_project(path))
    console.print(f"[green]Registered[/green] {project.name} ({project.id}) base={project.base_branch}")


@projects_group.command("list")
@click.pass_context
def projects_list(ctx: click.Context) -> None:
    registry = ProjectRegistry(_storage(_config(ctx)))
    table = Table(title="Projects")
    for col in ("id", "name", "path", "base"):
        table.add_column(col)
    for p in registry.list_projects():
        table.add_row(p.id, p.name, p.path, p.base_branch)
    console.print(table)


@projects_group.command("remove")
@click.argument("project_id")
@click.pass_context
def projects_remove(ctx: click.Context, project_id: str) -> None:
    registry = ProjectRegistry(_storage(_config(ctx)))
    if not registry.remove_project(project_id):
        raise click.ClickException(f"Project not found: {project_id}")
    console.print(f"Removed {project_id}")


# ----------------------------------------------------------------------
# runtimes / branches / sessions
# ----------------------------------------------------------------------


@main.command("runtimes")
@click.pass_context
def runtimes_command(ctx: click.Context) -> None:
    """List agent runtimes and whether their binary is on PATH."""
    registry = RuntimeRegistry.with_overrides(_config(ctx).runtimes)
    table = Table(title="Runtimes")
    for col in ("id", "name", "binary", "installed"):
        table.add_column(col)
    for status in registry.list_with_status():
        r = status.runtime
        table.add_row(r.id, r.name, r.binary, "yes" if status.installed else "[red]no[/red]")
    console.print(table)


@main.command("branches")
@click.argument("project_id")
@click.option("--prs", is_flag=True, help="Also list open pull requests")
@click.pass_context
def branches_command(ctx: click.Context, project_id: str, prs: bool) -> None:
    """Branches available for a new session."""
    storage = _storage(_config(ctx))
    try:
        project = ProjectRegistry(storage).require(project_id)
    except FleetError as exc:
        _fail(exc)
    checkout = BranchCheckoutManager(WorktreeManager(storage))

    async def _collect() -> tuple[list[Any], list[Any]]:
        branches = await checkout.list_branches(project.path)
        pulls = await checkout.list_open_prs(project.path) if prs else []
        return branches, pulls

    try:
        branches, pulls = asyncio.run(_collect())
    except FleetError as exc:
        _fail(exc)

    table = Table(title=f"Branches of {project.name}")
    table.add_column("branch")
    table.add_column("source")
    for b in branches:
        table.add_row(b.name, b.source)
    console.print(table)

    if prs:
        pr_table = Table(title="Open pull requests")
        for col in ("#", "title", "branch", "author"):
            pr_table.add_column(col)
        for pr in pulls:
            pr_table.add_row(str(pr.number), pr.title, pr.head_ref_name, pr.author)
        console.print(pr_table)


def _sessions_table(rows: list[dict[str, Any]]) -> Table:
    table = Table(title="Sessions")
    for col in ("id", "branch", "status", "runtime", "kind", "path"):
        table.add_column(col)
    for s in rows:
        table.add_row(s["id"], s["branchName"], s["status"], s["runtimeId"] or "-", s["kind"], s["worktreePath"])
    return table


@main.command("sessions")
@click.argument("project_id", required=False)
@click.option(
    "--adopt-under",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Adopt projects under this directory that have no worktree sessions",
)
@click.pass_context
def sessions_command(ctx: click.Context, project_id: str | None, adopt_under: Path | None) -> None:
    """Discover sessions left on disk by earlier runs."""
    cfg = _config(ctx)

    async def _discover() -> list[dict[str, Any]]:
        manager = build_session_manager(cfg)
        if project_id:
            return await manager.discover_sessions_for_project(project_id)
        return await manager.discover_all_sessions(adopt_under)

    try:
        rows = asyncio.run(_discover())
    except FleetError as exc:
        _fail(exc)
    console.print(_sessions_table(rows))


# ----------------------------------------------------------------------
# run
# ----------------------------------------------------------------------


def _print_message(message: ChatMessage) -> None:
    console.print(f"[bold]{message.role}[/bold]: {message.text}")


def follow_chat(chat: ChatAdapter, session_id: str, listener: MessageListener = _print_message) -> Callable[[], None]:
    """Replay the chat so far, then stream new messages to *listener*."""
    for message in chat.get_messages(session_id):
        listener(message)
    return chat.on_message(session_id, listener)


async def _run_print_session(manager: SessionManager, options: SpawnOptions, cleanup: bool) -> dict[str, Any]:
    finished = asyncio.Event()

    def _on_event(event: FleetEvent) -> None:
        if event.event_type == EXIT or (event.event_type == STATUS and event.data.get("status") == "waiting"):
            finished.set()

    unsubscribe = manager.bus.subscribe(_on_event)
    try:
        session = await manager.create_session(options)
        follow_chat(manager.chat, session["id"])
        log.info("session started", session_id=session["id"], branch=session["branchName"])
        await finished.wait()
        result = manager.get_session(session["id"]) or session
        if cleanup:
            await manager.kill_session(session["id"])
        return result
    finally:
        unsubscribe()
        manager.kill_all_sessions()


@main.command("run")
@click.argument("project_id")
@click.argument("prompt", nargs=-1, required=True)
@click.option("--runtime", "runtime_id", default="claude", show_default=True)
@click.option("--model", default=None, help="Model passed to the runtime with --model")
@click.option("--branch", "branch_name", default=None, help="Name for the new branch")
@click.option("--existing-branch", default=None, help="Work on an existing branch")
@click.option("--pr", "pr_identifier", default=None, help="PR number or URL to check out")
@click.option("--no-worktree", is_flag=True, help="Work directly in the project directory")
@click.option("--cleanup", is_flag=True, help="Remove the worktree when the agent is done")
@click.pass_context
def run_command(
    ctx: click.Context,
    project_id: str,
    prompt: tuple[str, ...],
    runtime_id: str,
    model: str | None,
    branch_name: str | None,
    existing_branch: str | None,
    pr_identifier: str | None,
    no_worktree: bool,
    cleanup: bool,
) -> None:
    """Run one print-mode turn of an agent on PROJECT_ID and stream its replies."""
    options = SpawnOptions(
        project_id=project_id,
        runtime_id=runtime_id,
        prompt=" ".join(prompt),
        branch_name=branch_name,
        existing_branch=existing_branch,
        pr_identifier=pr_identifier,
        no_worktree=no_worktree,
        non_interactive=True,
        model=model,
    )

    async def _run() -> dict[str, Any]:
        return await _run_print_session(build_session_manager(_config(ctx)), options, cleanup)

    try:
        session = asyncio.run(_run())
    except FleetError as exc:
        _fail(exc)
    console.print(f"Session {session['id']} on {session['branchName']}: {session['status']}")
    if session.get("detectedUrl"):
        console.print(f"Preview: {session['detectedUrl']}")


# ----------------------------------------------------------------------
# worktree git helpers
# ----------------------------------------------------------------------

COMMIT_MESSAGE_PROMPT = (
    "Write a one-line conventional commit message for the staged and unstaged "
    "changes in this repository. Reply with the message only."
)


@main.command("changes")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--base", "base_branch", default="main", show_default=True, help="Branch to compare against")
@click.option("--diff", "show_diff", is_flag=True, help="Print the full diff against BASE")
@click.pass_context
def changes_command(ctx: click.Context, path: Path, base_branch: str, show_diff: bool) -> None:
    """Working tree state of a worktree and its net change against BASE.

    The net change stages everything in PATH first so new files are included.
    """
    ops = GitOperations(ai_generate_timeout=_config(ctx).git.ai_generate_timeout_seconds)
    diffs = DiffProvider()

    async def _collect() -> tuple[Any, Any, list[FileChange], str]:
        # Status is read before the diff stages anything.
        detail = await ops.status_detail(path)
        counts = await ops.ahead_behind(path, base_branch)
        files = await diffs.get_changed_files(path, base_branch)
        text = await diffs.get_diff(path, base_branch) if show_diff else ""
        return detail, counts, files, text

    try:
        detail, counts, files, text = asyncio.run(_collect())
    except FleetError as exc:
        _fail(exc)

    table = Table(title=f"{path} ({counts.ahead} ahead, {counts.behind} behind {base_branch})")
    table.add_column("state")
    table.add_column("file")
    for state, paths in (("conflict", detail.conflicts), ("staged", detail.staged), ("unstaged", detail.unstaged)):
        for p in paths:
            table.add_row(state, p)
    console.print(table)

    net = Table(title=f"Net change against {base_branch}")
    for col in ("type", "file", "+", "-"):
        net.add_column(col)
    for change in files:
        net.add_row(change.type, change.path, str(change.insertions), str(change.deletions))
    console.print(net)
    if text:
        console.print(Syntax(text, "diff"))


@main.command("commit")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("-m", "--message", default=None, help="Commit message")
@click.option("--runtime", "runtime_id", default="claude", show_default=True, help="Runtime drafting the message")
@click.pass_context
def commit_command(ctx: click.Context, path: Path, message: str | None, runtime_id: str) -> None:
    """Stage everything in PATH and commit; without -m the agent drafts the message."""
    cfg = _config(ctx)
    ops = GitOperations(ai_generate_timeout=cfg.git.ai_generate_timeout_seconds)

    async def _commit() -> str:
        text = message
        if not text:
            runtime = RuntimeRegistry.with_overrides(cfg.runtimes).require(runtime_id)
            text = await ops.ai_generate(runtime.binary, COMMIT_MESSAGE_PROMPT, path)
            if not text:
                raise click.ClickException("Could not draft a commit message; pass -m")
        await ops.commit(path, text)
        return text

    try:
        committed = asyncio.run(_commit())
    except FleetError as exc:
        _fail(exc)
    console.print(f"[green]Committed[/green] {committed}")


@main.command("resolve")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.argument("file_path")
@click.option(
    "--content-file",
    type=click.File("r", encoding="utf-8"),
    required=True,
    help="Resolved file content ('-' for stdin)",
)
def resolve_command(path: Path, file_path: str, content_file: Any) -> None:
    """Replace a conflicted FILE_PATH inside PATH and stage it."""
    try:
        asyncio.run(GitOperations().resolve_conflict(path, file_path, content_file.read()))
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    except FleetError as exc:
        _fail(exc)
    console.print(f"[green]Resolved[/green] {file_path}")
