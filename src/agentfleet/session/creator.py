"""Creates a session: working copy, agent process, stream wiring, metadata."""

from __future__ import annotations

import logging

from agentfleet.chat.adapter import ChatAdapter
from agentfleet.errors import DirtyWorkingTreeError
from agentfleet.git.branch_checkout import BranchCheckoutManager
from agentfleet.git.branch_namer import generate_branch_name, generate_task_branch_name
from agentfleet.git.exec import CommandRunner, git_exec
from agentfleet.git.worktree import WorktreeInfo, WorktreeManager
from agentfleet.git.worktree_meta import WorktreeMeta, WorktreeMetaStore
from agentfleet.process.pty_pool import PtyHandle, PtyPool
from agentfleet.runtimes import AgentRuntime, RuntimeRegistry
from agentfleet.session.dev_server import print_mode_args
from agentfleet.session.stream import SessionStreamWirer
from agentfleet.session.types import InteractiveKind, PrintModeKind, Session, SpawnOptions
from agentfleet.store.project_registry import Project, ProjectRegistry

logger = logging.getLogger(__name__)


def agent_args(runtime: AgentRuntime, options: SpawnOptions) -> list[str]:
    if options.non_interactive:
        return print_mode_args(runtime, options.prompt, model=options.model)
    args = list(runtime.args)
    if options.model:
        args += ["--model", options.model]
    return args


class SessionCreator:
    def __init__(
        self,
        projects: ProjectRegistry,
        runtimes: RuntimeRegistry,
        worktrees: WorktreeManager,
        branch_checkout: BranchCheckoutManager,
        pool: PtyPool,
        wirer: SessionStreamWirer,
        chat: ChatAdapter,
        meta_store: WorktreeMetaStore,
        git: CommandRunner = git_exec,
    ) -> None:
        self._projects = projects
        self._runtimes = runtimes
        self._worktrees = worktrees
        self._branches = branch_checkout
        self._pool = pool
        self._wirer = wirer
        self._chat = chat
        self._meta = meta_store
        self._git = git

    async def create(self, options: SpawnOptions) -> Session:
        project = self._projects.require(options.project_id)
        runtime = self._runtimes.require(options.runtime_id)
        if options.non_interactive and not options.prompt:
            raise ValueError("print-mode sessions need a prompt")

        worktree = await self._establish_working_copy(project, options)

        handle: PtyHandle | None = None
        try:
            args = agent_args(runtime, options)
            logger.debug("spawning %s %s in %s", runtime.binary, args, worktree.path)
            handle = self._pool.spawn(
                runtime.binary,
                args,
                cwd=worktree.path,
                env=runtime.env,
                cols=options.cols,
                rows=options.rows,
            )
            session = self._build_session(options, worktree, handle)
            self._wire(session, handle, options)
        except Exception:
            if handle is not None:
                self._pool.kill(handle.id)
            if not options.no_worktree:
                await self._discard_worktree(project, worktree)
            raise

        if not options.no_worktree:
            self._meta.write_quietly(
                worktree.path,
                WorktreeMeta(
                    runtime_id=options.runtime_id,
                    task_description=options.prompt or None,
                    model=options.model,
                ),
            )
        logger.info("Created session %s on %s (%s)", session.id, worktree.branch, worktree.path)
        return session

    # ------------------------------------------------------------------
    # Working copy strategies
    # ------------------------------------------------------------------

    async def _establish_working_copy(self, project: Project, options: SpawnOptions) -> WorktreeInfo:
        if options.no_worktree:
            await self.assert_clean_working_tree(project.path)
            branch = await self._checkout_in_place(project, options)
            return WorktreeInfo(branch=branch, path=project.path)

        if options.pr_identifier:
            branch = await self._branches.fetch_pr_branch(project.path, options.pr_identifier)
            return await self._branches.create_worktree_from_branch(project.path, branch, project.name)
        if options.existing_branch:
            return await self._branches.create_worktree_from_branch(
                project.path, options.existing_branch, project.name
            )
        return await self._worktrees.create_worktree(
            project.path,
            project.base_branch,
            project.name,
            options.branch_name,
            options.prompt or None,
        )

    async def _checkout_in_place(self, project: Project, options: SpawnOptions) -> str:
        if options.existing_branch:
            await self._git(["checkout", options.existing_branch], project.path)
            return options.existing_branch
        if options.pr_identifier:
            branch = await self._branches.fetch_pr_branch(project.path, options.pr_identifier)
            await self._git(["checkout", branch], project.path)
            return branch

        if options.branch_name:
            branch = options.branch_name
        elif options.prompt:
            branch = await generate_task_branch_name(project.path, options.prompt, project.name, self._git)
        else:
            branch = await generate_branch_name(project.path, project.name, self._git)
        await self._git(["checkout", "-b", branch], project.path)
        return branch

    async def assert_clean_working_tree(self, project_path: str) -> None:
        status = await self._git(["status", "--porcelain"], project_path)
        if status.strip():
            raise DirtyWorkingTreeError(project_path)

    async def _discard_worktree(self, project: Project, worktree: WorktreeInfo) -> None:
        try:
            await self._worktrees.remove_worktree(project.path, worktree.path)
        except Exception:
            logger.exception("Failed to remove worktree %s after a failed start", worktree.path)

    # ------------------------------------------------------------------
    # Session assembly
    # ------------------------------------------------------------------

    def _build_session(self, options: SpawnOptions, worktree: WorktreeInfo, handle: PtyHandle) -> Session:
        kind: InteractiveKind | PrintModeKind
        if options.non_interactive:
            kind = PrintModeKind(task_description=options.prompt or None, model=options.model)
        else:
            kind = InteractiveKind(task_description=options.prompt or None, model=options.model)
        return Session(
            project_id=options.project_id,
            runtime_id=options.runtime_id,
            branch_name=worktree.branch,
            worktree_path=worktree.path,
            kind=kind,
            pid=handle.pid,
            pty_id=handle.id,
            no_worktree=options.no_worktree,
        )

    def _wire(self, session: Session, handle: PtyHandle, options: SpawnOptions) -> None:
        if session.non_interactive:
            self._wirer.wire_stream_json_output(handle.id, session)
            self._wirer.wire_print_mode_initial_exit(handle.id, session)
            self._chat.add_user_message(session.id, options.user_message or options.prompt)
        else:
            self._wirer.wire_output_streaming(handle.id, session)
            self._wirer.wire_exit_handling(handle.id, session)
