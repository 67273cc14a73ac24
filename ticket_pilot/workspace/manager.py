"""Isolated git worktrees, one per work item.

A workspace is a git worktree named ``<YYYY-MM-DD>-<ITEM_KEY>`` under the
configured worktrees root, checked out on a branch named after the item key.
Creating a workspace for an item whose branch already exists destroys that
branch, so it only happens after the injected confirmer says yes.

Key Exports:
    WorkspaceManager: create, remove, list and clean up workspaces.
    parse_workspace_timestamp: creation time embedded in a workspace name.
"""

import asyncio
import re
import shutil
import subprocess
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import click
import structlog

from ticket_pilot.config.project import load_project_config, validate_worktree_setup
from ticket_pilot.config.settings import WorkspaceConfig
from ticket_pilot.exceptions import BranchCollisionError, GitOperationError, WorkspaceError
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import WorkspaceHandle, Worktree
from ticket_pilot.utils.async_subprocess import run_shell_command
from ticket_pilot.utils.interactive import Confirmer

log = structlog.get_logger(__name__)

WORKSPACE_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:T(\d{2})-(\d{2})-(\d{2}))?-")


def parse_workspace_timestamp(name: str) -> datetime | None:
    """Creation time embedded in a workspace directory name.

    Accepts ``YYYY-MM-DD-KEY`` and ``YYYY-MM-DDTHH-MM-SS-KEY``. Returns None
    for anything else.

    Example:
        >>> parse_workspace_timestamp("2024-05-01-PROJ-42")
        datetime.datetime(2024, 5, 1, 0, 0)
    """
    match = WORKSPACE_TIMESTAMP_RE.match(name)
    if not match:
        return None

    date_part, hour, minute, second = match.groups()
    try:
        timestamp = datetime.strptime(date_part, "%Y-%m-%d")
    except ValueError:
        return None
    if hour is not None:
        try:
            timestamp = timestamp.replace(hour=int(hour), minute=int(minute), second=int(second))
        except ValueError:
            return None
    return timestamp


class WorkspaceManager:
    """Creates and removes workspaces of one repository.

    Attributes:
        repo_root: Root of the main repository the worktrees belong to.
        config: Workspace settings (root directory, copied files, setup shell).
        confirmer: Asked before an existing branch is destroyed.
    """

    def __init__(
        self,
        repo_root: Path,
        config: WorkspaceConfig,
        confirmer: Confirmer,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo_root = Path(repo_root)
        self.config = config
        self.confirmer = confirmer
        self.clock = clock
        self.repo = GitRepository(self.repo_root)

    @property
    def worktrees_root(self) -> Path:
        return self.config.resolved_root

    async def create_workspace(self, item_key: str, base_branch: str | None = None) -> WorkspaceHandle:
        """Create the workspace for an item.

        Args:
            item_key: Work item key, also used as the branch name.
            base_branch: Branch on origin to start from; the current HEAD
                of the repository when omitted.

        Returns:
            Handle of the ready-to-use workspace.

        Raises:
            BranchCollisionError: The branch exists and replacing it was
                declined.
            WorkspaceError: Creating or preparing the worktree failed.
            ConfigurationError: The setup command names a missing script.
        """
        now = self.clock()
        branch = item_key
        path = self.worktrees_root / f"{now.strftime('%Y-%m-%d')}-{item_key}"
        self.worktrees_root.mkdir(parents=True, exist_ok=True)

        if await self.repo.branch_exists(branch):
            await self._replace_existing_branch(branch)

        start_point = f"origin/{base_branch}" if base_branch else None
        log.info("workspace_creating", item=item_key, path=str(path), start_point=start_point)
        try:
            await self.repo.add_worktree(path, branch, start_point)
        except GitOperationError as e:
            raise WorkspaceError(
                f"Failed to create worktree at {path}",
                command=e.command,
                stderr=e.stderr,
            ) from e

        self._copy_project_files(path)
        await self._run_setup(path)

        log.info("workspace_created", item=item_key, path=str(path), branch=branch)
        return WorkspaceHandle(path=path, branch_name=branch, item_key=item_key, created_at=now)

    async def _replace_existing_branch(self, branch: str) -> None:
        existing = await self._worktree_for_branch(branch)
        worktree_path = str(existing.path) if existing else None

        click.echo(click.style(f"\nBranch '{branch}' already exists!", fg="yellow"), err=True)
        if worktree_path:
            click.echo(click.style(f"   Associated worktree: {worktree_path}", fg="yellow"), err=True)
        click.echo(click.style("\nDeleting the branch will PERMANENTLY REMOVE:", fg="red"), err=True)
        click.echo(click.style("   - All commits on this branch", fg="red"), err=True)
        click.echo(click.style("   - All uncommitted changes in the worktree", fg="red"), err=True)
        click.echo(click.style("   - The worktree directory itself\n", fg="red"), err=True)
        click.echo("To manually inspect before deleting:", err=True)
        click.echo(f"  git log {branch}", err=True)
        if worktree_path:
            click.echo(f"  cd {worktree_path} && git status", err=True)

        confirmed = await self.confirmer.confirm(f"Delete branch '{branch}' and its worktree?")
        if not confirmed:
            log.info("branch_collision_declined", branch=branch, worktree=worktree_path)
            raise BranchCollisionError(branch, worktree_path)

        if existing:
            try:
                await self.repo.remove_worktree(existing.path)
                log.info("worktree_removed", path=worktree_path)
            except GitOperationError as e:
                log.warning("worktree_remove_failed", path=worktree_path, error=e.message)

        try:
            await self.repo.delete_branch(branch)
        except GitOperationError as e:
            raise WorkspaceError(f"Failed to delete branch '{branch}'", command=e.command, stderr=e.stderr) from e
        log.info("branch_deleted", branch=branch)

    async def _worktree_for_branch(self, branch: str) -> Worktree | None:
        try:
            worktrees = await self.repo.list_worktrees()
        except GitOperationError as e:
            log.warning("worktree_list_failed", error=e.message)
            return None
        return next((wt for wt in worktrees if wt.branch == branch), None)

    def _copy_project_files(self, worktree_path: Path) -> None:
        for name in self.config.copy_paths:
            source = self.repo_root / name
            target = worktree_path / name
            if not source.exists():
                log.debug("project_file_missing", path=name)
                continue
            try:
                if source.is_dir():
                    shutil.copytree(source, target, dirs_exist_ok=True)
                else:
                    shutil.copy2(source, target)
                log.info("project_file_copied", path=name)
            except OSError as e:
                log.warning("project_file_copy_failed", path=name, error=str(e))

    async def _run_setup(self, worktree_path: Path) -> None:
        project = load_project_config(worktree_path)
        if not project.worktree_setup:
            return

        command = validate_worktree_setup(project.worktree_setup, worktree_path)
        log.info("worktree_setup_running", command=command)
        stdout, stderr, code = await run_shell_command(
            command,
            cwd=worktree_path,
            check=False,
            shell=self.config.setup_shell,
        )
        if code != 0:
            raise WorkspaceError(
                f"Worktree setup failed (exit code {code}): {command}\n\nSTDOUT:\n{stdout}\n\nSTDERR:\n{stderr}"
            )

        output = (stdout + stderr).strip()
        log.info("worktree_setup_complete", command=command, output=output or None)

    async def remove_workspace(self, path: Path | str) -> None:
        """Remove a workspace. Failures are logged, never raised."""
        try:
            await self.repo.remove_worktree(Path(path))
            log.info("workspace_removed", path=str(path))
        except GitOperationError as e:
            log.warning("workspace_remove_failed", path=str(path), error=e.message, stderr=e.stderr)

    async def list_workspaces(self) -> list[Worktree]:
        """Worktrees of the repository that live under the worktrees root."""
        root = self.worktrees_root.resolve()
        worktrees = await self.repo.list_worktrees()
        return [wt for wt in worktrees if wt.path.resolve().is_relative_to(root)]

    async def cleanup_stale(self, max_age_hours: float = 24) -> list[Path]:
        """Remove workspaces older than ``max_age_hours``.

        Removals run concurrently, at most ``cleanup_concurrency`` at a time.
        A failed removal is logged and does not stop the others.

        Returns:
            Paths that were actually removed.
        """
        cutoff = self.clock() - timedelta(hours=max_age_hours)
        stale = []
        for worktree in await self.list_workspaces():
            created = parse_workspace_timestamp(worktree.path.name)
            if created is not None and created < cutoff:
                stale.append(worktree.path)

        log.info("workspace_cleanup_started", candidates=len(stale), max_age_hours=max_age_hours)
        semaphore = asyncio.Semaphore(self.config.cleanup_concurrency)

        async def remove(path: Path) -> Path | None:
            async with semaphore:
                try:
                    await self.repo.remove_worktree(path)
                except (GitOperationError, subprocess.SubprocessError, OSError) as e:
                    log.warning("workspace_cleanup_failed", path=str(path), error=str(e))
                    return None
                log.info("workspace_removed", path=str(path))
                return path

        removed = await asyncio.gather(*(remove(path) for path in stale))
        return [path for path in removed if path is not None]
