"""Review backends: where a finished change goes.

Two protocols are supported:

- :class:`PullRequestBackend` pushes the branch and opens a pull request with
  the ``gh`` CLI. History may hold any number of commits.
- :class:`GateBackend` keeps exactly one commit, amends it for every fix and
  pushes it to ``refs/for/<base>`` (Gerrit-style review gate).

Both also know how to commit and push a remote build fix, so the remote fix
loop does not need to care which protocol is in use.
"""

import os
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import structlog

from ticket_pilot.engine.commits import CommitStrategist
from ticket_pilot.engine.prompts import generate_pr_description, generate_pr_title
from ticket_pilot.enums import ReviewBackend
from ticket_pilot.exceptions import GitOperationError, PublishError
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import IterationResult, PublishOptions, WorkItem, WorkspaceHandle
from ticket_pilot.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

MANUAL_PR_NEEDED = "Manual PR needed"


class ReviewPublisher(Protocol):
    kind: ReviewBackend

    async def publish(
        self,
        workspace: WorkspaceHandle,
        item: WorkItem,
        results: Sequence[IterationResult],
        options: PublishOptions,
    ) -> str: ...

    async def commit_fix(self, working_directory: Path, item_key: str, iteration: int) -> str | None: ...

    async def push_fix(self, workspace: WorkspaceHandle, base_branch: str) -> bool: ...


class PullRequestBackend:
    """Publishes through a pushed branch and a ``gh`` pull request."""

    kind = ReviewBackend.PULL_REQUEST

    def __init__(self, gh_command: str = "gh") -> None:
        self.gh_command = gh_command

    def gh_available(self) -> bool:
        return shutil.which(self.gh_command) is not None

    async def _push_branch(self, workspace: WorkspaceHandle) -> None:
        branch = workspace.branch_name
        try:
            await GitRepository(workspace.path).push(f"{branch}:{branch}", set_upstream=True)
        except GitOperationError as e:
            raise PublishError(f"Failed to push branch '{branch}': {e}") from e
        log.info("branch_pushed", branch=branch)

    async def publish(
        self,
        workspace: WorkspaceHandle,
        item: WorkItem,
        results: Sequence[IterationResult],
        options: PublishOptions,
    ) -> str:
        """Push the branch and open a pull request.

        Returns:
            The pull request URL printed by ``gh``, or ``Manual PR needed``
            when ``gh`` is not installed.

        Raises:
            PublishError: Push or ``gh pr create`` failed.
        """
        if not self.gh_available():
            log.warning("gh_cli_missing", hint="create the pull request manually")
            return MANUAL_PR_NEEDED

        await self._push_branch(workspace)

        fd, body_path = tempfile.mkstemp(prefix="ticket-pilot-pr-", suffix=".md")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as body_file:
                body_file.write(generate_pr_description(item, results))

            stdout, stderr, code = await run_command(
                self.gh_command,
                "pr",
                "create",
                "--title",
                generate_pr_title(item),
                "--body-file",
                body_path,
                cwd=workspace.path,
                check=False,
            )
        finally:
            try:
                os.unlink(body_path)
            except OSError as e:
                log.warning("pr_body_cleanup_failed", path=body_path, error=str(e))

        if code != 0:
            raise PublishError(f"gh pr create failed with exit code {code}\nstdout: {stdout}\nstderr: {stderr}")

        pr_url = stdout.strip()
        log.info("pull_request_created", url=pr_url)
        return pr_url

    async def commit_fix(self, working_directory: Path, item_key: str, iteration: int) -> str | None:
        """Commit whatever the fix left uncommitted as a new ``fix:`` commit."""
        repo = GitRepository(working_directory)
        if not await repo.has_changes():
            return await repo.head()
        await repo.add_all()
        return await repo.commit(f"fix: resolve build failure for {item_key}\n\nRemote fix iteration {iteration}.")

    async def push_fix(self, workspace: WorkspaceHandle, base_branch: str) -> bool:
        try:
            await self._push_branch(workspace)
        except PublishError as e:
            log.warning("fix_push_failed", error=e.message)
            return False
        return True


class GateBackend:
    """Publishes a single amended commit to ``refs/for/<base>``."""

    kind = ReviewBackend.GATE

    def __init__(self, strategist: CommitStrategist) -> None:
        self.strategist = strategist

    async def _push_for_review(self, working_directory: Path, base_branch: str) -> None:
        try:
            await GitRepository(working_directory).push(f"HEAD:refs/for/{base_branch}")
        except GitOperationError as e:
            raise PublishError(f"Failed to push to refs/for/{base_branch}: {e}") from e
        log.info("pushed_for_review", base=base_branch)

    async def publish(
        self,
        workspace: WorkspaceHandle,
        item: WorkItem,
        results: Sequence[IterationResult],
        options: PublishOptions,
    ) -> str:
        """Squash to one commit, optionally amend, and push for review.

        Returns:
            Hash of the pushed commit.

        Raises:
            CommitInvariantError: Not exactly one commit ahead of base.
            PublishError: The push failed.
        """
        commit_hash = await self.strategist.ensure_single_commit(workspace.path)
        if options.is_amend:
            commit_hash = await self.strategist.amend(workspace.path)
        await self._push_for_review(workspace.path, options.base_branch)
        return commit_hash

    async def commit_fix(self, working_directory: Path, item_key: str, iteration: int) -> str | None:
        """Amend the fix into the single commit."""
        repo = GitRepository(working_directory)
        if not await repo.has_changes():
            return await self.strategist.ensure_single_commit(working_directory)
        await self.strategist.amend(working_directory)
        return await self.strategist.ensure_single_commit(working_directory)

    async def push_fix(self, workspace: WorkspaceHandle, base_branch: str) -> bool:
        try:
            await self._push_for_review(workspace.path, base_branch)
        except PublishError as e:
            log.warning("fix_push_failed", error=e.message)
            return False
        return True


def create_backend(kind: ReviewBackend, strategist: CommitStrategist) -> PullRequestBackend | GateBackend:
    if kind == ReviewBackend.GATE:
        return GateBackend(strategist)
    return PullRequestBackend()
