"""Commit strategy: turning iteration output into commits.

Two modes exist for a run:

- per-iteration: outstanding changes are committed after every iteration.
  Under the gate backend the first commit is amended instead of stacking
  new ones.
- single-final: nothing is committed until the end, then everything goes
  into one ``feat:`` commit.

The gate backend accepts exactly one commit ahead of base;
:meth:`CommitStrategist.ensure_single_commit` squashes and verifies that.
Hooks always run, so a Gerrit commit-msg hook can add its Change-Id.
"""

from collections.abc import Sequence
from pathlib import Path

import structlog

from ticket_pilot.enums import CommitMode
from ticket_pilot.exceptions import CommitInvariantError
from ticket_pilot.git.repository import CHANGE_ID_RE, GitRepository
from ticket_pilot.models.domain import NO_CHANGES, IterationContext, IterationResult

log = structlog.get_logger(__name__)


def final_commit_message(item_key: str, summary: str, results: Sequence[IterationResult]) -> str:
    successful = sum(1 for r in results if r.success)
    return f"feat: {summary or item_key}\n\nResolved {item_key} through {successful} iteration(s)."


def iteration_commit_message(context: IterationContext) -> str:
    if context.is_first:
        subject = f"feat: {context.item_summary or context.item_key}"
    else:
        subject = f"fix: address review findings for {context.item_key}"
    return (
        f"{subject}\n\n"
        f"Part of resolving {context.item_key} (iteration {context.iteration_index}/{context.total_iterations})."
    )


def combine_commit_messages(messages: Sequence[str]) -> str:
    """Merge commit messages, oldest first, into one.

    The first subject stays the subject. Change-Id footers are stripped
    everywhere and the first one found is re-added as the only footer.
    """
    change_id = None
    cleaned = []
    for message in messages:
        match = CHANGE_ID_RE.search(message)
        if match and change_id is None:
            change_id = match.group(0).strip()
        text = CHANGE_ID_RE.sub("", message).strip()
        if text:
            cleaned.append(text)

    combined = "\n\n".join(cleaned)
    if change_id:
        combined = f"{combined}\n\n{change_id}"
    return combined


class CommitStrategist:
    """Creates the commits of one resolution run.

    Attributes:
        base_ref: Ref the branch started from, e.g. ``origin/main``.
    """

    def __init__(self, base_ref: str) -> None:
        self.base_ref = base_ref

    async def commit_iteration(self, context: IterationContext) -> str | None:
        """Commit what an iteration left uncommitted.

        Returns:
            The new HEAD, or None when there was nothing to commit.
        """
        repo = GitRepository(context.working_directory)
        if not await repo.has_changes():
            return None

        if context.backend.requires_single_commit and await repo.commits_ahead(self.base_ref) > 0:
            commit_hash = await repo.amend()
            log.info("iteration_amended", item=context.item_key, iteration=context.iteration_index, commit=commit_hash)
            return commit_hash

        await repo.add_all()
        commit_hash = await repo.commit(iteration_commit_message(context))
        log.info("iteration_committed", item=context.item_key, iteration=context.iteration_index, commit=commit_hash)
        return commit_hash

    async def finalize(self, context: IterationContext, results: Sequence[IterationResult]) -> str:
        """Produce the commit to publish.

        Returns:
            A commit hash, or ``NO_CHANGES`` when there is nothing to publish
            from this call.
        """
        repo = GitRepository(context.working_directory)

        if context.commit_mode == CommitMode.SINGLE_FINAL:
            if not await repo.has_changes():
                log.info("final_commit_skipped", item=context.item_key, reason="no changes")
                return NO_CHANGES
            await repo.add_all()
            commit_hash = await repo.commit(final_commit_message(context.item_key, context.item_summary, results))
            log.info("final_commit_created", item=context.item_key, commit=commit_hash)
            return commit_hash

        if await repo.has_changes():
            await self.commit_iteration(context)

        if await repo.commits_ahead(self.base_ref) > 0:
            return await repo.head() or NO_CHANGES
        return NO_CHANGES

    async def ensure_single_commit(self, working_directory: Path, base_ref: str | None = None) -> str:
        """Squash everything ahead of base into one commit.

        Args:
            working_directory: Workspace root.
            base_ref: Ref to count from; defaults to the strategist's base_ref.

        Returns:
            Hash of the single commit.

        Raises:
            CommitInvariantError: If anything other than exactly one commit
                is ahead of base afterwards.
        """
        base_ref = base_ref or self.base_ref
        repo = GitRepository(working_directory)
        ahead = await repo.commits_ahead(base_ref)

        if ahead > 1:
            messages = await repo.commit_messages(base_ref)
            log.info("squashing_commits", count=ahead, base=base_ref)
            await repo.reset_soft(base_ref)
            await repo.commit(combine_commit_messages(messages))
            ahead = await repo.commits_ahead(base_ref)

        if ahead != 1:
            raise CommitInvariantError("Review gate requires exactly one commit ahead of base", ahead)

        return await repo.head() or ""

    async def amend(self, working_directory: Path) -> str:
        """Fold outstanding changes into HEAD with hooks enabled."""
        commit_hash = await GitRepository(working_directory).amend()
        log.info("commit_amended", commit=commit_hash)
        return commit_hash
