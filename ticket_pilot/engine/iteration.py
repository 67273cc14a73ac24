"""Iteration engine: one bounded agent call per iteration.

Each iteration renders a prompt, runs the agent with a fixed turn budget,
folds the event stream into an :class:`AgentRunState` and then asks git what
actually changed. The agent's own claims about files are never trusted.

Agent-reported failure (an error result, failed authentication, no result
at all) is an ordinary unsuccessful :class:`IterationResult`. Only failures
of the agent capability itself raise :class:`AgentError`.
"""

from collections.abc import Callable
from dataclasses import replace
from pathlib import Path

import structlog

from ticket_pilot.agent.events import AgentEvent, AgentRunState, apply_event
from ticket_pilot.agent.runner import AgentRunner
from ticket_pilot.engine.commits import CommitStrategist
from ticket_pilot.engine.prompts import generate_iteration_prompt, parse_closing_assessment
from ticket_pilot.enums import CommitMode
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import IterationContext, IterationResult

log = structlog.get_logger(__name__)

EventCallback = Callable[[AgentEvent], None]
ResultCallback = Callable[[IterationContext, IterationResult], None]


class IterationEngine:
    """Runs agent iterations inside a workspace.

    Attributes:
        runner: The agent capability.
        turn_budget: Turns granted to each local iteration.
        strategist: Commits each iteration in per-iteration mode.
        on_event: Observer for live agent output.
    """

    def __init__(
        self,
        runner: AgentRunner,
        turn_budget: int = 30,
        strategist: CommitStrategist | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self.runner = runner
        self.turn_budget = turn_budget
        self.strategist = strategist
        self.on_event = on_event

    async def run_agent(
        self,
        working_directory: Path,
        prompt: str,
        turn_budget: int,
    ) -> tuple[AgentRunState, list[str], str | None]:
        """Run the agent once and observe git around the call.

        Returns:
            Tuple of (final state, files modified, new commit hash).
        """
        repo = GitRepository(working_directory)
        head_before = await repo.head()
        tree_before = await repo.snapshot()

        state = AgentRunState()
        async for event in self.runner.run(working_directory, turn_budget, prompt):
            state = apply_event(state, event)
            if self.on_event is not None:
                self.on_event(event)

        head_after = await repo.head()
        files = await repo.changed_files(since=head_before, before=tree_before)
        commit_hash = head_after if head_after and head_after != head_before else None
        return state, files, commit_hash

    async def run_iteration(self, context: IterationContext) -> IterationResult:
        """Run one iteration and describe its outcome."""
        log.info(
            "iteration_started",
            item=context.item_key,
            iteration=context.iteration_index,
            total=context.total_iterations,
        )
        prompt = generate_iteration_prompt(context)
        state, files, commit_hash = await self.run_agent(context.working_directory, prompt, self.turn_budget)

        errors = list(state.errors)
        if state.result is None:
            errors.append("Agent finished without reporting a result")

        item_resolved, review_notes = parse_closing_assessment(state.final_text)
        success = state.succeeded
        summary = state.final_text.strip() or ("Iteration completed" if success else "; ".join(errors))

        result = IterationResult(
            success=success,
            summary=summary,
            files_modified=tuple(files),
            commit_hash=commit_hash,
            errors=tuple(errors),
            item_resolved=success and item_resolved,
            review_notes=review_notes,
            num_turns=state.result.num_turns if state.result else None,
            cost_usd=state.result.cost_usd if state.result else None,
        )
        log.info(
            "iteration_complete",
            item=context.item_key,
            iteration=context.iteration_index,
            success=result.success,
            resolved=result.item_resolved,
            files=len(result.files_modified),
            errors=list(result.errors),
        )
        return result

    async def run_iterations(
        self,
        base_context: IterationContext,
        on_result: ResultCallback | None = None,
    ) -> list[IterationResult]:
        """Run up to ``total_iterations`` iterations.

        Stops early when an iteration succeeds and reports the item resolved,
        or when a follow-up iteration succeeds without changing anything.
        """
        results: list[IterationResult] = []
        context = base_context

        while context.iteration_index <= context.total_iterations:
            result = await self.run_iteration(context)

            if self.strategist is not None and context.commit_mode == CommitMode.PER_ITERATION:
                commit_hash = await self.strategist.commit_iteration(context)
                if commit_hash:
                    result = replace(result, commit_hash=commit_hash)

            results.append(result)
            if on_result is not None:
                on_result(context, result)

            if result.success and result.item_resolved:
                log.info("iterations_stopped_early", reason="resolved", iteration=context.iteration_index)
                break
            if not context.is_first and result.success and not result.files_modified:
                log.info("iterations_stopped_early", reason="no changes", iteration=context.iteration_index)
                break

            context = context.next(result)

        return results
