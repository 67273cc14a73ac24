"""Remote fix loop: let the agent repair a failing remote build.

After publishing, the build monitor is polled. While the build fails and the
budget lasts, the agent gets the raw diagnostics and the previous attempts,
the fix is committed the backend's way and pushed, and the build is polled
again. Running out of budget is an outcome, not an error.
"""

import structlog

from ticket_pilot.engine.build_monitor import BuildMonitor
from ticket_pilot.engine.iteration import IterationEngine
from ticket_pilot.engine.prompts import generate_remote_prompt
from ticket_pilot.models.domain import RemoteIterationContext, RemoteIterationResult, WorkspaceHandle
from ticket_pilot.providers.review import ReviewPublisher

log = structlog.get_logger(__name__)


class RemoteFixLoop:
    """Fix, commit, push and poll until the build passes.

    Attributes:
        engine: Runs the agent call of each cycle.
        monitor: Polls the build of the workspace.
        base_branch: Branch the change targets; gate pushes go to
            ``refs/for/<base_branch>``.
        turn_budget: Turns granted to each fix.
    """

    def __init__(
        self,
        engine: IterationEngine,
        monitor: BuildMonitor,
        base_branch: str,
        turn_budget: int = 20,
    ) -> None:
        self.engine = engine
        self.monitor = monitor
        self.base_branch = base_branch
        self.turn_budget = turn_budget

    async def run(
        self,
        workspace: WorkspaceHandle,
        item_key: str,
        backend: ReviewPublisher,
        budget: int,
    ) -> list[RemoteIterationResult]:
        """Run up to ``budget`` fix cycles.

        Returns:
            One result per cycle; empty when the first poll already passed.

        Raises:
            BuildTimeoutError: A poll never reached a terminal state.
            ConfigurationError: The build commands are missing or broken.
        """
        log.info("remote_build_checking", item=item_key, budget=budget)
        check = await self.monitor.poll()
        if check.passed:
            log.info("remote_build_passed", item=item_key, fixes=0)
            return []

        results: list[RemoteIterationResult] = []
        failure_output = check.output

        for index in range(1, budget + 1):
            context = RemoteIterationContext(
                item_key=item_key,
                working_directory=workspace.path,
                iteration_index=index,
                total_iterations=budget,
                build_failure_output=failure_output,
                backend=backend.kind,
                prior_attempts=tuple(results),
            )
            log.info("remote_iteration_started", item=item_key, iteration=index, total=budget)

            state, files, _ = await self.engine.run_agent(
                workspace.path, generate_remote_prompt(context), self.turn_budget
            )
            if not state.succeeded:
                log.warning("remote_fix_agent_failed", iteration=index, errors=list(state.errors))

            commit_hash = await backend.commit_fix(workspace.path, item_key, index)
            pushed = await backend.push_fix(workspace, self.base_branch)
            if not pushed:
                results.append(
                    RemoteIterationResult(
                        iteration_index=index,
                        fixes_attempted=tuple(files),
                        commit_hash=commit_hash,
                        pushed=False,
                        build_passed=False,
                        build_output=failure_output,
                    )
                )
                log.warning("remote_iterations_stopped", item=item_key, reason="push failed")
                break

            check = await self.monitor.poll()
            results.append(
                RemoteIterationResult(
                    iteration_index=index,
                    fixes_attempted=tuple(files),
                    commit_hash=commit_hash,
                    pushed=True,
                    build_passed=check.passed,
                    build_output=check.output,
                )
            )
            log.info("remote_iteration_complete", item=item_key, iteration=index, build_passed=check.passed)

            if check.passed:
                break
            failure_output = check.output
        else:
            log.warning("remote_budget_exhausted", item=item_key, budget=budget)

        return results
