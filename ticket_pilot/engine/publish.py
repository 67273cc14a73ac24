"""Publish orchestrator: finalize, gate, publish, then watch the build.

Steps run in order and short-circuit on failure, except in dry-run mode
where the safety verdict is only logged and nothing leaves the machine.
"""

from collections.abc import Sequence

import structlog

from ticket_pilot.config.project import ProjectConfig
from ticket_pilot.engine.commits import CommitStrategist
from ticket_pilot.engine.remote import RemoteFixLoop
from ticket_pilot.exceptions import PublishError, SafetyViolationError
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import (
    NO_CHANGES,
    FileValidation,
    IterationContext,
    IterationResult,
    PublishOptions,
    PublishOutcome,
    SafetyReport,
    TestRequirements,
    WorkItem,
    WorkspaceHandle,
)
from ticket_pilot.providers.review import ReviewPublisher
from ticket_pilot.safety.gate import SafetyGate, union_of_modified_files
from ticket_pilot.utils.async_subprocess import run_shell_command

log = structlog.get_logger(__name__)

NO_CHANGES_TO_PUBLISH = "No changes to publish"
DRY_RUN = "DRY RUN"


def no_changes_outcome() -> PublishOutcome:
    report = SafetyReport(
        overall=True,
        file_validation=FileValidation(valid=True, errors=(), files_validated=0),
        test_requirements=TestRequirements(satisfied=True, reason="No changes made"),
        additional_checks={},
        summary="No changes made",
    )
    return PublishOutcome(safety_report=report, publish_result=NO_CHANGES_TO_PUBLISH)


class PublishOrchestrator:
    """Takes the iteration results of one run out of the workspace.

    Attributes:
        strategist: Finalizes commits and knows the base ref.
        safety_gate: Judges the union of modified files.
        remote_loop: Remote fix loop, needed only when remote iterations
            are requested.
    """

    def __init__(
        self,
        strategist: CommitStrategist,
        safety_gate: SafetyGate,
        remote_loop: RemoteFixLoop | None = None,
    ) -> None:
        self.strategist = strategist
        self.safety_gate = safety_gate
        self.remote_loop = remote_loop

    async def publish(
        self,
        workspace: WorkspaceHandle,
        item: WorkItem,
        results: Sequence[IterationResult],
        backend: ReviewPublisher,
        project_config: ProjectConfig,
        options: PublishOptions,
    ) -> PublishOutcome:
        """Finalize, validate and publish the run.

        Raises:
            SafetyViolationError: The safety gate rejected the change.
            PublishError: The publish command, the push or PR creation failed.
            CommitInvariantError: The gate backend found more or less than
                one commit ahead of base.
        """
        repo = GitRepository(workspace.path)
        files = union_of_modified_files(results)

        if not files and await repo.commits_ahead(self.strategist.base_ref) == 0:
            log.info("publish_skipped", item=item.key, reason="no changes")
            return no_changes_outcome()

        context = IterationContext(
            item_key=item.key,
            item_description=item.description,
            working_directory=workspace.path,
            iteration_index=len(results),
            total_iterations=len(results),
            prior_results=tuple(results),
            commit_mode=options.commit_mode,
            backend=backend.kind,
            item_summary=item.summary,
        )
        final_commit = await self.strategist.finalize(context, results)
        if final_commit == NO_CHANGES and await repo.commits_ahead(self.strategist.base_ref) == 0:
            log.info("publish_skipped", item=item.key, reason="nothing ahead of base")
            return no_changes_outcome()

        report = self.safety_gate.evaluate(files, workspace.path, results, skip_tests=options.skip_tests)
        if not report.overall:
            if not options.dry_run:
                raise SafetyViolationError("Safety validation failed", summary=report.summary)
            log.warning("safety_failed_dry_run", summary=report.summary)

        if project_config.publish:
            if options.dry_run:
                log.info("publish_command_skipped", command=project_config.publish, reason="dry run")
            else:
                await self._run_publish_command(project_config.publish, workspace)

        if options.dry_run:
            log.info("publish_dry_run", item=item.key, backend=str(backend.kind))
            return PublishOutcome(safety_report=report, publish_result=DRY_RUN)

        publish_result = await backend.publish(workspace, item, results, options)
        log.info("published", item=item.key, backend=str(backend.kind), result=publish_result)

        remote_results = ()
        if options.remote_iterations > 0:
            if self.remote_loop is None:
                raise PublishError("Remote iterations requested but no build monitor is configured")
            remote_results = tuple(
                await self.remote_loop.run(workspace, item.key, backend, options.remote_iterations)
            )

        return PublishOutcome(safety_report=report, publish_result=publish_result, remote_results=remote_results)

    async def _run_publish_command(self, command: str, workspace: WorkspaceHandle) -> None:
        log.info("publish_command_running", command=command)
        _, _, code = await run_shell_command(command, cwd=workspace.path, check=False, capture_output=False)
        if code != 0:
            raise PublishError(f"Publish command failed with exit code {code}: {command}")
