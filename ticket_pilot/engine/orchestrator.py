"""
Resolution pipeline for one work item.

The pipeline is the single writer of every result record. It wires the
components together and runs them in order:

    workspace -> iterations x N -> finalize -> safety gate -> publish
    -> remote fixes x M -> optional cleanup

Architecture Overview:
    Components raise typed errors; the pipeline lets them propagate so the
    CLI can print a precise message. Degraded outcomes ("Manual PR needed",
    an exhausted remote budget, a dry run) are returned, not raised.

    Interruption leaves the workspace exactly as it was so it can be
    inspected; cleanup only runs after a completed publish.

Example:
    >>> pipeline = ResolutionPipeline(settings, Path.cwd(), runner, provider, confirmer)
    >>> result = await pipeline.resolve(ResolveRequest(item_key="PROJ-42"))
    >>> print(result.publish_result)
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import structlog

from ticket_pilot.agent.runner import AgentRunner
from ticket_pilot.config.project import ProjectConfig, load_project_config
from ticket_pilot.config.settings import PilotSettings
from ticket_pilot.engine.build_monitor import BuildMonitor
from ticket_pilot.engine.commits import CommitStrategist
from ticket_pilot.engine.iteration import EventCallback, IterationEngine, ResultCallback
from ticket_pilot.engine.publish import PublishOrchestrator
from ticket_pilot.engine.remote import RemoteFixLoop
from ticket_pilot.enums import CommitMode, ReviewBackend
from ticket_pilot.exceptions import ConfigurationError, InvalidItemKeyError
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import FinalResult, IterationContext, PublishOptions
from ticket_pilot.providers.review import create_backend
from ticket_pilot.providers.work_items import WorkItemProvider
from ticket_pilot.safety.gate import SafetyGate
from ticket_pilot.utils.interactive import Confirmer
from ticket_pilot.workspace.manager import WorkspaceManager

log = structlog.get_logger(__name__)

ITEM_KEY_RE = re.compile(r"^[A-Z]{1,10}-\d+$")


def validate_item_key(item_key: str) -> str:
    """Check that ``item_key`` looks like ``PROJ-123``.

    Raises:
        InvalidItemKeyError: The key has another shape.
    """
    if not ITEM_KEY_RE.match(item_key):
        raise InvalidItemKeyError(f"Invalid item key format: {item_key}. Expected format: PROJECT-123")
    return item_key


@dataclass(frozen=True)
class ResolveRequest:
    """What the caller asked for. None means "detect"."""

    item_key: str
    iterations: int = 2
    remote_iterations: int = 0
    backend: ReviewBackend | None = None
    commit_mode: CommitMode | None = None
    base_branch: str | None = None
    dry_run: bool = False
    skip_tests: bool = False
    cleanup: bool = False


class ResolutionPipeline:
    """Runs the full resolution of one work item.

    Attributes:
        settings: Loaded settings.
        repo_root: Any directory inside the repository to work on.
        runner: The coding agent capability.
        item_provider: Source of the work item.
        confirmer: Asked before an existing branch is destroyed.
        on_event: Observer for live agent output.
        on_result: Observer called after every local iteration.
    """

    def __init__(
        self,
        settings: PilotSettings,
        repo_root: Path,
        runner: AgentRunner,
        item_provider: WorkItemProvider,
        confirmer: Confirmer,
        on_event: EventCallback | None = None,
        on_result: ResultCallback | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.repo_root = Path(repo_root)
        self.runner = runner
        self.item_provider = item_provider
        self.confirmer = confirmer
        self.on_event = on_event
        self.on_result = on_result
        self._sleep = sleep

    async def resolve(self, request: ResolveRequest) -> FinalResult:
        """Resolve one item end to end.

        Raises:
            InvalidItemKeyError: Malformed item key.
            ConfigurationError: Remote iterations without build commands, or
                a broken project configuration.
            TicketPilotError: Whatever a stage raised; the workspace is left
                in place for inspection.
        """
        item_key = validate_item_key(request.item_key)
        repo = GitRepository(self.repo_root)
        root = await repo.root()

        project = load_project_config(root)
        if request.remote_iterations > 0 and not project.supports_remote_iterations:
            raise ConfigurationError(
                "Remote iterations require checkBuildStatus and checkBuildFailures in .ticketpilot.json"
            )

        backend_kind = request.backend or (await repo.remote_type()).to_backend()
        commit_mode = request.commit_mode or backend_kind.default_commit_mode
        base_branch = request.base_branch or await repo.default_branch()
        log.info(
            "resolution_started",
            item=item_key,
            backend=str(backend_kind),
            commit_mode=str(commit_mode),
            base=base_branch,
            iterations=request.iterations,
            remote_iterations=request.remote_iterations,
        )

        item = await self.item_provider.get_item(item_key)
        await repo.fetch(base_branch)

        manager = WorkspaceManager(root, self.settings.workspace, self.confirmer)
        workspace = await manager.create_workspace(item_key, base_branch)

        base_ref = f"origin/{base_branch}" if await repo.ref_exists(f"origin/{base_branch}") else base_branch
        strategist = CommitStrategist(base_ref)
        engine = IterationEngine(
            self.runner,
            turn_budget=self.settings.agent.max_turns,
            strategist=strategist,
            on_event=self.on_event,
        )

        results = await engine.run_iterations(
            IterationContext(
                item_key=item_key,
                item_description=item.description,
                working_directory=workspace.path,
                iteration_index=1,
                total_iterations=request.iterations,
                prior_results=(),
                commit_mode=commit_mode,
                backend=backend_kind,
                item_summary=item.summary,
            ),
            on_result=self.on_result,
        )
        successful = sum(1 for r in results if r.success)
        log.info("iterations_finished", item=item_key, successful=successful, total=len(results))

        workspace_project = load_project_config(workspace.path)
        publisher = PublishOrchestrator(
            strategist,
            SafetyGate(self.settings.safety),
            self._remote_loop(engine, workspace_project, workspace.path, base_branch),
        )
        outcome = await publisher.publish(
            workspace,
            item,
            results,
            create_backend(backend_kind, strategist),
            workspace_project,
            PublishOptions(
                dry_run=request.dry_run,
                skip_tests=request.skip_tests,
                base_branch=base_branch,
                remote_iterations=request.remote_iterations,
                commit_mode=commit_mode,
            ),
        )

        if request.cleanup:
            await manager.remove_workspace(workspace.path)

        log.info("resolution_complete", item=item_key, publish_result=outcome.publish_result)
        return FinalResult(
            working_directory=workspace.path,
            all_results=tuple(results),
            safety_report=outcome.safety_report,
            publish_result=outcome.publish_result,
            remote_results=outcome.remote_results,
        )

    def _remote_loop(
        self,
        engine: IterationEngine,
        project: ProjectConfig,
        working_directory: Path,
        base_branch: str,
    ) -> RemoteFixLoop | None:
        if not project.supports_remote_iterations:
            return None
        monitor = BuildMonitor(project, working_directory, self.settings.build, sleep=self._sleep)
        return RemoteFixLoop(engine, monitor, base_branch, turn_budget=self.settings.agent.remote_max_turns)
