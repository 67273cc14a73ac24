"""CLI entry point for ticket-pilot."""

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click
import structlog

from ticket_pilot.agent.events import AgentEvent, TextEvent, ToolProgressEvent
from ticket_pilot.agent.runner import ClaudeCodeRunner
from ticket_pilot.config.project import load_project_config
from ticket_pilot.config.settings import PilotSettings
from ticket_pilot.engine.build_monitor import BuildMonitor
from ticket_pilot.engine.orchestrator import ResolutionPipeline, ResolveRequest, validate_item_key
from ticket_pilot.enums import CommitMode, ReviewBackend
from ticket_pilot.exceptions import ConfigurationError, TicketPilotError
from ticket_pilot.git.repository import GitRepository
from ticket_pilot.models.domain import BuildCheckResult, FinalResult, IterationContext, IterationResult
from ticket_pilot.providers.work_items import JiraWorkItemProvider
from ticket_pilot.utils.interactive import ClickConfirmer, StaticConfirmer
from ticket_pilot.utils.logging_config import configure_logging
from ticket_pilot.workspace.manager import WorkspaceManager

log = structlog.get_logger(__name__)


def _run(coro: Coroutine[Any, Any, Any], command: str) -> Any:
    """Run ``coro`` and map failures to exit codes."""
    try:
        return asyncio.run(coro)
    except TicketPilotError as e:
        click.echo(f"Error: {e}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{command}_unexpected", exc_info=True)
        sys.exit(1)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to configuration file")
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str, json_logs: bool) -> None:
    """ticket-pilot: resolve tracked work items with a coding agent."""
    configure_logging(log_level.upper(), json_logs=json_logs)

    try:
        settings = PilotSettings.load(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


def _echo_event(event: AgentEvent) -> None:
    if isinstance(event, TextEvent) and not event.partial:
        click.echo(event.text)
    elif isinstance(event, ToolProgressEvent):
        click.echo(click.style(f"  🔧 {event.tool_name}", dim=True))


def _echo_iteration(context: IterationContext, result: IterationResult) -> None:
    mark = "✅" if result.success else "❌"
    resolved = " (resolved)" if result.item_resolved else ""
    click.echo(
        f"\n{mark} Iteration {context.iteration_index}/{context.total_iterations}{resolved}: "
        f"{len(result.files_modified)} file(s) modified"
    )
    for error in result.errors:
        click.echo(click.style(f"   {error}", fg="red"))


def _echo_final(result: FinalResult) -> None:
    successful = sum(1 for r in result.all_results if r.success)
    click.echo(f"\n📊 Summary: {successful}/{len(result.all_results)} iterations successful")
    click.echo(f"Workspace: {result.working_directory}")

    if result.safety_report is not None:
        click.echo("\nSafety validation:")
        click.echo(result.safety_report.summary)

    for remote in result.remote_results:
        state = "PASSED" if remote.build_passed else "FAILED"
        click.echo(f"Remote fix {remote.iteration_index}: build {state}")

    click.echo(click.style(f"\n{result.publish_result}", fg="green", bold=True))


@cli.command()
@click.argument("item_key")
@click.option("--iterations", type=click.IntRange(min=1), default=None, help="Local iterations (default from config)")
@click.option(
    "--remote-iterations",
    type=click.IntRange(min=0),
    default=None,
    help="Remote build fix iterations (default from config)",
)
@click.option(
    "--backend",
    type=click.Choice(["auto", "pull-request", "gate"]),
    default="auto",
    show_default=True,
    help="Review backend; auto detects it from the git remotes",
)
@click.option(
    "--single-commit/--per-iteration",
    "single_commit",
    default=None,
    help="Commit once at the end, or after every iteration",
)
@click.option("--base-branch", default=None, help="Branch to start from and target")
@click.option("--dry-run", is_flag=True, help="Validate without publishing")
@click.option("--skip-tests", is_flag=True, help="Do not require test files")
@click.option("--yes", "assume_yes", is_flag=True, help="Replace an existing branch without asking")
@click.option("--cleanup", is_flag=True, help="Remove the workspace after publishing")
@click.option("--model", default=None, help="Model passed to the agent")
@click.pass_context
def resolve(
    ctx: click.Context,
    item_key: str,
    iterations: int | None,
    remote_iterations: int | None,
    backend: str,
    single_commit: bool | None,
    base_branch: str | None,
    dry_run: bool,
    skip_tests: bool,
    assume_yes: bool,
    cleanup: bool,
    model: str | None,
) -> None:
    """Resolve ITEM_KEY end to end: iterate, validate and publish."""
    settings: PilotSettings = ctx.obj["settings"]
    try:
        validate_item_key(item_key)
    except TicketPilotError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if model:
        settings = settings.model_copy(update={"agent": settings.agent.model_copy(update={"model": model})})

    commit_mode = None
    if single_commit is not None:
        commit_mode = CommitMode.SINGLE_FINAL if single_commit else CommitMode.PER_ITERATION

    request = ResolveRequest(
        item_key=item_key,
        iterations=iterations if iterations is not None else settings.run.iterations,
        remote_iterations=remote_iterations if remote_iterations is not None else settings.run.remote_iterations,
        backend=None if backend == "auto" else ReviewBackend(backend),
        commit_mode=commit_mode,
        base_branch=base_branch,
        dry_run=dry_run,
        skip_tests=skip_tests,
        cleanup=cleanup,
    )

    click.echo(f"🚀 Resolving {item_key}")
    if dry_run:
        click.echo(click.style("   Dry run: nothing will be pushed", fg="yellow"))
    click.echo(click.style("   Always review changes before publishing.", fg="yellow"))

    result = _run(_resolve(settings, request, assume_yes), "resolve")
    _echo_final(result)


async def _resolve(settings: PilotSettings, request: ResolveRequest, assume_yes: bool) -> FinalResult:
    jira = settings.jira
    if not jira.is_configured:
        raise ConfigurationError(
            "Jira is not configured. Set jira.base_url, jira.email and jira.api_token "
            "or TICKET_PILOT_JIRA__BASE_URL, TICKET_PILOT_JIRA__EMAIL and TICKET_PILOT_JIRA__API_TOKEN"
        )

    async with JiraWorkItemProvider(jira.base_url, jira.email, jira.api_token.get_secret_value()) as provider:
        pipeline = ResolutionPipeline(
            settings,
            Path.cwd(),
            ClaudeCodeRunner(settings.agent),
            provider,
            StaticConfirmer(True) if assume_yes else ClickConfirmer(),
            on_event=_echo_event,
            on_result=_echo_iteration,
        )
        return await pipeline.resolve(request)


@cli.command()
@click.option("--max-age-hours", type=float, default=24, show_default=True, help="Remove workspaces older than this")
@click.pass_context
def cleanup(ctx: click.Context, max_age_hours: float) -> None:
    """Remove stale workspaces."""
    settings: PilotSettings = ctx.obj["settings"]
    removed = _run(_cleanup(settings, max_age_hours), "cleanup")

    if not removed:
        click.echo("No stale workspaces found")
        return
    for path in removed:
        click.echo(f"🧹 Removed {path}")
    click.echo(f"✅ Removed {len(removed)} workspace(s)")


async def _cleanup(settings: PilotSettings, max_age_hours: float) -> list[Path]:
    root = await GitRepository(Path.cwd()).root()
    manager = WorkspaceManager(root, settings.workspace, ClickConfirmer())
    return await manager.cleanup_stale(max_age_hours)


@cli.command("build-status")
@click.pass_context
def build_status(ctx: click.Context) -> None:
    """Poll the build of the current directory until it settles."""
    settings: PilotSettings = ctx.obj["settings"]
    result = _run(_build_status(settings), "build_status")

    if result.passed:
        click.echo(f"✅ Build passed after {result.polls} poll(s)")
        return

    click.echo(f"❌ Build failed after {result.polls} poll(s)")
    click.echo(result.output)
    sys.exit(1)


async def _build_status(settings: PilotSettings) -> BuildCheckResult:
    directory = Path.cwd()
    project = load_project_config(await GitRepository(directory).root())
    return await BuildMonitor(project, directory, settings.build).poll()


if __name__ == "__main__":
    cli()
