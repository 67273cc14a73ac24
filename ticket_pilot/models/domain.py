"""
Domain models for the resolution pipeline.

This module contains the data classes passed between pipeline stages: the
work item being resolved, the workspace it is resolved in, per-iteration
context and results, build status, the safety report and the publish and
final outcomes. Result records are frozen; the orchestrator only ever
appends new ones.

Example:
    Building the context for a follow-up iteration::

        context = IterationContext(
            item_key="PROJ-42",
            item_description=item.description,
            working_directory=workspace.path,
            iteration_index=2,
            total_iterations=2,
            prior_results=(first_result,),
            commit_mode=CommitMode.SINGLE_FINAL,
            backend=ReviewBackend.PULL_REQUEST,
        )
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from ticket_pilot.enums import BuildState, CommitMode, ReviewBackend

NO_CHANGES = "NO_CHANGES"
"""Sentinel returned by the commit strategist when there is nothing to commit."""


@dataclass(frozen=True)
class WorkItem:
    """A tracked work item, as fetched from the issue tracker."""

    key: str
    """Item key such as ``PROJ-42``. Also used as the branch name."""

    summary: str
    """One-line summary. Used in commit subjects and PR titles."""

    description: str
    """XML-wrapped, escaped rendering of the item.

    Injected verbatim into agent prompts; see
    :func:`ticket_pilot.engine.prompts.format_item_description`.
    """


@dataclass(frozen=True)
class WorkspaceHandle:
    """An isolated git worktree created for one resolution attempt."""

    path: Path
    branch_name: str
    item_key: str
    created_at: datetime


@dataclass(frozen=True)
class Worktree:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    head: str | None = None
    branch: str | None = None
    """Short branch name, None for detached worktrees."""

    bare: bool = False


@dataclass(frozen=True)
class IterationResult:
    """Outcome of one local agent iteration."""

    success: bool
    """Whether the agent finished without reporting an error."""

    summary: str
    """Agent's final message, or a description of the failure."""

    files_modified: tuple[str, ...] = ()
    """Paths relative to the workspace root, from git after the agent ran."""

    commit_hash: str | None = None
    """HEAD after the iteration when it differs from HEAD before."""

    errors: tuple[str, ...] = ()
    item_resolved: bool = False
    """The agent's closing assessment said ``STATUS: RESOLVED``."""

    review_notes: str | None = None
    num_turns: int | None = None
    cost_usd: float | None = None


@dataclass(frozen=True)
class IterationContext:
    """Everything one iteration needs.

    Rebuilt before every iteration from the accumulated results; never
    mutated.
    """

    item_key: str
    item_description: str
    working_directory: Path
    iteration_index: int
    """1-based."""

    total_iterations: int
    prior_results: tuple[IterationResult, ...]
    commit_mode: CommitMode
    backend: ReviewBackend
    item_summary: str = ""

    @property
    def is_first(self) -> bool:
        return self.iteration_index == 1

    def next(self, result: IterationResult) -> "IterationContext":
        """Context for the following iteration with ``result`` appended."""
        return IterationContext(
            item_key=self.item_key,
            item_description=self.item_description,
            working_directory=self.working_directory,
            iteration_index=self.iteration_index + 1,
            total_iterations=self.total_iterations,
            prior_results=(*self.prior_results, result),
            commit_mode=self.commit_mode,
            backend=self.backend,
            item_summary=self.item_summary,
        )


@dataclass(frozen=True)
class BuildStatus:
    """One parsed answer of the build status command. Never persisted."""

    state: BuildState
    raw: str = ""


@dataclass(frozen=True)
class BuildCheckResult:
    """Terminal outcome of a poll cycle.

    ``output`` holds the failure diagnostics; it is empty for a passing
    build.
    """

    passed: bool
    output: str = ""
    polls: int = 0


@dataclass(frozen=True)
class FileValidation:
    valid: bool
    errors: tuple[str, ...] = ()
    files_validated: int = 0


@dataclass(frozen=True)
class TestRequirements:
    __test__ = False

    satisfied: bool
    reason: str


@dataclass(frozen=True)
class SafetyReport:
    """Verdict of the safety gate over the union of modified files."""

    overall: bool
    file_validation: FileValidation
    test_requirements: TestRequirements
    additional_checks: dict[str, bool] = field(default_factory=dict)
    summary: str = ""


@dataclass(frozen=True)
class RemoteIterationResult:
    """Outcome of one remote fix cycle (fix, commit, push, poll)."""

    iteration_index: int
    fixes_attempted: tuple[str, ...]
    """Files the agent changed while fixing."""

    commit_hash: str | None
    pushed: bool
    build_passed: bool
    build_output: str = ""


@dataclass(frozen=True)
class RemoteIterationContext:
    """Everything one remote fix iteration needs."""

    item_key: str
    working_directory: Path
    iteration_index: int
    total_iterations: int
    build_failure_output: str
    backend: ReviewBackend
    prior_attempts: tuple[RemoteIterationResult, ...] = ()


@dataclass(frozen=True)
class PublishOptions:
    """Caller choices that shape publishing."""

    dry_run: bool = False
    skip_tests: bool = False
    base_branch: str = "main"
    remote_iterations: int = 0
    is_amend: bool = False
    commit_mode: CommitMode = CommitMode.PER_ITERATION


@dataclass(frozen=True)
class PublishOutcome:
    safety_report: SafetyReport
    publish_result: str
    remote_results: tuple[RemoteIterationResult, ...] = ()


@dataclass(frozen=True)
class FinalResult:
    """What a resolution run hands back to the CLI."""

    working_directory: Path
    all_results: tuple[IterationResult, ...]
    safety_report: SafetyReport | None = None
    publish_result: str | None = None
    remote_results: tuple[RemoteIterationResult, ...] = ()

    @property
    def build_passed(self) -> bool | None:
        """Result of the last remote build, None when no remote cycle ran."""
        if not self.remote_results:
            return None
        return self.remote_results[-1].build_passed
