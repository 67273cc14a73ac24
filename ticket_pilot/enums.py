"""Enumerations for ticket-pilot commit strategies, backends and build states."""

from enum import Enum


class CommitMode(str, Enum):
    """How iterations turn into commits.

    The mode is fixed for a whole resolution run.
    """

    PER_ITERATION = "per-iteration"
    SINGLE_FINAL = "single-final"

    def __str__(self) -> str:
        return self.value


class ReviewBackend(str, Enum):
    """Code-review backend the change is published to.

    - pull-request: branch is pushed and a pull request is opened with ``gh``
    - gate: exactly one commit per change, amended and pushed for review
    """

    PULL_REQUEST = "pull-request"
    GATE = "gate"

    def __str__(self) -> str:
        return self.value

    @property
    def requires_single_commit(self) -> bool:
        """Check if the backend only accepts a single commit ahead of base."""
        return self == ReviewBackend.GATE

    @property
    def default_commit_mode(self) -> CommitMode:
        """Commit mode used when the caller does not choose one."""
        if self == ReviewBackend.GATE:
            return CommitMode.SINGLE_FINAL
        return CommitMode.PER_ITERATION


class RemoteType(str, Enum):
    """Hosting type detected from the git remotes."""

    GITHUB = "github"
    GERRIT = "gerrit"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value

    def to_backend(self) -> ReviewBackend:
        """Map the detected remote to the review backend it implies."""
        if self == RemoteType.GERRIT:
            return ReviewBackend.GATE
        return ReviewBackend.PULL_REQUEST


class BuildState(str, Enum):
    """States reported by the build status command."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """Check if polling can stop at this state."""
        return self in (BuildState.SUCCESS, BuildState.FAILURE)
