"""Custom exception hierarchy for ticket-pilot.

This module defines a structured exception hierarchy that lets the
resolution pipeline decide, per stage, whether an error aborts the run or
is absorbed into a degraded outcome.

Exception Hierarchy:
    TicketPilotError (base)
    ├── ConfigurationError
    │   └── BuildStatusError
    ├── GitOperationError
    │   ├── WorkspaceError
    │   │   └── BranchCollisionError
    │   └── CommitInvariantError
    ├── WorkflowError
    │   ├── InvalidItemKeyError
    │   ├── PublishError
    │   ├── SafetyViolationError
    │   └── BuildTimeoutError
    ├── ExternalServiceError
    └── AgentError
        └── ProviderConnectionError

Example Usage:
    >>> from ticket_pilot.exceptions import ConfigurationError
    >>> try:
    ...     load_project_config(path)
    ... except ValueError as e:
    ...     raise ConfigurationError(f"Invalid project config: {path}") from e
"""


class TicketPilotError(Exception):
    """Base exception for all ticket-pilot errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(TicketPilotError):
    """Configuration-related errors.

    Raised when settings or project configuration are invalid, missing, or
    contain incompatible values. Never retried.

    Examples:
        - Invalid JSON in the project configuration file
        - checkBuildStatus missing while remote iterations are requested
        - Setup script referenced by path does not exist
    """

    pass


class BuildStatusError(ConfigurationError):
    """The build status command produced output that cannot be interpreted.

    Raised when ``checkBuildStatus`` emits non-JSON output or a state outside
    pending/running/success/failure.

    Attributes:
        raw: The raw output of the status command
    """

    def __init__(self, message: str, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


class GitOperationError(TicketPilotError):
    """Git operation errors.

    Raised when a git command that must succeed exits non-zero.

    Attributes:
        message: Human-readable error description
        command: The git command that failed
        stderr: Captured standard error output
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        stderr: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            command: Command that failed
            stderr: Standard error of the failed command
        """
        self.command = command
        self.stderr = stderr

        full_message = message
        if stderr and stderr.strip():
            full_message = f"{message}\n{stderr.strip()}"

        super().__init__(full_message)
        self.message = message


class WorkspaceError(GitOperationError):
    """Creating, preparing or removing a workspace failed."""

    pass


class BranchCollisionError(WorkspaceError):
    """A branch for the work item already exists and was not replaced.

    Attributes:
        branch: The colliding branch name
        worktree_path: Worktree currently checked out on the branch, if any
    """

    def __init__(self, branch: str, worktree_path: str | None = None) -> None:
        self.branch = branch
        self.worktree_path = worktree_path
        message = (
            f"Cancelled. Branch '{branch}' still exists.\n\n"
            "To resolve manually:\n"
            "  git worktree list              # See all worktrees\n"
            f"  git worktree remove --force {worktree_path or '<path>'}\n"
            f"  git branch -D {branch}    # Delete the branch"
        )
        super().__init__(message)


class CommitInvariantError(GitOperationError):
    """The single-commit invariant of the gate backend does not hold.

    Attributes:
        commits_ahead: Number of commits found ahead of the base
    """

    def __init__(self, message: str, commits_ahead: int) -> None:
        self.commits_ahead = commits_ahead
        super().__init__(f"{message} (commits ahead of base: {commits_ahead})")
        self.message = message


class WorkflowError(TicketPilotError):
    """Resolution pipeline errors.

    Examples:
        - Work item key has the wrong format
        - Publish command failed
        - Build never reached a terminal state
    """

    pass


class InvalidItemKeyError(WorkflowError):
    """Work item key does not match the PROJECT-123 format."""

    pass


class PublishError(WorkflowError):
    """Publishing the change (publish command, push, PR creation) failed."""

    pass


class SafetyViolationError(WorkflowError):
    """The safety gate rejected the change.

    Attributes:
        violation_type: Short machine-readable violation identifier
        summary: The safety report summary, when available
    """

    def __init__(
        self,
        message: str,
        violation_type: str = "SAFETY_VALIDATION_FAILED",
        summary: str | None = None,
    ) -> None:
        self.violation_type = violation_type
        self.summary = summary
        full_message = message if not summary else f"{message}\n{summary}"
        super().__init__(full_message)
        self.message = message


class BuildTimeoutError(WorkflowError):
    """The build did not reach a terminal state within the maximum wait.

    Attributes:
        max_wait_minutes: The wait limit that was exceeded
    """

    def __init__(self, max_wait_minutes: float) -> None:
        self.max_wait_minutes = max_wait_minutes
        super().__init__(f"Build status polling timeout after {max_wait_minutes:g} minutes")


class ExternalServiceError(TicketPilotError):
    """External service communication errors.

    Raised when fetching the work item from the tracker fails.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_text: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response_text: Response body text (if applicable)
        """
        self.status_code = status_code
        self.response_text = response_text

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        self.message = message


# =============================================================================
# Agent Errors
# =============================================================================


class AgentError(TicketPilotError):
    """The coding agent capability itself failed.

    Task-level failure (the agent could not resolve the item) is not an
    error; it is reported as an unsuccessful iteration result. This error is
    for process-level failures only.

    Attributes:
        agent_type: Agent command that failed (e.g. "claude")
        exit_code: Process exit code, when the process ran
    """

    def __init__(
        self,
        message: str,
        agent_type: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        self.agent_type = agent_type
        self.exit_code = exit_code

        parts = []
        if agent_type:
            parts.append(f"agent: {agent_type}")
        if exit_code is not None:
            parts.append(f"exit code: {exit_code}")

        full_message = message if not parts else f"{message} ({', '.join(parts)})"
        super().__init__(full_message)
        self.message = message


class ProviderConnectionError(AgentError):
    """The agent executable could not be started.

    Attributes:
        suggestion: Helpful suggestion for resolving the issue
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        agent_type: str | None = None,
    ) -> None:
        self.suggestion = suggestion
        super().__init__(message, agent_type=agent_type)
        if suggestion:
            full_message = f"{self.args[0]}\nSuggestion: {suggestion}"
            self.args = (full_message,)
