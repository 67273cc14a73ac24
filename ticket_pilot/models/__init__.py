"""Core domain models for the resolution pipeline.

Key Models:
    - WorkItem: The tracked item being resolved
    - WorkspaceHandle: Isolated worktree for one attempt
    - IterationContext / IterationResult: Local agent iterations
    - BuildStatus / BuildCheckResult: Remote build polling
    - SafetyReport: Safety gate verdict
    - RemoteIterationContext / RemoteIterationResult: Remote fix cycles
    - PublishOutcome / FinalResult: Pipeline outcomes

Example:
    >>> from ticket_pilot.models import IterationResult
    >>> result = IterationResult(success=True, summary="Added retry", files_modified=("src/a.py",))
"""

from ticket_pilot.models.domain import (
    NO_CHANGES,
    BuildCheckResult,
    BuildStatus,
    FileValidation,
    FinalResult,
    IterationContext,
    IterationResult,
    PublishOptions,
    PublishOutcome,
    RemoteIterationContext,
    RemoteIterationResult,
    SafetyReport,
    TestRequirements,
    WorkItem,
    WorkspaceHandle,
    Worktree,
)

__all__ = [
    "NO_CHANGES",
    "BuildCheckResult",
    "BuildStatus",
    "FileValidation",
    "FinalResult",
    "IterationContext",
    "IterationResult",
    "PublishOptions",
    "PublishOutcome",
    "RemoteIterationContext",
    "RemoteIterationResult",
    "SafetyReport",
    "TestRequirements",
    "WorkItem",
    "WorkspaceHandle",
    "Worktree",
]
