"""External collaborators: work item sources and review backends."""

from ticket_pilot.providers.review import (
    MANUAL_PR_NEEDED,
    GateBackend,
    PullRequestBackend,
    ReviewPublisher,
    create_backend,
)
from ticket_pilot.providers.work_items import (
    JiraWorkItemProvider,
    StaticWorkItemProvider,
    WorkItemProvider,
)

__all__ = [
    "MANUAL_PR_NEEDED",
    "GateBackend",
    "JiraWorkItemProvider",
    "PullRequestBackend",
    "ReviewPublisher",
    "StaticWorkItemProvider",
    "WorkItemProvider",
    "create_backend",
]
