"""Async git access for workspaces.

Example:
    >>> from ticket_pilot.git import GitRepository
    >>> repo = GitRepository("/path/to/worktree")
    >>> await repo.commits_ahead("origin/main")
    1
"""

from ticket_pilot.git.repository import (
    CHANGE_ID_RE,
    GitRepository,
    detect_remote_type,
    parse_status_paths,
    parse_worktree_porcelain,
)

__all__ = [
    "CHANGE_ID_RE",
    "GitRepository",
    "detect_remote_type",
    "parse_status_paths",
    "parse_worktree_porcelain",
]
