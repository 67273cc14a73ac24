"""Workspace management: one isolated git worktree per work item."""

from ticket_pilot.workspace.manager import WorkspaceManager, parse_workspace_timestamp

__all__ = ["WorkspaceManager", "parse_workspace_timestamp"]
