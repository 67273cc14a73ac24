"""ticket-pilot: resolve tracked work items with a coding agent in isolated git worktrees."""

__version__ = "0.3.0"
