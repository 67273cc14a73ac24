"""Configuration for ticket-pilot.

Two layers of configuration exist:

Key Components:
    - PilotSettings: User settings (YAML + TICKET_PILOT_* environment)
    - SafetyConfig: Limits enforced by the safety gate
    - ProjectConfig: Per-repository commands from ``.ticketpilot.json``

Example:
    >>> from ticket_pilot.config import PilotSettings, load_project_config
    >>> settings = PilotSettings.load()
    >>> project = load_project_config("/path/to/repo")
    >>> project.check_build_status
"""

from ticket_pilot.config.project import (
    PROJECT_CONFIG_FILENAME,
    ProjectConfig,
    load_project_config,
    validate_worktree_setup,
)
from ticket_pilot.config.settings import (
    AgentConfig,
    BuildConfig,
    JiraConfig,
    PilotSettings,
    RunConfig,
    SafetyConfig,
    WorkspaceConfig,
)

__all__ = [
    "PROJECT_CONFIG_FILENAME",
    "AgentConfig",
    "BuildConfig",
    "JiraConfig",
    "PilotSettings",
    "ProjectConfig",
    "RunConfig",
    "SafetyConfig",
    "WorkspaceConfig",
    "load_project_config",
    "validate_worktree_setup",
]
