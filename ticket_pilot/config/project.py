"""Per-repository project configuration (``.ticketpilot.json``).

The project file lives at the repository root and is copied into every
workspace. It names the shell commands the pipeline runs on the project's
behalf. These commands are trusted: they come from the repository itself.

Example ``.ticketpilot.json``::

    {
        "worktreeSetup": "./scripts/bootstrap.sh",
        "publish": "make lint",
        "checkBuildStatus": "ci-status --json",
        "checkBuildFailures": "ci-logs --failed"
    }
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ticket_pilot.exceptions import ConfigurationError

log = structlog.get_logger(__name__)

PROJECT_CONFIG_FILENAME = ".ticketpilot.json"


class ProjectConfig(BaseModel):
    """Commands configured by the project.

    Unknown keys are ignored. Values must be strings.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    worktree_setup: str | None = Field(default=None, alias="worktreeSetup")
    publish: str | None = Field(default=None)
    check_build: str | None = Field(default=None, alias="checkBuild")
    check_build_status: str | None = Field(default=None, alias="checkBuildStatus")
    check_build_failures: str | None = Field(default=None, alias="checkBuildFailures")

    @property
    def supports_remote_iterations(self) -> bool:
        """Both build commands are needed to run remote fix iterations."""
        return bool(self.check_build_status and self.check_build_failures)


def load_project_config(directory: Path | str) -> ProjectConfig:
    """Load ``.ticketpilot.json`` from a directory.

    A missing file yields an empty configuration.

    Raises:
        ConfigurationError: If the file cannot be read, is not valid JSON,
            is not an object, or has non-string values.
    """
    config_path = Path(directory) / PROJECT_CONFIG_FILENAME
    if not config_path.exists():
        log.debug("project_config_missing", path=str(config_path))
        return ProjectConfig()

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Failed to read project config from {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in project config {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Project config {config_path} must be a JSON object")

    for key in ("worktreeSetup", "publish", "checkBuild", "checkBuildStatus", "checkBuildFailures"):
        if key in raw and raw[key] is not None and not isinstance(raw[key], str):
            raise ConfigurationError(f"Invalid project configuration: '{key}' must be a string")

    try:
        config = ProjectConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid project configuration: {e}") from e

    if config.check_build:
        log.warning(
            "project_config_deprecated_key",
            key="checkBuild",
            hint="use checkBuildStatus and checkBuildFailures",
        )

    return config


def validate_worktree_setup(setup_command: str, worktree_path: Path | str) -> str:
    """Check that a setup command referring to a relative script can run.

    Commands starting with ``./`` or ``../`` name a script inside the
    worktree that must exist. Anything else is run as a shell command as is.

    Returns:
        The command to execute.

    Raises:
        ConfigurationError: If the referenced script does not exist.
    """
    if setup_command.startswith(("./", "../")):
        script = setup_command.split()[0]
        if not (Path(worktree_path) / script).exists():
            raise ConfigurationError(f"Setup script not found: {script}")
    return setup_command
