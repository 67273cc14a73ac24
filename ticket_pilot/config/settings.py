"""
Configuration system using Pydantic for type-safe settings management.

This module provides the user-level settings of ticket-pilot: how to reach
the issue tracker, how to drive the coding agent, where workspaces live, how
to poll builds and which safety limits apply before publishing.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ticket_pilot.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("~/.ticket-pilot/config.yaml")


class JiraConfig(BaseModel):
    """Issue tracker connection.

    api_token supports ``${ENV}`` references in YAML.
    """

    base_url: str | None = Field(default=None, description="Base URL of the Jira instance")
    email: str | None = Field(default=None, description="Account email used for basic auth")
    api_token: SecretStr | None = Field(default=None, description="API token used for basic auth")

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)


class AgentConfig(BaseModel):
    """Coding agent CLI configuration."""

    command: str = Field(default="claude", description="Agent executable")
    model: str | None = Field(default=None, description="Model identifier passed to the agent")
    max_turns: int = Field(default=30, ge=1, description="Turn budget for a local iteration")
    remote_max_turns: int = Field(default=20, ge=1, description="Turn budget for a remote fix iteration")
    allowed_tools: list[str] = Field(
        default_factory=lambda: ["Read", "Write", "Edit", "MultiEdit", "Bash", "Glob", "Grep", "LS"],
        description="Tools the agent may use without asking",
    )
    permission_mode: str = Field(default="acceptEdits", description="Agent permission mode")


class WorkspaceConfig(BaseModel):
    """Where and how isolated worktrees are created."""

    root: Path = Field(default=Path("~/.ticket-pilot/worktrees"), description="Directory holding all worktrees")
    copy_paths: list[str] = Field(
        default_factory=lambda: [".claude", ".ticketpilot.json"],
        description="Project-local files copied from the repository root into new worktrees",
    )
    setup_shell: str = Field(default="sh", description="Shell used to run worktreeSetup")
    cleanup_concurrency: int = Field(default=4, ge=1, le=32, description="Maximum parallel removals")

    @property
    def resolved_root(self) -> Path:
        return self.root.expanduser()


class BuildConfig(BaseModel):
    """Build status polling."""

    poll_interval_seconds: float = Field(default=30.0, gt=0, description="Seconds between status polls")
    max_wait_minutes: float = Field(default=30.0, gt=0, description="Give up after this many minutes")
    malformed_poll_retries: int = Field(
        default=0,
        ge=0,
        description="Consecutive unparseable status outputs tolerated before failing",
    )


class SafetyConfig(BaseModel):
    """Limits checked by the safety gate before anything is published."""

    max_file_size: int = Field(default=1024 * 1024, gt=0, description="Maximum size of a modified file in bytes")
    max_files_modified: int = Field(default=50, gt=0, description="Maximum number of modified files")
    allowed_extensions: list[str] = Field(
        default_factory=lambda: [
            ".py",
            ".pyi",
            ".ts",
            ".tsx",
            ".js",
            ".jsx",
            ".json",
            ".md",
            ".rst",
            ".txt",
            ".toml",
            ".cfg",
            ".ini",
            ".yaml",
            ".yml",
            ".css",
            ".scss",
            ".html",
        ],
        description="Extensions that may be modified; '.*' allows everything",
    )
    forbidden_paths: list[str] = Field(
        default_factory=lambda: [
            ".env",
            ".env.local",
            ".env.production",
            ".env.development",
            "package-lock.json",
            "bun.lockb",
            "yarn.lock",
            "pnpm-lock.yaml",
            "poetry.lock",
            "uv.lock",
            ".git",
            "node_modules",
            ".venv",
            ".ticket-pilot",
        ],
        description="Path prefixes or path components that may never be modified",
    )
    forbidden_patterns: list[str] = Field(
        default_factory=lambda: [
            "**/*.key",
            "**/*.pem",
            "**/*.p12",
            "**/*.pfx",
            "**/id_rsa*",
            "**/id_dsa*",
            "**/id_ed25519*",
            "**/secrets/**",
            "**/credentials/**",
        ],
        description="Glob patterns that may never be modified",
    )
    require_tests: bool = Field(default=True, description="Require tests alongside code changes")
    allow_dependency_manifest_changes: bool = Field(
        default=False, description="Allow pyproject.toml, package.json and requirements changes"
    )
    allow_env_file_changes: bool = Field(default=False, description="Allow .env file changes")


class RunConfig(BaseModel):
    """Defaults for a resolution run."""

    iterations: int = Field(default=2, ge=1, le=10, description="Local iterations")
    remote_iterations: int = Field(default=0, ge=0, le=10, description="Remote build fix iterations")


class PilotSettings(BaseSettings):
    """Main ticket-pilot settings.

    Every section has defaults, so an empty or missing config file is valid.
    Environment variables override YAML values, e.g.
    ``TICKET_PILOT_BUILD__POLL_INTERVAL_SECONDS=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TICKET_PILOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    jira: JiraConfig = Field(default_factory=JiraConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    safety: SafetyConfig = Field(default_factory=SafetyConfig)
    run: RunConfig = Field(default_factory=RunConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PilotSettings:
        """Load settings from an explicit path, the default path, or defaults only.

        An explicit path must exist; the default path is optional.
        """
        if config_path:
            return cls.from_yaml(config_path)

        default_path = DEFAULT_CONFIG_PATH.expanduser()
        if default_path.exists():
            return cls.from_yaml(str(default_path))
        return cls()

    @classmethod
    def from_yaml(cls, config_path: str) -> PilotSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            PilotSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
