"""Tests for ticket_pilot.config (settings and project configuration)."""

import json
from pathlib import Path

import pytest
from structlog.testing import capture_logs

from ticket_pilot.config.project import ProjectConfig, load_project_config, validate_worktree_setup
from ticket_pilot.config.settings import PilotSettings, SafetyConfig
from ticket_pilot.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "TICKET_PILOT_RUN__ITERATIONS",
        "TICKET_PILOT_BUILD__POLL_INTERVAL_SECONDS",
        "JIRA_TOKEN",
        "JIRA_EMAIL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestPilotSettingsDefaults:
    """Test default values."""

    def test_defaults(self):
        settings = PilotSettings()

        assert settings.agent.command == "claude"
        assert settings.agent.max_turns == 30
        assert settings.agent.remote_max_turns == 20
        assert settings.agent.permission_mode == "acceptEdits"
        assert settings.workspace.copy_paths == [".claude", ".ticketpilot.json"]
        assert settings.workspace.cleanup_concurrency == 4
        assert settings.build.poll_interval_seconds == 30
        assert settings.build.max_wait_minutes == 30
        assert settings.build.malformed_poll_retries == 0
        assert settings.run.iterations == 2
        assert settings.run.remote_iterations == 0
        assert settings.jira.is_configured is False

    def test_safety_defaults(self):
        safety = SafetyConfig()

        assert safety.max_file_size == 1024 * 1024
        assert safety.max_files_modified == 50
        assert ".py" in safety.allowed_extensions
        assert ".env" in safety.forbidden_paths
        assert "node_modules" in safety.forbidden_paths
        assert "**/*.pem" in safety.forbidden_patterns
        assert safety.require_tests is True
        assert safety.allow_dependency_manifest_changes is False
        assert safety.allow_env_file_changes is False

    def test_resolved_root_expands_user(self):
        settings = PilotSettings()

        assert "~" not in str(settings.workspace.resolved_root)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("TICKET_PILOT_RUN__ITERATIONS", "4")
        monkeypatch.setenv("TICKET_PILOT_BUILD__POLL_INTERVAL_SECONDS", "5")

        settings = PilotSettings()

        assert settings.run.iterations == 4
        assert settings.build.poll_interval_seconds == 5


class TestPilotSettingsFromYaml:
    """Test loading settings from YAML."""

    def test_load_yaml(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text(
            "jira:\n"
            "  base_url: https://acme.atlassian.net\n"
            "  email: dev@acme.io\n"
            "  api_token: secret\n"
            "run:\n"
            "  iterations: 3\n"
        )

        settings = PilotSettings.from_yaml(str(config))

        assert settings.jira.is_configured
        assert settings.jira.api_token.get_secret_value() == "secret"
        assert settings.run.iterations == 3

    def test_file_values_take_precedence_over_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TICKET_PILOT_RUN__ITERATIONS", "4")
        monkeypatch.setenv("TICKET_PILOT_BUILD__POLL_INTERVAL_SECONDS", "5")
        config = tmp_path / "config.yaml"
        config.write_text("run:\n  iterations: 1\n")

        settings = PilotSettings.from_yaml(str(config))

        assert settings.run.iterations == 1
        assert settings.build.poll_interval_seconds == 5

    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("JIRA_TOKEN", "from-env")
        config = tmp_path / "config.yaml"
        config.write_text("jira:\n  api_token: ${JIRA_TOKEN}\n  email: ${JIRA_EMAIL:-me@acme.io}\n")

        settings = PilotSettings.from_yaml(str(config))

        assert settings.jira.api_token.get_secret_value() == "from-env"
        assert settings.jira.email == "me@acme.io"

    def test_missing_env_var(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("jira:\n  api_token: ${JIRA_TOKEN}\n")

        with pytest.raises(ConfigurationError, match="JIRA_TOKEN"):
            PilotSettings.from_yaml(str(config))

    def test_comment_lines_are_not_interpolated(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("# api_token: ${JIRA_TOKEN}\nrun:\n  iterations: 1\n")

        assert PilotSettings.from_yaml(str(config)).run.iterations == 1

    def test_empty_file_uses_defaults(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("")

        assert PilotSettings.from_yaml(str(config)).run.iterations == 2

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("run: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            PilotSettings.from_yaml(str(config))

    def test_non_mapping_yaml(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="YAML object"):
            PilotSettings.from_yaml(str(config))

    def test_invalid_values(self, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text("run:\n  iterations: 0\n")

        with pytest.raises(ConfigurationError, match="Failed to validate"):
            PilotSettings.from_yaml(str(config))

    def test_load_explicit_path_must_exist(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            PilotSettings.load(str(tmp_path / "missing.yaml"))

    def test_load_without_default_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(
            "ticket_pilot.config.settings.DEFAULT_CONFIG_PATH",
            tmp_path / "nope" / "config.yaml",
        )

        assert PilotSettings.load().run.iterations == 2


class TestProjectConfig:
    """Test .ticketpilot.json loading."""

    def write(self, directory: Path, content) -> None:
        text = content if isinstance(content, str) else json.dumps(content)
        (directory / ".ticketpilot.json").write_text(text)

    def test_missing_file_is_empty_config(self, tmp_path):
        config = load_project_config(tmp_path)

        assert config == ProjectConfig()
        assert config.supports_remote_iterations is False

    def test_camel_case_keys(self, tmp_path):
        self.write(
            tmp_path,
            {
                "worktreeSetup": "make setup",
                "publish": "make release",
                "checkBuildStatus": "ci status",
                "checkBuildFailures": "ci logs",
            },
        )

        config = load_project_config(tmp_path)

        assert config.worktree_setup == "make setup"
        assert config.publish == "make release"
        assert config.check_build_status == "ci status"
        assert config.check_build_failures == "ci logs"
        assert config.supports_remote_iterations is True

    def test_unknown_keys_ignored(self, tmp_path):
        self.write(tmp_path, {"publish": "x", "somethingElse": 3})

        assert load_project_config(tmp_path).publish == "x"

    def test_legacy_check_build_warns(self, tmp_path):
        self.write(tmp_path, {"checkBuild": "ci"})

        with capture_logs() as logs:
            config = load_project_config(tmp_path)

        assert config.supports_remote_iterations is False
        assert any(entry["event"] == "project_config_deprecated_key" for entry in logs)

    def test_invalid_json(self, tmp_path):
        self.write(tmp_path, "{not json")

        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            load_project_config(tmp_path)

    def test_non_object(self, tmp_path):
        self.write(tmp_path, [1, 2])

        with pytest.raises(ConfigurationError, match="JSON object"):
            load_project_config(tmp_path)

    def test_non_string_value(self, tmp_path):
        self.write(tmp_path, {"publish": 42})

        with pytest.raises(ConfigurationError, match="'publish' must be a string"):
            load_project_config(tmp_path)


class TestValidateWorktreeSetup:
    """Test setup command validation."""

    def test_plain_command_passes(self, tmp_path):
        assert validate_worktree_setup("npm ci", tmp_path) == "npm ci"

    def test_existing_relative_script(self, tmp_path):
        (tmp_path / "setup.sh").write_text("#!/bin/sh\n")

        assert validate_worktree_setup("./setup.sh --fast", tmp_path) == "./setup.sh --fast"

    @pytest.mark.parametrize("command", ["./missing.sh", "../missing.sh arg"])
    def test_missing_relative_script(self, tmp_path, command):
        with pytest.raises(ConfigurationError, match="Setup script not found"):
            validate_worktree_setup(command, tmp_path)
