"""Tests for ticket_pilot.engine.publish and the review backends."""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from conftest import git, write_file

from ticket_pilot.config.project import ProjectConfig
from ticket_pilot.config.settings import SafetyConfig
from ticket_pilot.engine.commits import CommitStrategist
from ticket_pilot.engine.publish import DRY_RUN, NO_CHANGES_TO_PUBLISH, PublishOrchestrator
from ticket_pilot.enums import CommitMode, ReviewBackend
from ticket_pilot.exceptions import PublishError, SafetyViolationError
from ticket_pilot.models.domain import IterationResult, PublishOptions
from ticket_pilot.providers.review import (
    MANUAL_PR_NEEDED,
    GateBackend,
    PullRequestBackend,
    create_backend,
)
from ticket_pilot.safety.gate import SafetyGate

SINGLE_FINAL = PublishOptions(commit_mode=CommitMode.SINGLE_FINAL, base_branch="main")


def edited(root: Path, *files: str) -> list[IterationResult]:
    for name in files:
        write_file(root, name, f"# {name}\n")
    return [IterationResult(success=True, summary="done", files_modified=files)]


def orchestrator(**safety) -> PublishOrchestrator:
    strategist = CommitStrategist("origin/main")
    return PublishOrchestrator(strategist, SafetyGate(SafetyConfig(**safety)))


@pytest.fixture
def no_gh():
    with patch("ticket_pilot.providers.review.shutil.which", return_value=None):
        yield


class TestPublishOrchestrator:
    """Test the finalize, gate, publish sequence."""

    @pytest.mark.asyncio
    async def test_nothing_to_publish(self, workspace_handle, sample_item):
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)

        outcome = await orchestrator().publish(
            workspace_handle, sample_item, [], backend, ProjectConfig(), SINGLE_FINAL
        )

        assert outcome.publish_result == NO_CHANGES_TO_PUBLISH
        assert outcome.safety_report.overall is True
        assert outcome.safety_report.test_requirements.reason == "No changes made"
        backend.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverted_changes_are_nothing_to_publish(self, workspace_handle, sample_item):
        results = [IterationResult(success=True, summary="tried", files_modified=("src/gone.py",))]
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)

        outcome = await orchestrator().publish(
            workspace_handle, sample_item, results, backend, ProjectConfig(), SINGLE_FINAL
        )

        assert outcome.publish_result == NO_CHANGES_TO_PUBLISH

    @pytest.mark.asyncio
    async def test_single_final_pull_request_without_gh(self, workspace_handle, sample_item, branch_repo, no_gh):
        results = edited(branch_repo, "src/retry.py", "tests/test_retry.py", "README.md")

        outcome = await orchestrator().publish(
            workspace_handle, sample_item, results, PullRequestBackend(), ProjectConfig(), SINGLE_FINAL
        )

        assert outcome.publish_result == MANUAL_PR_NEEDED
        assert outcome.safety_report.overall is True
        assert outcome.safety_report.file_validation.files_validated == 3
        assert outcome.remote_results == ()
        assert git(branch_repo, "rev-list", "--count", "origin/main..HEAD") == "1"
        assert git(branch_repo, "log", "-1", "--format=%s") == "feat: Add retry to client"

    @pytest.mark.asyncio
    async def test_safety_failure_raises(self, workspace_handle, sample_item, branch_repo):
        results = edited(branch_repo, "bin/tool.exe")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)

        with pytest.raises(SafetyViolationError) as exc_info:
            await orchestrator().publish(
                workspace_handle, sample_item, results, backend, ProjectConfig(), SINGLE_FINAL
            )

        assert "Forbidden file extension: bin/tool.exe" in exc_info.value.summary
        backend.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_reports_without_publishing(self, workspace_handle, sample_item, branch_repo, tmp_path):
        results = edited(branch_repo, "bin/tool.exe")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)
        marker = tmp_path / "published"
        project = ProjectConfig(publish=f"touch {marker}")
        options = PublishOptions(commit_mode=CommitMode.SINGLE_FINAL, dry_run=True)

        outcome = await orchestrator().publish(workspace_handle, sample_item, results, backend, project, options)

        assert outcome.publish_result == DRY_RUN
        assert outcome.safety_report.overall is False
        assert not marker.exists()
        backend.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_command_runs_before_backend(self, workspace_handle, sample_item, branch_repo):
        results = edited(branch_repo, "src/retry.py", "tests/test_retry.py")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)
        backend.publish.return_value = "https://example.com/pr/1"
        project = ProjectConfig(publish="git log -1 --format=%s > published.txt")

        outcome = await orchestrator().publish(workspace_handle, sample_item, results, backend, project, SINGLE_FINAL)

        assert outcome.publish_result == "https://example.com/pr/1"
        assert (branch_repo / "published.txt").read_text().strip() == "feat: Add retry to client"

    @pytest.mark.asyncio
    async def test_publish_command_failure(self, workspace_handle, sample_item, branch_repo):
        results = edited(branch_repo, "src/retry.py", "tests/test_retry.py")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)

        with pytest.raises(PublishError, match="exit code 3"):
            await orchestrator().publish(
                workspace_handle, sample_item, results, backend, ProjectConfig(publish="exit 3"), SINGLE_FINAL
            )

        backend.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_iterations_need_a_loop(self, workspace_handle, sample_item, branch_repo):
        results = edited(branch_repo, "src/retry.py", "tests/test_retry.py")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)
        options = PublishOptions(commit_mode=CommitMode.SINGLE_FINAL, remote_iterations=2)

        with pytest.raises(PublishError, match="Remote iterations"):
            await orchestrator().publish(workspace_handle, sample_item, results, backend, ProjectConfig(), options)

    @pytest.mark.asyncio
    async def test_remote_loop_results_are_returned(self, workspace_handle, sample_item, branch_repo):
        results = edited(branch_repo, "src/retry.py", "tests/test_retry.py")
        backend = AsyncMock(kind=ReviewBackend.PULL_REQUEST)
        loop = AsyncMock()
        loop.run.return_value = ["remote-result"]
        publisher = PublishOrchestrator(CommitStrategist("origin/main"), SafetyGate(SafetyConfig()), loop)
        options = PublishOptions(commit_mode=CommitMode.SINGLE_FINAL, remote_iterations=2)

        outcome = await publisher.publish(workspace_handle, sample_item, results, backend, ProjectConfig(), options)

        assert outcome.remote_results == ("remote-result",)
        loop.run.assert_awaited_once_with(workspace_handle, "PROJ-42", backend, 2)


class TestPullRequestBackend:
    """Test pushing and opening pull requests."""

    @pytest.mark.asyncio
    async def test_creates_pull_request(self, workspace_handle, sample_item, branch_repo, origin_repo):
        write_file(branch_repo, "src/retry.py")
        git(branch_repo, "add", "-A")
        git(branch_repo, "commit", "-m", "feat: retry")
        results = [IterationResult(success=True, summary="done", files_modified=("src/retry.py",))]
        bodies = []

        async def fake_gh(*args, **kwargs):
            bodies.append(Path(args[args.index("--body-file") + 1]).read_text())
            return "https://github.com/acme/app/pull/7\n", "", 0

        with (
            patch("ticket_pilot.providers.review.shutil.which", return_value="/usr/bin/gh"),
            patch("ticket_pilot.providers.review.run_command", AsyncMock(side_effect=fake_gh)) as gh,
        ):
            url = await PullRequestBackend().publish(workspace_handle, sample_item, results, PublishOptions())

        assert url == "https://github.com/acme/app/pull/7"
        args = gh.await_args.args
        assert args[:5] == ("gh", "pr", "create", "--title", "feat: PROJ-42 - Add retry to client")
        assert "Resolves PROJ-42: Add retry to client" in bodies[0]
        assert not Path(args[6]).exists()
        assert git(origin_repo, "rev-parse", "PROJ-42") == git(branch_repo, "rev-parse", "HEAD")

    @pytest.mark.asyncio
    async def test_gh_failure(self, workspace_handle, sample_item, branch_repo):
        with (
            patch("ticket_pilot.providers.review.shutil.which", return_value="/usr/bin/gh"),
            patch(
                "ticket_pilot.providers.review.run_command",
                AsyncMock(return_value=("", "a pull request already exists", 1)),
            ),
        ):
            with pytest.raises(PublishError, match="already exists"):
                await PullRequestBackend().publish(workspace_handle, sample_item, [], PublishOptions())

    @pytest.mark.asyncio
    async def test_push_failure(self, workspace_handle, sample_item, branch_repo):
        git(branch_repo, "remote", "remove", "origin")

        with patch("ticket_pilot.providers.review.shutil.which", return_value="/usr/bin/gh"):
            with pytest.raises(PublishError, match="Failed to push branch 'PROJ-42'"):
                await PullRequestBackend().publish(workspace_handle, sample_item, [], PublishOptions())

        assert await PullRequestBackend().push_fix(workspace_handle, "main") is False

    @pytest.mark.asyncio
    async def test_commit_fix(self, branch_repo):
        backend = PullRequestBackend()
        head = git(branch_repo, "rev-parse", "HEAD")

        assert await backend.commit_fix(branch_repo, "PROJ-42", 1) == head

        write_file(branch_repo, "src/fix.py")
        commit_hash = await backend.commit_fix(branch_repo, "PROJ-42", 2)

        assert commit_hash == git(branch_repo, "rev-parse", "HEAD")
        assert git(branch_repo, "log", "-1", "--format=%B") == (
            "fix: resolve build failure for PROJ-42\n\nRemote fix iteration 2."
        )


class TestGateBackend:
    """Test single-commit publishing to refs/for/<base>."""

    @pytest.mark.asyncio
    async def test_publish_pushes_single_commit_for_review(
        self, workspace_handle, sample_item, branch_repo, origin_repo
    ):
        for n in (1, 2):
            write_file(branch_repo, f"f{n}.py")
            git(branch_repo, "add", "-A")
            git(branch_repo, "commit", "-m", f"feat: step {n}")
        backend = GateBackend(CommitStrategist("origin/main"))

        commit_hash = await backend.publish(workspace_handle, sample_item, [], PublishOptions(base_branch="main"))

        assert git(branch_repo, "rev-list", "--count", "origin/main..HEAD") == "1"
        assert git(origin_repo, "rev-parse", "refs/for/main") == commit_hash

    @pytest.mark.asyncio
    async def test_publish_with_amend(self, workspace_handle, sample_item, branch_repo, origin_repo):
        write_file(branch_repo, "a.py")
        git(branch_repo, "add", "-A")
        git(branch_repo, "commit", "-m", "feat: a")
        write_file(branch_repo, "late.py")
        backend = GateBackend(CommitStrategist("origin/main"))

        await backend.publish(workspace_handle, sample_item, [], PublishOptions(is_amend=True))

        assert sorted(git(origin_repo, "show", "--name-only", "--format=", "refs/for/main").splitlines()) == [
            "a.py",
            "late.py",
        ]

    @pytest.mark.asyncio
    async def test_commit_fix_amends(self, branch_repo):
        write_file(branch_repo, "a.py")
        git(branch_repo, "add", "-A")
        git(branch_repo, "commit", "-m", "feat: a")
        write_file(branch_repo, "fix.py")

        commit_hash = await GateBackend(CommitStrategist("origin/main")).commit_fix(branch_repo, "PROJ-42", 1)

        assert commit_hash == git(branch_repo, "rev-parse", "HEAD")
        assert git(branch_repo, "rev-list", "--count", "origin/main..HEAD") == "1"
        assert git(branch_repo, "log", "-1", "--format=%s") == "feat: a"


class TestCreateBackend:
    """Test backend selection."""

    def test_selection(self):
        strategist = CommitStrategist("origin/main")

        assert isinstance(create_backend(ReviewBackend.GATE, strategist), GateBackend)
        assert isinstance(create_backend(ReviewBackend.PULL_REQUEST, strategist), PullRequestBackend)
