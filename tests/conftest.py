"""Pytest configuration and shared fixtures."""

import subprocess
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest

from ticket_pilot.agent.events import ResultEvent, TextEvent
from ticket_pilot.config.settings import WorkspaceConfig
from ticket_pilot.enums import CommitMode, ReviewBackend
from ticket_pilot.models.domain import IterationContext, IterationResult, WorkItem, WorkspaceHandle


def git(cwd: Path, *args: str) -> str:
    """Run git synchronously for test setup and assertions."""
    completed = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout.strip()


def write_file(root: Path, relative: str, content: str = "x\n") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


AgentScript = Callable[[Path], str | None]


class FakeRunner:
    """Agent runner that applies scripted edits instead of calling an agent.

    Each call pops the next script, runs it against the working directory
    and reports its return value (or a default text) as the final result.
    """

    def __init__(self, *scripts: AgentScript, subtype: str = "success") -> None:
        self.scripts = list(scripts)
        self.subtype = subtype
        self.calls: list[tuple[Path, int, str]] = []

    async def run(self, working_directory: Path, turn_budget: int, prompt: str):
        self.calls.append((Path(working_directory), turn_budget, prompt))
        text = "Work done.\n\nSTATUS: NEEDS_WORK"
        if self.scripts:
            text = self.scripts.pop(0)(Path(working_directory)) or text
        yield TextEvent(text=text)
        yield ResultEvent(subtype=self.subtype, result=text, num_turns=3, cost_usd=0.01)


@pytest.fixture
def origin_repo(tmp_path: Path) -> Path:
    """Bare repository acting as ``origin``."""
    origin = tmp_path / "origin.git"
    subprocess.run(["git", "init", "--bare", "-b", "main", str(origin)], check=True, capture_output=True)
    return origin


@pytest.fixture
def git_repo(tmp_path: Path, origin_repo: Path) -> Path:
    """Real repository with one commit on main, pushed to a bare origin."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-b", "main")
    git(repo, "config", "user.email", "pilot@example.com")
    git(repo, "config", "user.name", "Ticket Pilot")
    git(repo, "config", "commit.gpgsign", "false")
    write_file(repo, "README.md", "# demo\n")
    write_file(repo, "src/app.py", "def main():\n    return 1\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-m", "initial commit")
    git(repo, "remote", "add", "origin", str(origin_repo))
    git(repo, "push", "-u", "origin", "main")
    git(repo, "fetch", "origin")
    return repo


@pytest.fixture
def workspace_config(tmp_path: Path) -> WorkspaceConfig:
    return WorkspaceConfig(root=tmp_path / "worktrees")


@pytest.fixture
def branch_repo(git_repo: Path) -> Path:
    """The git_repo fixture checked out on a feature branch PROJ-42."""
    git(git_repo, "checkout", "-b", "PROJ-42")
    return git_repo


@pytest.fixture
def workspace_handle(branch_repo: Path) -> WorkspaceHandle:
    return WorkspaceHandle(
        path=branch_repo,
        branch_name="PROJ-42",
        item_key="PROJ-42",
        created_at=datetime(2026, 1, 15, 9, 30),
    )


@pytest.fixture
def sample_item() -> WorkItem:
    return WorkItem(
        key="PROJ-42",
        summary="Add retry to client",
        description="<issue><key>PROJ-42</key></issue>",
    )


@pytest.fixture
def make_context(branch_repo: Path) -> Callable[..., IterationContext]:
    """Factory for iteration contexts rooted in the branch repository."""

    def factory(
        iteration_index: int = 1,
        total_iterations: int = 2,
        prior_results: tuple[IterationResult, ...] = (),
        commit_mode: CommitMode = CommitMode.SINGLE_FINAL,
        backend: ReviewBackend = ReviewBackend.PULL_REQUEST,
    ) -> IterationContext:
        return IterationContext(
            item_key="PROJ-42",
            item_description="<issue><key>PROJ-42</key></issue>",
            working_directory=branch_repo,
            iteration_index=iteration_index,
            total_iterations=total_iterations,
            prior_results=prior_results,
            commit_mode=commit_mode,
            backend=backend,
            item_summary="Add retry to client",
        )

    return factory
