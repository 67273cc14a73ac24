"""Tests for ticket_pilot.git.repository."""

from pathlib import Path

import pytest
from conftest import git, write_file

from ticket_pilot.enums import RemoteType
from ticket_pilot.exceptions import GitOperationError
from ticket_pilot.git.repository import (
    GitRepository,
    detect_remote_type,
    parse_status_paths,
    parse_worktree_porcelain,
)


class TestDetectRemoteType:
    """Test remote classification from ``git remote -v``."""

    @pytest.mark.parametrize(
        ("output", "expected"),
        [
            ("origin\tgit@github.com:acme/app.git (fetch)", RemoteType.GITHUB),
            ("origin\thttps://github.com/acme/app.git (push)", RemoteType.GITHUB),
            ("origin\tssh://dev@review.acme.io:29418/app (fetch)", RemoteType.GERRIT),
            ("origin\thttps://gerrit.acme.io/app (fetch)", RemoteType.GERRIT),
            ("origin\thttps://review.acme.io/r/app (fetch)", RemoteType.GERRIT),
            ("origin\thttps://gitlab.com/acme/app.git (fetch)", RemoteType.UNKNOWN),
            ("", RemoteType.UNKNOWN),
        ],
    )
    def test_detect(self, output, expected):
        assert detect_remote_type(output) == expected

    def test_unknown_maps_to_pull_request(self):
        assert str(RemoteType.UNKNOWN.to_backend()) == "pull-request"
        assert str(RemoteType.GERRIT.to_backend()) == "gate"


class TestParsers:
    """Test porcelain parsers."""

    def test_parse_worktree_porcelain(self):
        output = (
            "worktree /repo\nHEAD abc123\nbranch refs/heads/main\n\n"
            "worktree /wt/2024-05-01-PROJ-1\nHEAD def456\nbranch refs/heads/PROJ-1\n\n"
            "worktree /wt/detached\nHEAD 789abc\ndetached\n"
        )

        worktrees = parse_worktree_porcelain(output)

        assert [wt.path for wt in worktrees] == [Path("/repo"), Path("/wt/2024-05-01-PROJ-1"), Path("/wt/detached")]
        assert worktrees[1].branch == "PROJ-1"
        assert worktrees[1].head == "def456"
        assert worktrees[2].branch is None

    def test_parse_bare_entry(self):
        worktrees = parse_worktree_porcelain("worktree /srv/repo.git\nbare\n")

        assert worktrees[0].bare is True

    def test_parse_status_paths(self):
        output = " M src/app.py\0?? new file.txt\0R  renamed.py\0old.py\0A  café.py\0"

        assert parse_status_paths(output) == ["src/app.py", "new file.txt", "renamed.py", "café.py"]

    def test_parse_status_paths_copy_with_short_source(self):
        assert parse_status_paths("C  b.py\0a\0 D gone.py\0") == ["b.py", "gone.py"]


class TestGitRepository:
    """Test GitRepository against a real repository."""

    @pytest.mark.asyncio
    async def test_root_and_head(self, git_repo):
        repo = GitRepository(git_repo / "src")

        assert (await repo.root()).resolve() == git_repo.resolve()
        assert await repo.head() == git(git_repo, "rev-parse", "HEAD")

    @pytest.mark.asyncio
    async def test_head_is_none_without_commits(self, tmp_path):
        empty = tmp_path / "empty"
        empty.mkdir()
        git(empty, "init")

        assert await GitRepository(empty).head() is None

    @pytest.mark.asyncio
    async def test_failed_command_raises_git_operation_error(self, git_repo):
        with pytest.raises(GitOperationError) as exc_info:
            await GitRepository(git_repo).delete_branch("no-such-branch")

        assert exc_info.value.command == "git branch -D no-such-branch"
        assert exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_branch_and_ref_exists(self, git_repo):
        repo = GitRepository(git_repo)

        assert await repo.branch_exists("main")
        assert not await repo.branch_exists("PROJ-1")
        assert await repo.ref_exists("origin/main")

    @pytest.mark.asyncio
    async def test_status_and_changed_files(self, git_repo):
        repo = GitRepository(git_repo)
        before = await repo.head()
        write_file(git_repo, "src/committed.py")
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-m", "agent commit")
        write_file(git_repo, "docs/notes/new.md")
        write_file(git_repo, "src/app.py", "def main():\n    return 2\n")

        assert await repo.has_changes()
        assert sorted(await repo.status_paths()) == ["docs/notes/new.md", "src/app.py"]
        assert sorted(await repo.changed_files(since=before)) == ["docs/notes/new.md", "src/app.py", "src/committed.py"]

    @pytest.mark.asyncio
    async def test_changed_files_deduplicates(self, git_repo):
        repo = GitRepository(git_repo)
        before = await repo.head()
        write_file(git_repo, "src/app.py", "v2\n")
        git(git_repo, "commit", "-am", "v2")
        write_file(git_repo, "src/app.py", "v3\n")

        assert await repo.changed_files(since=before) == ["src/app.py"]

    @pytest.mark.asyncio
    async def test_changed_files_against_snapshot(self, git_repo):
        repo = GitRepository(git_repo)
        write_file(git_repo, "left.py", "from an earlier run\n")
        write_file(git_repo, "edited.py", "v1\n")
        write_file(git_repo, "reverted.py", "temporary\n")
        head = await repo.head()
        snapshot = await repo.snapshot()

        write_file(git_repo, "edited.py", "v2\n")
        (git_repo / "reverted.py").unlink()
        (git_repo / "README.md").unlink()

        changed = await repo.changed_files(since=head, before=snapshot)

        assert sorted(changed) == ["README.md", "edited.py", "reverted.py"]
        assert snapshot["left.py"] is not None

    @pytest.mark.asyncio
    async def test_non_ascii_paths_are_not_quoted(self, git_repo):
        repo = GitRepository(git_repo)
        write_file(git_repo, "src/café.py", "v1\n")
        head = await repo.head()
        snapshot = await repo.snapshot()

        assert await repo.status_paths() == ["src/café.py"]
        assert snapshot["src/café.py"] is not None

        write_file(git_repo, "src/café.py", "v2\n")
        assert await repo.changed_files(since=head, before=snapshot) == ["src/café.py"]

        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-m", "add café")
        assert await repo.diff_names(head) == ["src/café.py"]

    @pytest.mark.asyncio
    async def test_commits_ahead_and_messages(self, git_repo):
        repo = GitRepository(git_repo)
        for n in (1, 2):
            write_file(git_repo, f"f{n}.py")
            git(git_repo, "add", "-A")
            git(git_repo, "commit", "-m", f"commit {n}\n\nbody {n}")

        assert await repo.commits_ahead("origin/main") == 2
        assert await repo.commit_messages("origin/main") == ["commit 1\n\nbody 1", "commit 2\n\nbody 2"]

    @pytest.mark.asyncio
    async def test_commit_and_amend(self, git_repo):
        repo = GitRepository(git_repo)
        write_file(git_repo, "a.py")
        await repo.add_all()
        first = await repo.commit("feat: a")

        write_file(git_repo, "b.py")
        amended = await repo.amend()

        assert amended != first
        assert await repo.commits_ahead("origin/main") == 1
        assert git(git_repo, "log", "-1", "--format=%s") == "feat: a"
        assert not await repo.has_changes()

    @pytest.mark.asyncio
    async def test_reset_soft_keeps_changes_staged(self, git_repo):
        repo = GitRepository(git_repo)
        write_file(git_repo, "a.py")
        await repo.add_all()
        await repo.commit("feat: a")

        await repo.reset_soft("origin/main")

        assert await repo.commits_ahead("origin/main") == 0
        assert await repo.status_paths() == ["a.py"]

    @pytest.mark.asyncio
    async def test_push_branch(self, git_repo, origin_repo):
        repo = GitRepository(git_repo)
        git(git_repo, "checkout", "-b", "PROJ-5")
        write_file(git_repo, "a.py")
        await repo.add_all()
        head = await repo.commit("feat: a")

        await repo.push("PROJ-5:PROJ-5", set_upstream=True)

        assert git(origin_repo, "rev-parse", "PROJ-5") == head

    @pytest.mark.asyncio
    async def test_default_branch(self, git_repo):
        repo = GitRepository(git_repo)

        assert await repo.default_branch() == "main"

        git(git_repo, "remote", "set-head", "origin", "main")
        assert await repo.default_branch() == "main"

    @pytest.mark.asyncio
    async def test_default_branch_falls_back_to_master(self, tmp_path):
        lonely = tmp_path / "lonely"
        lonely.mkdir()
        git(lonely, "init")

        assert await GitRepository(lonely).default_branch() == "master"

    @pytest.mark.asyncio
    async def test_remote_type_of_local_origin(self, git_repo):
        assert await GitRepository(git_repo).remote_type() == RemoteType.UNKNOWN

    @pytest.mark.asyncio
    async def test_fetch_failure_only_warns(self, git_repo):
        await GitRepository(git_repo).fetch("no-such-branch")
