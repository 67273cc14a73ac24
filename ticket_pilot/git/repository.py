"""Async git operations bound to one working directory.

All git access in ticket-pilot goes through :class:`GitRepository`. Commands
run without a shell via :func:`run_command`; a failing command that must
succeed raises :class:`GitOperationError` carrying the command and stderr.
Hooks are never bypassed: no method passes ``--no-verify``.

Example:
    >>> repo = GitRepository(workspace.path)
    >>> head_before = await repo.head()
    >>> ...
    >>> changed = await repo.changed_files(since=head_before)
"""

import re
import subprocess
from pathlib import Path

import structlog

from ticket_pilot.enums import RemoteType
from ticket_pilot.exceptions import GitOperationError
from ticket_pilot.models.domain import Worktree
from ticket_pilot.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

CHANGE_ID_RE = re.compile(r"^Change-Id: I[0-9a-f]+\s*$", re.MULTILINE)
_COMMIT_SEPARATOR = "\x1e"


def detect_remote_type(remotes_output: str) -> RemoteType:
    """Classify the output of ``git remote -v``.

    ``github.com`` means GitHub. ``gerrit``, the Gerrit SSH port
    (``:29418/``) or the ``/r/`` HTTP prefix mean Gerrit.
    """
    text = remotes_output.lower()
    if "github.com" in text:
        return RemoteType.GITHUB
    if "gerrit" in text or ":29418/" in text or "/r/" in text:
        return RemoteType.GERRIT
    return RemoteType.UNKNOWN


def parse_worktree_porcelain(output: str) -> list[Worktree]:
    """Parse ``git worktree list --porcelain`` into :class:`Worktree` entries."""
    worktrees: list[Worktree] = []
    current: dict[str, object] = {}

    def flush() -> None:
        if "path" in current:
            worktrees.append(Worktree(**current))  # type: ignore[arg-type]
        current.clear()

    for line in output.splitlines():
        if not line.strip():
            flush()
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            current["path"] = Path(value)
        elif key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value.removeprefix("refs/heads/")
        elif key == "bare":
            current["bare"] = True
    flush()

    return worktrees


def parse_status_paths(output: str) -> list[str]:
    """Extract paths from ``git status --porcelain -z`` output.

    Records are NUL-separated and paths are never quoted. Renames and copies
    are followed by an extra record holding the source path, which is
    skipped; the new path is reported.
    """
    paths = []
    records = iter(output.split("\0"))
    for record in records:
        if len(record) < 4:
            continue
        status, path = record[:2], record[3:]
        if "R" in status or "C" in status:
            next(records, None)
        paths.append(path)
    return paths


class GitRepository:
    """Git commands run inside ``path``."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    async def _git(self, *args: str, check: bool = True) -> tuple[str, str, int]:
        try:
            return await run_command("git", *args, cwd=self.path, check=check)
        except subprocess.CalledProcessError as e:
            raise GitOperationError(
                f"Git command failed: git {' '.join(args)}",
                command=f"git {' '.join(args)}",
                stderr=e.stderr,
            ) from e
        except FileNotFoundError as e:
            raise GitOperationError("git executable not found", command="git") from e

    async def root(self) -> Path:
        """Top-level directory of the repository containing ``path``."""
        stdout, _, _ = await self._git("rev-parse", "--show-toplevel")
        return Path(stdout.strip())

    async def head(self) -> str | None:
        """Current HEAD commit, None in a repository without commits."""
        stdout, _, code = await self._git("rev-parse", "HEAD", check=False)
        return stdout.strip() if code == 0 else None

    async def ref_exists(self, ref: str) -> bool:
        _, _, code = await self._git("rev-parse", "--verify", "--quiet", ref, check=False)
        return code == 0

    async def branch_exists(self, branch: str) -> bool:
        return await self.ref_exists(f"refs/heads/{branch}")

    async def list_worktrees(self) -> list[Worktree]:
        stdout, _, _ = await self._git("worktree", "list", "--porcelain")
        return parse_worktree_porcelain(stdout)

    async def add_worktree(self, path: Path, branch: str, start_point: str | None = None) -> None:
        args = ["worktree", "add", str(path), "-b", branch]
        if start_point:
            args.append(start_point)
        await self._git(*args)

    async def remove_worktree(self, path: Path) -> None:
        await self._git("worktree", "remove", "--force", str(path))

    async def delete_branch(self, branch: str) -> None:
        await self._git("branch", "-D", branch)

    async def status_paths(self) -> list[str]:
        """Paths with uncommitted changes, including untracked files."""
        stdout, _, _ = await self._git("status", "--porcelain", "-z", "--untracked-files=all")
        return parse_status_paths(stdout)

    async def has_changes(self) -> bool:
        stdout, _, _ = await self._git("status", "--porcelain")
        return bool(stdout.strip())

    async def diff_names(self, from_ref: str, to_ref: str = "HEAD") -> list[str]:
        stdout, _, _ = await self._git("diff", "--name-only", "-z", f"{from_ref}..{to_ref}")
        return [name for name in stdout.split("\0") if name]

    async def snapshot(self) -> dict[str, str | None]:
        """Blob hash of every uncommitted path; None for deleted paths."""
        paths = await self.status_paths()
        digests: dict[str, str | None] = dict.fromkeys(paths)
        existing = [p for p in paths if (self.path / p).is_file()]
        if existing:
            stdout, _, _ = await self._git("hash-object", "--", *existing)
            digests.update(zip(existing, stdout.split()))
        return digests

    async def changed_files(
        self,
        since: str | None,
        before: dict[str, str | None] | None = None,
    ) -> list[str]:
        """Paths changed after ``since`` and the ``before`` snapshot.

        Uncommitted paths count only when their content differs from the
        snapshot, so edits left in the tree by an earlier run are not
        reported again. Paths touched by commits after ``since`` always
        count. Ordered, without duplicates.
        """
        before = before or {}
        after = await self.snapshot()
        paths = [p for p, digest in after.items() if p not in before or before[p] != digest]
        paths.extend(p for p in before if p not in after)
        head = await self.head()
        if since and head and head != since:
            paths.extend(await self.diff_names(since, head))
        return list(dict.fromkeys(paths))

    async def commits_ahead(self, base_ref: str) -> int:
        stdout, _, _ = await self._git("rev-list", "--count", f"{base_ref}..HEAD")
        return int(stdout.strip() or 0)

    async def commit_messages(self, base_ref: str) -> list[str]:
        """Full messages of commits ahead of ``base_ref``, oldest first."""
        stdout, _, _ = await self._git("log", "--reverse", f"--format=%B{_COMMIT_SEPARATOR}", f"{base_ref}..HEAD")
        return [message.strip() for message in stdout.split(_COMMIT_SEPARATOR) if message.strip()]

    async def add_all(self) -> None:
        await self._git("add", "-A")

    async def commit(self, message: str) -> str:
        """Commit the index with hooks enabled and return the new HEAD."""
        await self._git("commit", "-m", message)
        return await self.head() or ""

    async def amend(self) -> str:
        """Fold all outstanding changes into HEAD, keeping its message."""
        await self.add_all()
        await self._git("commit", "--amend", "--no-edit")
        return await self.head() or ""

    async def reset_soft(self, ref: str) -> None:
        await self._git("reset", "--soft", ref)

    async def push(self, *refspec: str, set_upstream: bool = False) -> None:
        args = ["push"]
        if set_upstream:
            args.append("-u")
        args.extend(["origin", *refspec])
        await self._git(*args)

    async def remotes(self) -> str:
        stdout, _, _ = await self._git("remote", "-v", check=False)
        return stdout

    async def remote_type(self) -> RemoteType:
        return detect_remote_type(await self.remotes())

    async def default_branch(self) -> str:
        """Default branch of origin.

        Tries origin/HEAD, then origin/main, and falls back to master.
        """
        stdout, _, code = await self._git("symbolic-ref", "refs/remotes/origin/HEAD", check=False)
        ref = stdout.strip()
        if code == 0 and ref.startswith("refs/remotes/origin/"):
            return ref.removeprefix("refs/remotes/origin/")

        if await self.ref_exists("origin/main"):
            return "main"
        return "master"

    async def fetch(self, branch: str) -> None:
        """Fetch one branch from origin; failures only warn."""
        _, stderr, code = await self._git("fetch", "origin", branch, check=False)
        if code != 0:
            log.warning("git_fetch_failed", branch=branch, stderr=stderr.strip())
