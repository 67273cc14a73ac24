"""Build monitor: polls the project's remote build until it settles.

The project supplies two shell commands:

- ``checkBuildStatus`` prints ``{"state": "pending|running|success|failure"}``
- ``checkBuildFailures`` prints failure diagnostics

Exit codes of both commands are signals, not errors: a status command that
exits non-zero but prints a valid state is believed, and diagnostics are
returned verbatim whatever the exit code.
"""

import asyncio
import json
import math
from collections.abc import Awaitable, Callable
from pathlib import Path

import structlog

from ticket_pilot.config.project import ProjectConfig
from ticket_pilot.config.settings import BuildConfig
from ticket_pilot.enums import BuildState
from ticket_pilot.exceptions import BuildStatusError, BuildTimeoutError, ConfigurationError
from ticket_pilot.models.domain import BuildCheckResult, BuildStatus
from ticket_pilot.utils.async_subprocess import run_shell_command

log = structlog.get_logger(__name__)

NO_FAILURE_LOGS = "No failure logs available"


def parse_build_status(raw: str) -> BuildStatus:
    """Parse the output of the status command.

    Raises:
        BuildStatusError: Output is not a JSON object with a known state.
    """
    text = raw.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise BuildStatusError(f"checkBuildStatus returned invalid JSON: {e}", raw=raw) from e

    state = parsed.get("state") if isinstance(parsed, dict) else None
    try:
        return BuildStatus(state=BuildState(state), raw=text)
    except ValueError as e:
        raise BuildStatusError(
            f"Invalid build state: {state}. Expected: pending, running, success, or failure",
            raw=raw,
        ) from e


class BuildMonitor:
    """Polls one workspace's build.

    Attributes:
        project: Project configuration holding the build commands.
        working_directory: Workspace the commands run in.
        config: Poll interval, maximum wait and malformed-output tolerance.
    """

    def __init__(
        self,
        project: ProjectConfig,
        working_directory: Path,
        config: BuildConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.project = project
        self.working_directory = Path(working_directory)
        self.config = config or BuildConfig()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return max(1, math.ceil(self.config.max_wait_minutes * 60 / self.config.poll_interval_seconds))

    async def check_status(self) -> BuildStatus:
        """Run the status command once and parse its state.

        Raises:
            ConfigurationError: No status command is configured.
            BuildStatusError: The output cannot be interpreted.
        """
        if not self.project.check_build_status:
            raise ConfigurationError("No checkBuildStatus configured in .ticketpilot.json")

        stdout, stderr, code = await run_shell_command(
            self.project.check_build_status,
            cwd=self.working_directory,
            check=False,
        )
        if code != 0:
            log.debug("build_status_nonzero_exit", code=code, stderr=stderr.strip())
        return parse_build_status(stdout)

    async def fetch_failures(self) -> str:
        """Run the diagnostics command once and return its combined output.

        Raises:
            ConfigurationError: No diagnostics command is configured.
        """
        if not self.project.check_build_failures:
            raise ConfigurationError("No checkBuildFailures configured in .ticketpilot.json")

        log.info("build_failures_fetching", command=self.project.check_build_failures)
        stdout, stderr, code = await run_shell_command(
            self.project.check_build_failures,
            cwd=self.working_directory,
            check=False,
        )
        output = f"{stdout}\n{stderr}".strip()
        log.debug("build_failures_fetched", code=code, length=len(output))
        return output or NO_FAILURE_LOGS

    async def poll(self) -> BuildCheckResult:
        """Poll until the build succeeds or fails.

        Sleeps only between polls, never after a terminal state.

        Raises:
            BuildTimeoutError: No terminal state within ``max_wait_minutes``.
            BuildStatusError: Unparseable output more often in a row than
                ``malformed_poll_retries`` allows.
        """
        malformed = 0
        interval = self.config.poll_interval_seconds

        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self.check_status()
            except BuildStatusError as e:
                malformed += 1
                if malformed > self.config.malformed_poll_retries:
                    raise
                log.warning(
                    "build_status_malformed",
                    attempt=attempt,
                    error=e.message,
                    retries_left=self.config.malformed_poll_retries - malformed,
                )
            else:
                malformed = 0
                if status.state.is_terminal:
                    if status.state == BuildState.SUCCESS:
                        log.info("build_passed", polls=attempt)
                        return BuildCheckResult(passed=True, output="", polls=attempt)
                    log.info("build_failed", polls=attempt)
                    return BuildCheckResult(passed=False, output=await self.fetch_failures(), polls=attempt)
                log.info("build_waiting", state=str(status.state), elapsed_seconds=attempt * interval)

            if attempt < self.max_attempts:
                await self._sleep(interval)

        raise BuildTimeoutError(self.config.max_wait_minutes)
