"""Async subprocess utilities.

Every external process the pipeline touches (git, gh, project commands, the
agent CLI) goes through this module, so each call is an ``await`` point and
nothing blocks the event loop.

This module offers two functions:
    - run_command: Execute commands with list arguments (no shell)
    - run_shell_command: Execute a shell command string via ``sh -c``

Example:
    >>> from ticket_pilot.utils.async_subprocess import run_command
    >>> stdout, stderr, code = await run_command("git", "status", cwd="/repo")
    >>> if code == 0:
    ...     print(stdout)
"""

import asyncio
import subprocess
from pathlib import Path


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    capture_output: bool = True,
) -> tuple[str, str, int]:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Command and arguments as separate strings.
            Example: "git", "commit", "-m", "message"
        cwd: Working directory for command execution.
        check: If True (default), raise CalledProcessError when the command
            returns a non-zero exit code.
        timeout: Maximum seconds to wait for completion. The process is
            killed and TimeoutError raised when exceeded.
        capture_output: If False, output goes to the parent's stdout/stderr
            and the returned strings are empty.

    Returns:
        Tuple of (stdout, stderr, return_code), decoded as UTF-8 with
        replacement for invalid bytes.

    Raises:
        subprocess.CalledProcessError: If check=True and the command fails.
        TimeoutError: If timeout is exceeded.
        FileNotFoundError: If the executable is not found.
    """
    process = await asyncio.create_subprocess_exec(
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE if capture_output else None,
        stderr=asyncio.subprocess.PIPE if capture_output else None,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")

    if check and process.returncode != 0:
        raise subprocess.CalledProcessError(
            process.returncode,
            args,
            stdout,
            stderr,
        )

    return stdout, stderr, process.returncode or 0


async def run_shell_command(
    command: str,
    *,
    cwd: Path | str | None = None,
    check: bool = True,
    timeout: float | None = None,
    capture_output: bool = True,
    shell: str = "sh",
) -> tuple[str, str, int]:
    """Run a shell command string asynchronously.

    The command is passed as a single argument to ``<shell> -c`` so no
    additional interpolation happens on our side. Commands come from trusted
    project configuration.

    Args:
        command: Complete shell command string to execute.
        cwd: Working directory for command execution.
        check: If True (default), raise CalledProcessError on non-zero exit.
        timeout: Maximum seconds to wait. Process is killed if exceeded.
        capture_output: If False, output goes to parent's stdout/stderr.
        shell: Shell executable used to interpret the command.

    Returns:
        Tuple of (stdout, stderr, return_code).

    Raises:
        subprocess.CalledProcessError: If check=True and command fails.
        TimeoutError: If timeout is exceeded.
    """
    stdout, stderr, code = await run_command(
        shell,
        "-c",
        command,
        cwd=cwd,
        check=False,
        timeout=timeout,
        capture_output=capture_output,
    )

    if check and code != 0:
        raise subprocess.CalledProcessError(code, command, stdout, stderr)

    return stdout, stderr, code

