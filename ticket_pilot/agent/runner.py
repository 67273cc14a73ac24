"""Agent runners: spawn the coding agent and stream its events."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol

import structlog

from ticket_pilot.agent.events import AgentEvent, AuthStatusEvent, ResultEvent, parse_stream_line
from ticket_pilot.config.settings import AgentConfig
from ticket_pilot.exceptions import AgentError, ProviderConnectionError

log = structlog.get_logger(__name__)

# stream-json lines carry whole tool results
STREAM_LIMIT = 16 * 1024 * 1024


class AgentRunner(Protocol):
    """The coding agent capability."""

    def run(self, working_directory: Path, turn_budget: int, prompt: str) -> AsyncIterator[AgentEvent]: ...


class ClaudeCodeRunner:
    """Runs the Claude Code CLI in print mode with stream-json output.

    The prompt is passed on stdin to avoid argument length limits.
    """

    def __init__(self, config: AgentConfig) -> None:
        self.config = config

    def build_command(self, turn_budget: int) -> list[str]:
        cmd = [
            self.config.command,
            "--print",
            "--verbose",
            "--output-format",
            "stream-json",
            "--max-turns",
            str(turn_budget),
            "--permission-mode",
            self.config.permission_mode,
        ]
        if self.config.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(self.config.allowed_tools)])
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return cmd

    async def run(self, working_directory: Path, turn_budget: int, prompt: str) -> AsyncIterator[AgentEvent]:
        """Yield events while the agent works.

        Raises:
            ProviderConnectionError: The agent executable is not installed.
            AgentError: The process exited abnormally without a result or an
                authentication error event.
        """
        cmd = self.build_command(turn_budget)
        log.debug("running_agent", cwd=str(working_directory), turns=turn_budget, prompt_length=len(prompt))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=working_directory,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise ProviderConnectionError(
                f"{self.config.command} CLI not found in PATH",
                suggestion="Install Claude Code: npm install -g @anthropic-ai/claude-code",
                agent_type=self.config.command,
            ) from e

        assert process.stdin is not None
        assert process.stdout is not None
        assert process.stderr is not None

        stderr_task = asyncio.create_task(process.stderr.read())
        saw_result = False
        saw_auth_error = False
        try:
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()

            async for raw in process.stdout:
                for event in parse_stream_line(raw.decode("utf-8", errors="replace")):
                    if isinstance(event, ResultEvent):
                        saw_result = True
                    elif isinstance(event, AuthStatusEvent) and event.error:
                        saw_auth_error = True
                    yield event

            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        log.info(
            "agent_process_exited",
            returncode=returncode,
            saw_result=saw_result,
            saw_auth_error=saw_auth_error,
        )
        # A reported auth failure is folded into an unsuccessful result.
        if returncode != 0 and not saw_result and not saw_auth_error:
            raise AgentError(
                f"Agent exited without a result: {stderr.strip()[:500] or 'no error output'}",
                agent_type=self.config.command,
                exit_code=returncode,
            )
