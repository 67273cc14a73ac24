"""Typed events emitted by the coding agent, and the fold over them.

The agent CLI streams one JSON object per line (``--output-format
stream-json``). :func:`parse_stream_line` turns each line into zero or more
events from a closed set; :func:`apply_event` is a pure reducer that folds
one event into an :class:`AgentRunState`. Nothing here performs I/O.

Example:
    >>> state = fold_events([TextEvent("Done."), ResultEvent(subtype="success", result="Done.")])
    >>> state.succeeded
    True
"""

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any, Union

import structlog

log = structlog.get_logger(__name__)

RESULT_SUCCESS = "success"
RESULT_ERROR_MAX_TURNS = "error_max_turns"
RESULT_ERROR_DURING_EXECUTION = "error_during_execution"


@dataclass(frozen=True)
class TextEvent:
    """Assistant text. Partial events are streaming deltas of a later full message."""

    text: str
    partial: bool = False


@dataclass(frozen=True)
class ToolProgressEvent:
    tool_name: str


@dataclass(frozen=True)
class SystemEvent:
    subtype: str | None = None


@dataclass(frozen=True)
class ResultEvent:
    """Final event of a run."""

    subtype: str
    result: str | None = None
    errors: tuple[str, ...] = ()
    num_turns: int | None = None
    cost_usd: float | None = None

    @property
    def is_success(self) -> bool:
        return self.subtype == RESULT_SUCCESS


@dataclass(frozen=True)
class AuthStatusEvent:
    error: str | None = None


AgentEvent = Union[TextEvent, ToolProgressEvent, SystemEvent, ResultEvent, AuthStatusEvent]


@dataclass(frozen=True)
class AgentRunState:
    """Accumulated view of one agent run."""

    text_chunks: tuple[str, ...] = ()
    tools_used: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    result: ResultEvent | None = None
    compactions: int = 0
    auth_failed: bool = False

    @property
    def succeeded(self) -> bool:
        """The run produced a successful result and never failed to authenticate."""
        return self.result is not None and self.result.is_success and not self.auth_failed

    @property
    def final_text(self) -> str:
        """The agent's final answer, falling back to everything it said."""
        if self.result is not None and self.result.result:
            return self.result.result
        return "\n".join(self.text_chunks)


def _on_text(state: AgentRunState, event: TextEvent) -> AgentRunState:
    if event.partial or not event.text:
        return state
    return replace(state, text_chunks=(*state.text_chunks, event.text))


def _on_tool_progress(state: AgentRunState, event: ToolProgressEvent) -> AgentRunState:
    return replace(state, tools_used=(*state.tools_used, event.tool_name))


def _on_system(state: AgentRunState, event: SystemEvent) -> AgentRunState:
    if event.subtype == "compact_boundary":
        return replace(state, compactions=state.compactions + 1)
    return state


def _on_result(state: AgentRunState, event: ResultEvent) -> AgentRunState:
    errors = state.errors
    if event.subtype == RESULT_ERROR_MAX_TURNS:
        errors = (*errors, "Maximum turns exceeded")
    elif event.subtype == RESULT_ERROR_DURING_EXECUTION:
        errors = (*errors, "Error during execution", *event.errors)
    elif not event.is_success:
        errors = (*errors, f"Agent reported {event.subtype}", *event.errors)
    return replace(state, result=event, errors=errors)


def _on_auth_status(state: AgentRunState, event: AuthStatusEvent) -> AgentRunState:
    if not event.error:
        return state
    return replace(state, auth_failed=True, errors=(*state.errors, f"Authentication failed: {event.error}"))


_HANDLERS: dict[type, Callable[[AgentRunState, Any], AgentRunState]] = {
    TextEvent: _on_text,
    ToolProgressEvent: _on_tool_progress,
    SystemEvent: _on_system,
    ResultEvent: _on_result,
    AuthStatusEvent: _on_auth_status,
}


def apply_event(state: AgentRunState, event: AgentEvent) -> AgentRunState:
    """Fold one event into the state."""
    return _HANDLERS[type(event)](state, event)


def fold_events(events: Iterable[AgentEvent], initial: AgentRunState | None = None) -> AgentRunState:
    """Fold a whole event stream left to right."""
    state = initial or AgentRunState()
    for event in events:
        state = apply_event(state, event)
    return state


def parse_message(message: dict[str, Any]) -> list[AgentEvent]:
    """Map one decoded stream-json message to events.

    Unknown message types yield no events.
    """
    message_type = message.get("type")

    if message_type == "assistant":
        events: list[AgentEvent] = []
        content = (message.get("message") or {}).get("content") or []
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text":
                events.append(TextEvent(text=block.get("text", "")))
            elif block.get("type") == "tool_use":
                events.append(ToolProgressEvent(tool_name=block.get("name", "unknown")))
        return events

    if message_type == "stream_event":
        event = message.get("event") or {}
        delta = event.get("delta") or {}
        if event.get("type") == "content_block_delta" and delta.get("type") == "text_delta":
            return [TextEvent(text=delta.get("text", ""), partial=True)]
        return []

    if message_type == "system":
        return [SystemEvent(subtype=message.get("subtype"))]

    if message_type == "result":
        return [
            ResultEvent(
                subtype=message.get("subtype", "unknown"),
                result=message.get("result"),
                errors=tuple(str(e) for e in message.get("errors") or ()),
                num_turns=message.get("num_turns"),
                cost_usd=message.get("total_cost_usd"),
            )
        ]

    if message_type == "tool_progress":
        return [ToolProgressEvent(tool_name=message.get("tool_name", "unknown"))]

    if message_type == "auth_status":
        return [AuthStatusEvent(error=message.get("error"))]

    log.debug("agent_message_ignored", message_type=message_type)
    return []


def parse_stream_line(line: str) -> list[AgentEvent]:
    """Parse one line of stream-json output. Non-JSON lines yield no events."""
    line = line.strip()
    if not line:
        return []
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        log.debug("agent_output_not_json", line=line[:200])
        return []
    if not isinstance(message, dict):
        return []
    return parse_message(message)
