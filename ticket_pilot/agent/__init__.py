"""Coding agent integration.

Key Components:
    - AgentRunner: Protocol for anything that turns a prompt into events
    - ClaudeCodeRunner: Claude Code CLI in stream-json mode
    - AgentEvent: TextEvent, ToolProgressEvent, SystemEvent, ResultEvent, AuthStatusEvent
    - fold_events / apply_event: Pure reduction of events into AgentRunState
"""

from ticket_pilot.agent.events import (
    AgentEvent,
    AgentRunState,
    AuthStatusEvent,
    ResultEvent,
    SystemEvent,
    TextEvent,
    ToolProgressEvent,
    apply_event,
    fold_events,
    parse_message,
    parse_stream_line,
)
from ticket_pilot.agent.runner import AgentRunner, ClaudeCodeRunner

__all__ = [
    "AgentEvent",
    "AgentRunState",
    "AgentRunner",
    "AuthStatusEvent",
    "ClaudeCodeRunner",
    "ResultEvent",
    "SystemEvent",
    "TextEvent",
    "ToolProgressEvent",
    "apply_event",
    "fold_events",
    "parse_message",
    "parse_stream_line",
]
