"""Interactive confirmation for destructive workspace operations.

The workspace manager never talks to the terminal directly. It asks an
injected ``Confirmer`` instead, so the CLI can prompt the user while tests
and ``--yes`` runs answer up front.

Key Exports:
    Confirmer: Protocol implemented by every confirmation source.
    ClickConfirmer: Prompts on the terminal, accepting only "yes".
    StaticConfirmer: Returns a fixed answer and records the prompts it saw.

Example:
    >>> confirmer = StaticConfirmer(answer=False)
    >>> await confirmer.confirm("Delete branch PROJ-42?")
    False
    >>> confirmer.prompts
    ['Delete branch PROJ-42?']
"""

import asyncio
from typing import Protocol

import click
import structlog

log = structlog.get_logger(__name__)


class Confirmer(Protocol):
    """Anything that can answer a yes/no question."""

    async def confirm(self, prompt: str) -> bool: ...


class ClickConfirmer:
    """Ask on the terminal.

    Only a literal ``yes`` (case-insensitive) confirms; anything else,
    including an empty answer, declines.
    """

    async def confirm(self, prompt: str) -> bool:
        answer = await asyncio.to_thread(click.prompt, f"{prompt} (type 'yes' to confirm)", default="", show_default=False)
        confirmed = answer.strip().lower() == "yes"
        log.debug("confirmation_answered", prompt=prompt, confirmed=confirmed)
        return confirmed


class StaticConfirmer:
    """Confirmer with a fixed answer."""

    def __init__(self, answer: bool) -> None:
        self.answer = answer
        self.prompts: list[str] = []

    async def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        return self.answer
