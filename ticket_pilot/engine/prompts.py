"""Prompt and review text generation.

Every text the pipeline hands to the agent or to the review backend is
rendered here from the templates in ``ticket_pilot/templates/prompts``.
The functions are pure: same inputs, same text.
"""

import re
from collections.abc import Sequence
from functools import lru_cache

from ticket_pilot.models.domain import (
    IterationContext,
    IterationResult,
    RemoteIterationContext,
    WorkItem,
)
from ticket_pilot.rendering.engine import PromptTemplateEngine
from ticket_pilot.safety.gate import union_of_modified_files

STATUS_RE = re.compile(r"^\s*\**STATUS:?\**\s*:?\s*(RESOLVED|NEEDS_WORK)\b", re.IGNORECASE | re.MULTILINE)
REVIEW_NOTES_RE = re.compile(r"^\s*\**REVIEW NOTES:?\**\s*:?\s*(.*)", re.IGNORECASE | re.MULTILINE | re.DOTALL)


@lru_cache(maxsize=1)
def _engine() -> PromptTemplateEngine:
    return PromptTemplateEngine()


def format_item_description(key: str, summary: str, description: str | None) -> str:
    """XML-wrapped, escaped rendering of a work item for prompts."""
    return _engine().render(
        "prompts/item.xml.j2",
        {"key": key, "summary": summary, "description": (description or "").strip()},
    )


def generate_iteration_prompt(context: IterationContext) -> str:
    """Prompt for one local iteration.

    The first iteration implements; later iterations review the earlier
    work, stop when the item is resolved, and fix critical issues only.
    """
    values = {
        "item_key": context.item_key,
        "item_description": context.item_description,
        "working_directory": str(context.working_directory),
        "iteration_index": context.iteration_index,
        "total_iterations": context.total_iterations,
        "commit_mode": context.commit_mode.value,
        "backend": context.backend.value,
        "prior_results": context.prior_results,
        "changed_files": union_of_modified_files(context.prior_results),
    }
    template = "prompts/iteration_implement.md.j2" if context.is_first else "prompts/iteration_review.md.j2"
    return _engine().render(template, values)


def generate_remote_prompt(context: RemoteIterationContext) -> str:
    """Prompt for one remote build fix iteration."""
    return _engine().render(
        "prompts/remote_fix.md.j2",
        {
            "item_key": context.item_key,
            "working_directory": str(context.working_directory),
            "iteration_index": context.iteration_index,
            "total_iterations": context.total_iterations,
            "backend": context.backend.value,
            "prior_attempts": context.prior_attempts,
            "build_failure_output": context.build_failure_output.strip(),
        },
    )


def generate_pr_title(item: WorkItem) -> str:
    return f"feat: {item.key} - {item.summary}"


def generate_pr_description(item: WorkItem, results: Sequence[IterationResult]) -> str:
    return _engine().render(
        "prompts/pr_description.md.j2",
        {
            "item_key": item.key,
            "summary": item.summary,
            "total_iterations": len(results),
            "successful_iterations": sum(1 for r in results if r.success),
            "files": union_of_modified_files(results),
        },
    )


def parse_closing_assessment(text: str) -> tuple[bool, str | None]:
    """Read ``STATUS:`` and ``REVIEW NOTES:`` from the agent's final message.

    The last ``STATUS`` line wins. A missing status means not resolved.

    Returns:
        Tuple of (item_resolved, review_notes).
    """
    statuses = STATUS_RE.findall(text or "")
    resolved = bool(statuses) and statuses[-1].upper() == "RESOLVED"

    notes = None
    match = REVIEW_NOTES_RE.search(text or "")
    if match:
        notes = STATUS_RE.split(match.group(1))[0].strip() or None
    return resolved, notes
