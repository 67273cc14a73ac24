"""Template rendering for prompts and review descriptions."""

from ticket_pilot.rendering.engine import PromptTemplateEngine, bullet_list, xml_escape

__all__ = ["PromptTemplateEngine", "bullet_list", "xml_escape"]
