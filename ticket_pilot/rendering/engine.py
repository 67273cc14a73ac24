"""Sandboxed Jinja2 rendering for agent prompts and review descriptions.

Prompts embed text from the issue tracker and from build logs. Rendering
happens in Jinja2's SandboxedEnvironment with StrictUndefined so a template
can neither execute code nor silently drop a missing variable.

Key Exports:
    PromptTemplateEngine: Loads and renders templates from a directory.
    xml_escape: Filter escaping ``& < > " '``.

Example:
    >>> engine = PromptTemplateEngine()
    >>> engine.render("prompts/item.xml.j2", {"key": "PROJ-1", "summary": "x", "description": ""})
"""

from pathlib import Path
from typing import Any, cast

from jinja2 import FileSystemLoader, StrictUndefined, TemplateNotFound
from jinja2.sandbox import SandboxedEnvironment

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}


def xml_escape(value: Any) -> str:
    """Escape the five XML special characters."""
    text = "" if value is None else str(value)
    return "".join(_XML_ESCAPES.get(char, char) for char in text)


def bullet_list(items: Any) -> str:
    """Render an iterable as ``- item`` lines."""
    return "\n".join(f"- {item}" for item in items)


class PromptTemplateEngine:
    """Jinja2 engine over the package's prompt templates.

    Configuration:
        - Autoescape disabled (prompts are plain text)
        - trim_blocks/lstrip_blocks enabled so block tags leave no gaps

    Attributes:
        template_dir: Resolved path to the template directory.
        env: The SandboxedEnvironment instance.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        """Initialize the engine.

        Args:
            template_dir: Root directory for templates. Defaults to the
                templates shipped with the package.

        Raises:
            ValueError: If template_dir doesn't exist or isn't a directory.
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates"

        self.template_dir = template_dir.resolve()
        if not self.template_dir.is_dir():
            raise ValueError(f"Template directory does not exist: {self.template_dir}")

        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )
        self.env.filters.update(
            {
                "xml_escape": xml_escape,
                "bullet_list": bullet_list,
            }
        )

    def validate_template_path(self, template_path: str) -> Path:
        """Resolve a template path, refusing anything outside template_dir.

        Raises:
            ValueError: If the path escapes the template directory.
            TemplateNotFound: If the template file doesn't exist.
        """
        requested_path = (self.template_dir / template_path).resolve()
        try:
            requested_path.relative_to(self.template_dir)
        except ValueError as e:
            raise ValueError(f"Template path escapes template directory: {template_path}") from e

        if not requested_path.exists():
            raise TemplateNotFound(template_path)
        return requested_path

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a template with the given context.

        Raises:
            TemplateNotFound: If template doesn't exist.
            jinja2.UndefinedError: If the template uses an undefined variable.
        """
        self.validate_template_path(template_path)
        template = self.env.get_template(template_path)
        return cast(str, template.render(**context))

    def list_templates(self, pattern: str = "**/*.j2") -> list[str]:
        """Template paths matching a glob, relative to template_dir."""
        return sorted(
            str(path.relative_to(self.template_dir)) for path in self.template_dir.glob(pattern) if path.is_file()
        )
