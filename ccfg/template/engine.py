"""Jinja2 template engine wrapper for section templates."""

from pathlib import Path
from typing import Any

from jinja2 import (
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
    TemplateSyntaxError,
    UndefinedError,
)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
SECTIONS_SUBDIR = "sections"
USER_TEMPLATE = "user-claude.md"


class TemplateRenderError(Exception):
    """Error rendering a template."""

    def __init__(self, message: str, source: str | None = None, line: int | None = None):
        self.source = source
        self.line = line
        super().__init__(message)


class TemplateEngine:
    """Jinja2-based engine for the bundled CLAUDE.md section templates.

    Templates are Markdown files under ``templates/``; section templates
    live in ``templates/sections/<tag>.md``. Undefined variables are errors
    so a typo in a template never renders as an empty string.
    """

    def __init__(self, templates_dir: Path = TEMPLATES_DIR) -> None:
        """Initialize the template engine.

        Args:
            templates_dir: Directory holding the templates
        """
        self.templates_dir = templates_dir
        self._env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,  # Markdown output
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._env.tests["windows"] = lambda x: x == "windows"
        self._env.tests["macos"] = lambda x: x == "macos"
        self._env.tests["unix"] = lambda x: x in ("linux", "macos")

    def has_section(self, tag: str) -> bool:
        return (self.templates_dir / SECTIONS_SUBDIR / f"{tag}.md").is_file()

    def available_sections(self) -> list[str]:
        """Tags with a bundled section template, sorted."""
        directory = self.templates_dir / SECTIONS_SUBDIR
        if not directory.is_dir():
            return []
        return sorted(p.stem for p in directory.glob("*.md"))

    def render_string(self, template_str: str, context: dict[str, Any]) -> str:
        """Render a template string.

        Args:
            template_str: Template content with Jinja2 syntax
            context: Context dictionary for variable substitution

        Returns:
            Rendered template string

        Raises:
            TemplateRenderError: If rendering fails
        """
        try:
            template = self._env.from_string(template_str)
            return template.render(context)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Template syntax error: {e.message}",
                source=template_str[:100],
                line=e.lineno,
            ) from e
        except UndefinedError as e:
            raise TemplateRenderError(
                f"Undefined variable in template: {e}",
                source=template_str[:100],
            ) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Template error: {e}") from e

    def render_template(self, name: str, context: dict[str, Any]) -> str:
        """Render a named template relative to the templates directory.

        Args:
            name: Template path, e.g. "sections/python.md"
            context: Context dictionary

        Returns:
            Rendered content

        Raises:
            TemplateRenderError: If the template is missing or fails to render
        """
        try:
            template = self._env.get_template(name)
        except TemplateNotFound as e:
            raise TemplateRenderError(f"Template not found: {name}", source=name) from e
        except TemplateSyntaxError as e:
            raise TemplateRenderError(
                f"Error rendering {name}: {e.message}", source=name, line=e.lineno
            ) from e

        try:
            return template.render(context)
        except UndefinedError as e:
            raise TemplateRenderError(f"Error rendering {name}: undefined variable {e}", source=name) from e
        except TemplateError as e:
            raise TemplateRenderError(f"Error rendering {name}: {e}", source=name) from e

    def render_section(self, tag: str, context: dict[str, Any]) -> str:
        """Render the section template for a tag."""
        return self.render_template(f"{SECTIONS_SUBDIR}/{tag}.md", context)

    def render_user(self, context: dict[str, Any]) -> str:
        """Render the user-level best-practices template."""
        return self.render_template(USER_TEMPLATE, context)
