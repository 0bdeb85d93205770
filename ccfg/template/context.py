"""Template context builder for section templates."""

from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ccfg import __version__
from ccfg.utils.platform import get_arch, get_os


class TemplateContext:
    """Builder for the context used to render section templates.

    Templates see ``project_name``, ``tags``, ``version`` and ``os`` at the
    top level, plus a ``platform`` mapping.
    """

    def __init__(self) -> None:
        self._context: dict[str, Any] = {"version": __version__, "tags": []}

    def with_platform(self) -> "TemplateContext":
        """Add platform information to the context.

        Adds:
        - os: "windows" | "linux" | "macos"
        - platform.os, platform.arch
        """
        os_name = get_os()
        self._context["os"] = os_name
        self._context["platform"] = {"os": os_name, "arch": get_arch()}
        return self

    def with_project(self, project_root: Path, project_name: str | None = None) -> "TemplateContext":
        """Add project information to the context.

        Args:
            project_root: Path to the project root directory
            project_name: Optional project name (defaults to directory name)
        """
        self._context["project_name"] = project_name or project_root.resolve().name
        self._context["project_root"] = str(project_root)
        return self

    def with_tags(self, tags: Iterable[str]) -> "TemplateContext":
        self._context["tags"] = list(tags)
        return self

    def with_custom(self, key: str, value: Any) -> "TemplateContext":
        """Add a custom value to the context.

        Args:
            key: Context key
            value: Value to add

        Returns:
            Self for chaining
        """
        self._context[key] = value
        return self

    def build(self) -> dict[str, Any]:
        """Return a copy of the context dictionary."""
        return dict(self._context)


def build_context(project_root: Path, tags: Iterable[str], project_name: str | None = None) -> dict[str, Any]:
    """Build the standard context for rendering a project's sections."""
    return (
        TemplateContext()
        .with_platform()
        .with_project(project_root, project_name)
        .with_tags(tags)
        .build()
    )
