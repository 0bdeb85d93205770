"""Marker-based section management for CLAUDE.md files.

Managed content is wrapped in versioned HTML comment markers so it can be
inserted and updated without touching anything the user wrote around it.

Marker Format:
    <!-- ccfg:begin:{name} v{version} -->
    ... managed content ...
    <!-- ccfg:end:{name} -->

A document is tokenized into a flat list of ``FreeText`` and ``Section``
nodes. Nodes keep their raw text, so ``render(tokenize(text)) == text`` for
any well-formed document and edits only ever replace the nodes they target.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path

logger = logging.getLogger("ccfg.sections")

SECTION_NAME = r"[A-Za-z0-9][A-Za-z0-9_.-]*"
BEGIN_RE = re.compile(rf"^<!-- ccfg:begin:(?P<name>{SECTION_NAME}) v(?P<version>\S+) -->[ \t]*$")
END_RE = re.compile(rf"^<!-- ccfg:end:(?P<name>{SECTION_NAME}) -->[ \t]*$")
# Loose patterns used when reporting on possibly broken documents
_ANY_BEGIN_RE = re.compile(r"<!-- ccfg:begin:(\S+?)(?: v(\S+))? -->")
_ANY_END_RE = re.compile(r"<!-- ccfg:end:(\S+?) -->")

FOOTER_HEADING = "## User Customizations"
USER_FOOTER = f"{FOOTER_HEADING}\n\nAdd your personal preferences below.\n"
PROJECT_FOOTER = f"{FOOTER_HEADING}\n\nAdd your project-specific conventions below.\n"


class MalformedDocumentError(Exception):
    """Section markers are unbalanced, nested or mismatched."""

    def __init__(self, message: str, path: Path | None = None, line: int | None = None):
        self.path = path
        self.line = line
        super().__init__(message)


class SectionMode(str, Enum):
    """How existing sections are treated."""

    ADD = "add"
    UPDATE = "update"


class SectionAction(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FreeText:
    """User text outside any managed section."""

    text: str


@dataclass(frozen=True)
class Section:
    """A managed section with its raw marker lines and interior."""

    name: str
    version: str
    begin: str
    body: str
    end: str

    @property
    def content(self) -> str:
        return self.body.strip("\n")

    def render(self) -> str:
        return self.begin + self.body + self.end


Node = FreeText | Section


@dataclass(frozen=True)
class ManagedSection:
    """A section the tool wants present in a document."""

    name: str
    version: str
    content: str

    def __post_init__(self) -> None:
        if not re.fullmatch(SECTION_NAME, self.name):
            raise ValueError(f"Invalid section name: {self.name!r}")
        if not self.version or any(c.isspace() for c in self.version):
            raise ValueError(f"Invalid section version: {self.version!r}")

    def begin_marker(self) -> str:
        return f"<!-- ccfg:begin:{self.name} v{self.version} -->"

    def end_marker(self) -> str:
        return f"<!-- ccfg:end:{self.name} -->"

    def to_node(self) -> Section:
        """Format as begin marker, blank line, content, blank line, end marker."""
        return Section(
            name=self.name,
            version=self.version,
            begin=self.begin_marker() + "\n",
            body="\n" + self.content.strip("\n") + "\n\n",
            end=self.end_marker() + "\n",
        )


@dataclass
class ApplyResult:
    """Outcome of applying managed sections to a document."""

    text: str
    changed: bool
    actions: dict[str, SectionAction] = field(default_factory=dict)

    def names(self, action: SectionAction) -> list[str]:
        return [name for name, a in self.actions.items() if a == action]


def tokenize(text: str, path: Path | None = None) -> list[Node]:
    """Split a document into free text and managed sections.

    Args:
        text: Document text
        path: File the text came from, for error messages

    Returns:
        Nodes in document order; adjacent free text is merged

    Raises:
        MalformedDocumentError: On nested, unmatched or duplicate markers
    """
    nodes: list[Node] = []
    free: list[str] = []
    open_match: re.Match[str] | None = None
    open_line = 0
    begin_raw = ""
    body: list[str] = []
    seen: set[str] = set()

    for number, raw in enumerate(text.splitlines(keepends=True), start=1):
        line = raw.rstrip("\r\n")
        begin = BEGIN_RE.match(line)
        end = END_RE.match(line)

        if begin:
            if open_match is not None:
                raise MalformedDocumentError(
                    f"Section '{begin['name']}' begins inside section '{open_match['name']}' "
                    f"(line {number})",
                    path,
                    number,
                )
            if begin["name"] in seen:
                raise MalformedDocumentError(
                    f"Duplicate section '{begin['name']}' (line {number})", path, number
                )
            if free:
                nodes.append(FreeText("".join(free)))
                free = []
            open_match, open_line, begin_raw, body = begin, number, raw, []
        elif end:
            if open_match is None:
                raise MalformedDocumentError(
                    f"Unmatched end marker for '{end['name']}' (line {number})", path, number
                )
            if end["name"] != open_match["name"]:
                raise MalformedDocumentError(
                    f"End marker '{end['name']}' closes section '{open_match['name']}' "
                    f"(line {number})",
                    path,
                    number,
                )
            seen.add(open_match["name"])
            nodes.append(
                Section(
                    name=open_match["name"],
                    version=open_match["version"],
                    begin=begin_raw,
                    body="".join(body),
                    end=raw,
                )
            )
            open_match = None
        elif open_match is not None:
            body.append(raw)
        else:
            free.append(raw)

    if open_match is not None:
        raise MalformedDocumentError(
            f"Unmatched begin marker for '{open_match['name']}' (line {open_line})", path, open_line
        )
    if free:
        nodes.append(FreeText("".join(free)))
    return nodes


def render(nodes: Iterable[Node]) -> str:
    """Render nodes back into document text."""
    return "".join(node.text if isinstance(node, FreeText) else node.render() for node in nodes)


def validate(text: str) -> list[str]:
    """Check marker balance without raising.

    Args:
        text: Document text

    Returns:
        Problems found, empty if the document is well-formed
    """
    try:
        tokenize(text)
    except MalformedDocumentError as e:
        return [str(e)]
    return []


def section_versions(text: str) -> dict[str, str]:
    """Map section names to their versions.

    Tolerates broken documents; a begin marker without a version maps to "".
    """
    versions: dict[str, str] = {}
    for match in _ANY_BEGIN_RE.finditer(text):
        versions.setdefault(match.group(1), match.group(2) or "")
    return versions


def marker_counts(text: str) -> tuple[int, int]:
    """Count begin and end markers in a document."""
    return len(_ANY_BEGIN_RE.findall(text)), len(_ANY_END_RE.findall(text))


def _split_at_footer(nodes: list[Node]) -> int | None:
    """Split the free text holding the footer heading so it starts a node.

    Returns:
        Index of the node that starts with the footer, or None
    """
    for index, node in enumerate(nodes):
        if not isinstance(node, FreeText):
            continue
        lines = node.text.splitlines(keepends=True)
        for offset, line in enumerate(lines):
            if line.rstrip("\r\n").startswith(FOOTER_HEADING):
                before = "".join(lines[:offset])
                after = "".join(lines[offset:])
                if before:
                    nodes[index : index + 1] = [FreeText(before), FreeText(after)]
                    return index + 1
                return index
    return None


def _append(nodes: list[Node], section: Section) -> None:
    text = render(nodes)
    if text and not text.endswith("\n"):
        nodes.append(FreeText("\n"))
    if text:
        nodes.append(FreeText("\n"))
    nodes.append(section)


class SectionManager:
    """Applies managed sections to conventions documents."""

    def __init__(self, footer: str = USER_FOOTER):
        self.footer = footer

    def apply(
        self,
        existing: str | None,
        sections: Iterable[ManagedSection],
        mode: SectionMode = SectionMode.ADD,
        path: Path | None = None,
    ) -> ApplyResult:
        """Ensure sections are present in a document.

        A missing section is inserted before the footer heading, or appended
        when there is none. An existing section is replaced only in UPDATE
        mode and only when its version differs. Text outside the targeted
        sections is never changed.

        Args:
            existing: Current document text, or None if the file is missing
            sections: Sections to ensure
            mode: ADD leaves existing sections alone, UPDATE refreshes them
            path: File being edited, for error messages

        Returns:
            ApplyResult with the new text and a per-section action

        Raises:
            MalformedDocumentError: If the existing document is malformed
        """
        sections = list(sections)
        if existing is None or not existing.strip():
            return self._create(existing, sections)

        nodes = tokenize(existing, path)
        actions: dict[str, SectionAction] = {}

        for wanted in sections:
            index = next(
                (i for i, n in enumerate(nodes) if isinstance(n, Section) and n.name == wanted.name),
                None,
            )
            if index is None:
                footer_at = _split_at_footer(nodes)
                node = wanted.to_node()
                if footer_at is None:
                    _append(nodes, node)
                else:
                    nodes[footer_at:footer_at] = [node, FreeText("\n")]
                actions[wanted.name] = SectionAction.ADDED
                logger.info("Added section: %s (v%s)", wanted.name, wanted.version)
                continue

            current = nodes[index]
            assert isinstance(current, Section)
            if current.version == wanted.version:
                actions[wanted.name] = SectionAction.UNCHANGED
            elif mode == SectionMode.UPDATE:
                fresh = wanted.to_node()
                # Keep the original end marker line ending
                nodes[index] = replace(fresh, end=current.end)
                actions[wanted.name] = SectionAction.UPDATED
                logger.info(
                    "Updated section: %s (v%s -> v%s)", wanted.name, current.version, wanted.version
                )
            else:
                actions[wanted.name] = SectionAction.SKIPPED
                logger.info("Section exists, skipped: %s (v%s)", wanted.name, current.version)

        text = render(nodes)
        return ApplyResult(text=text, changed=text != existing, actions=actions)

    def _create(self, existing: str | None, sections: list[ManagedSection]) -> ApplyResult:
        # A blank document keeps its whitespace; sections start on a fresh line
        prefix = existing or ""
        if prefix and not prefix.endswith("\n"):
            prefix += "\n"
        parts = [prefix] + [wanted.to_node().render() + "\n" for wanted in sections]
        parts.append(self.footer)
        text = "".join(parts)
        actions = {wanted.name: SectionAction.ADDED for wanted in sections}
        return ApplyResult(text=text, changed=text != existing, actions=actions)
