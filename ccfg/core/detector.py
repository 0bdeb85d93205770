"""Project technology detection.

Detection runs an ordered list of rules against a project root. Each rule
maps to a tag and reports the trigger (file, directory or pattern) that
matched, so the CLI can explain why a tag was detected.
"""

import logging
import os
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path

logger = logging.getLogger("ccfg.detector")

# Absorbed tag -> replacement tag
CANONICAL_TAGS: dict[str, str] = {"javascript": "typescript"}

COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

# Directories never descended into by glob rules
_SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__"}


class ProjectNotFoundError(Exception):
    """The target directory does not exist or is not a directory."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Project directory not found: {path}")


@dataclass
class DetectionResult:
    """Tags detected in a project, in rule order."""

    root: Path
    tags: list[str] = field(default_factory=list)
    triggers: dict[str, str] = field(default_factory=dict)

    def has(self, tag: str) -> bool:
        return tag in self.tags

    def add(self, tag: str, trigger: str) -> None:
        """Record a tag once, keeping the first trigger."""
        if tag not in self.triggers:
            self.tags.append(tag)
            self.triggers[tag] = trigger

    def __bool__(self) -> bool:
        return bool(self.tags)


# A probe returns a trigger description, or None if the signal is absent
Probe = Callable[[Path], str | None]


def file_exists(*names: str) -> Probe:
    def probe(root: Path) -> str | None:
        for name in names:
            if (root / name).is_file():
                return name
        return None

    return probe


def dir_exists(*names: str) -> Probe:
    def probe(root: Path) -> str | None:
        for name in names:
            if (root / name).is_dir():
                return f"{name}/"
        return None

    return probe


def _walk(root: Path, max_depth: int) -> Iterator[os.DirEntry[str]]:
    """Yield directory entries up to max_depth levels below root.

    Depth 1 is the root's own entries, matching ``find -maxdepth``.
    """
    stack: list[tuple[Path, int]] = [(root, 1)]
    while stack:
        current, depth = stack.pop()
        with os.scandir(current) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            yield entry
            if depth < max_depth and entry.is_dir(follow_symlinks=False) and entry.name not in _SKIP_DIRS:
                stack.append((Path(entry.path), depth + 1))


def glob_within(*patterns: str, max_depth: int = 2, subdir: str | None = None) -> Probe:
    def probe(root: Path) -> str | None:
        base = root / subdir if subdir else root
        if not base.is_dir():
            return None
        for entry in _walk(base, max_depth):
            for pattern in patterns:
                if fnmatch(entry.name, pattern):
                    return os.path.relpath(entry.path, root)
        return None

    return probe


def file_contains(name: str, pattern: str, label: str) -> Probe:
    regex = re.compile(pattern)

    def probe(root: Path) -> str | None:
        path = root / name
        if not path.is_file():
            return None
        if regex.search(path.read_text(encoding="utf-8", errors="replace")):
            return f"{name} + {label}"
        return None

    return probe


def compose_image(image: str) -> Probe:
    regex = re.compile(rf"image:.*{re.escape(image)}")

    def probe(root: Path) -> str | None:
        for name in COMPOSE_FILES:
            path = root / name
            if not path.is_file():
                continue
            for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
                if regex.search(line):
                    return f"{name} ({image})"
        return None

    return probe


def any_of(*probes: Probe) -> Probe:
    def probe(root: Path) -> str | None:
        for inner in probes:
            trigger = inner(root)
            if trigger:
                return trigger
        return None

    return probe


_typescript = any_of(
    file_exists("tsconfig.json"),
    file_contains("package.json", r'"typescript"', "typescript"),
)


def _package_json_without_typescript(root: Path) -> str | None:
    if not (root / "package.json").is_file():
        return None
    if _typescript(root):
        return None
    return "package.json"


def _package_json_with_typescript(root: Path) -> str | None:
    if not (root / "package.json").is_file():
        return None
    return _typescript(root)


@dataclass(frozen=True)
class Rule:
    """A detection rule: the tag it yields and the probe that finds it."""

    tag: str
    probe: Probe


DEFAULT_RULES: tuple[Rule, ...] = (
    Rule("python", file_exists("pyproject.toml", "setup.py", "setup.cfg", "requirements.txt", "Pipfile")),
    Rule("golang", file_exists("go.mod")),
    Rule("typescript", _package_json_with_typescript),
    Rule("javascript", _package_json_without_typescript),
    Rule("java", file_exists("pom.xml", "build.gradle", "build.gradle.kts")),
    Rule("rust", file_exists("Cargo.toml")),
    Rule("csharp", glob_within("*.csproj", "*.sln", max_depth=2)),
    Rule("shell", any_of(glob_within("*.sh", max_depth=1), glob_within("*.sh", max_depth=1, subdir="scripts"))),
    Rule("docker", file_exists("Dockerfile", "docker-compose.yml", "docker-compose.yaml", "compose.yml")),
    Rule("kubernetes", dir_exists("k8s", "kubernetes")),
    Rule("github-actions", dir_exists(".github/workflows")),
    Rule("mysql", compose_image("mysql")),
    Rule("postgresql", compose_image("postgres")),
    Rule("mongodb", compose_image("mongo")),
    Rule("redis", compose_image("redis")),
    Rule("sqlite", glob_within("*.db", "*.sqlite", "*.sqlite3", max_depth=1)),
    Rule("markdown", any_of(dir_exists("docs"), file_exists("README.md"))),
    Rule("frontend", glob_within("*.tsx", "*.vue", "*.svelte", "*.jsx", max_depth=2)),
    Rule("beads", dir_exists(".beads")),
)


class Detector:
    """Runs detection rules against a project root."""

    def __init__(
        self,
        rules: tuple[Rule, ...] = DEFAULT_RULES,
        canonical: dict[str, str] | None = None,
    ):
        self.rules = rules
        self.canonical = CANONICAL_TAGS if canonical is None else canonical

    def detect(self, root: Path) -> DetectionResult:
        """Detect the technologies used in a project.

        Args:
            root: Project root directory

        Returns:
            Canonical tags in rule order with the trigger for each

        Raises:
            ProjectNotFoundError: If root is missing or not a directory
        """
        if not root.is_dir():
            raise ProjectNotFoundError(root)

        result = DetectionResult(root=root)
        for rule in self.rules:
            try:
                trigger = rule.probe(root)
            except OSError as e:
                logger.debug("Rule %s failed in %s: %s", rule.tag, root, e)
                continue
            if trigger:
                tag = self.canonical.get(rule.tag, rule.tag)
                logger.debug("Detected %s via %s", tag, trigger)
                result.add(tag, trigger)
        return result
