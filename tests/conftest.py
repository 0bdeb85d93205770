"""Shared fixtures for ccfg tests."""

import itertools
import shutil
import tempfile
from collections.abc import Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from ccfg.config.schemas import RegistryFile
from ccfg.core.context import RunContext
from ccfg.core.installer import ExternalToolError, InstallError
from ccfg.registry.base import Registry


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory."""
    path = Path(tempfile.mkdtemp(prefix="ccfg_test_"))
    yield path
    if path.exists():
        shutil.rmtree(path)


@pytest.fixture
def temp_project(temp_dir: Path) -> Path:
    """Create a temporary project directory."""
    project_dir = temp_dir / "test-project"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def home_dir(temp_dir: Path) -> Path:
    """Create a fake home directory with an empty .claude directory."""
    home = temp_dir / "home"
    (home / ".claude").mkdir(parents=True)
    return home


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock that advances one second per call."""
    start = datetime(2026, 1, 18, 9, 30, 0)
    ticks = itertools.count()
    return lambda: start + timedelta(seconds=next(ticks))


@pytest.fixture
def sample_registry() -> Registry:
    """Small registry covering every tier, a universal module and an overlap group."""
    table = RegistryFile.model_validate(
        {
            "version": "1",
            "marketplaces": {
                "official": "anthropics/claude-plugins-official",
                "community": "boostvolt/claude-code-lsps",
            },
            "plugins": [
                {
                    "id": "official/commit-commands",
                    "description": "Git commit helpers",
                    "tier": "auto",
                    "category": "general",
                    "marketplace": "official",
                    "detect": "always",
                },
                {
                    "id": "official/pyright-lsp",
                    "description": "Python language server (official)",
                    "tier": "suggest",
                    "category": "lsp",
                    "marketplace": "official",
                    "detect": "python",
                    "overlap_group": "python",
                    "overlap_preference": "preferred",
                },
                {
                    "id": "community/pyright",
                    "description": "Python language server (community)",
                    "tier": "suggest",
                    "category": "lsp",
                    "marketplace": "community",
                    "detect": "python",
                    "overlap_group": "python",
                    "overlap_preference": "alternative",
                },
                {
                    "id": "community/gopls",
                    "description": "Go language server",
                    "tier": "auto",
                    "category": "lsp",
                    "marketplace": "community",
                    "detect": "golang",
                },
                {
                    "id": "official/github",
                    "description": "GitHub integration",
                    "tier": "suggest",
                    "category": "integration",
                    "marketplace": "official",
                    "detect": "github-actions",
                },
                {
                    "id": "official/playground",
                    "description": "Interactive playground",
                    "tier": "info",
                    "category": "general",
                    "marketplace": "official",
                },
            ],
        }
    )
    return Registry(table)


class FakeTool:
    """PluginTool that records installs and fails for selected refs."""

    def __init__(self, failing: set[str] | None = None, missing: bool = False):
        self.failing = failing or set()
        self.missing = missing
        self.installed: list[str] = []

    def install_plugin(self, plugin_ref: str) -> None:
        if self.missing:
            raise ExternalToolError("claude is not installed or not in PATH", command="claude")
        if plugin_ref in self.failing:
            raise InstallError("exit code 1", plugin_ref)
        self.installed.append(plugin_ref)


class FakeLister:
    """MarketplaceLister returning a fixed set, or failing."""

    def __init__(self, names: set[str] | None = None, error: bool = False):
        self.names = names or set()
        self.error = error
        self.calls = 0

    def list_marketplaces(self) -> set[str]:
        self.calls += 1
        if self.error:
            raise ExternalToolError("Marketplace listing failed", command="claude")
        return set(self.names)


@pytest.fixture
def fake_tool() -> FakeTool:
    """Plugin tool where every install succeeds."""
    return FakeTool()


@pytest.fixture
def fake_tool_factory() -> type[FakeTool]:
    """The FakeTool class, for tests that need failures."""
    return FakeTool


@pytest.fixture
def fake_lister() -> FakeLister:
    """Lister reporting both sample marketplaces."""
    return FakeLister({"official", "community"})


@pytest.fixture
def fake_lister_factory() -> type[FakeLister]:
    """The FakeLister class, for tests that need other listings."""
    return FakeLister


@pytest.fixture
def make_context(
    temp_project: Path, home_dir: Path, clock: Callable[[], datetime]
) -> Callable[..., RunContext]:
    """Factory for RunContexts rooted in the temp project and fake home."""

    def factory(**kwargs) -> RunContext:
        kwargs.setdefault("target_dir", temp_project)
        kwargs.setdefault("home", home_dir)
        kwargs.setdefault("clock", clock)
        return RunContext(**kwargs)

    return factory
