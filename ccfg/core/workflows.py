"""Workflows behind the CLI commands.

Each workflow takes a ``RunContext``, performs one end-to-end operation
(plugins, bootstrap, project-init, rollback, status) and returns a report
dataclass. Workflows never print; the CLI renders the reports.

Every file change goes through ``BackupManager.write`` so a snapshot exists
before any mutation, and nothing is written in PREVIEW mode.
"""

import difflib
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ccfg import __version__
from ccfg.config.parser import ConfigError, load_settings
from ccfg.core.backup import BackupManager, NoSnapshotError, Snapshot
from ccfg.core.candidates import Candidate, CandidateBuilder, CandidatePlan, Scope
from ccfg.core.context import Mode, RunContext
from ccfg.core.detector import DetectionResult, Detector
from ccfg.core.installer import InstallSummary, PluginInstaller, PluginTool
from ccfg.core.marketplace import (
    MarketplaceLister,
    MarketplaceValidator,
    MissingMarketplace,
    ValidationMode,
)
from ccfg.core.sections import (
    PROJECT_FOOTER,
    USER_FOOTER,
    ApplyResult,
    ManagedSection,
    SectionManager,
    SectionMode,
    section_versions,
    validate,
)
from ccfg.core.settings import (
    BOOTSTRAP_DEFAULTS,
    ENABLED_PLUGINS,
    MergeResult,
    SettingsMerger,
)
from ccfg.registry.base import Registry
from ccfg.template.context import TemplateContext, build_context
from ccfg.template.engine import TemplateEngine
from ccfg.utils.filesystem import read_text_if_exists

logger = logging.getLogger("ccfg.workflows")

FIRST_PARTY_PREFIX = "ccfg-"
FIRST_PARTY_MARKETPLACE = "claude-config"
CORE_PLUGIN = "ccfg-core"
BEST_PRACTICES_SECTION = "best-practices"


# =============================================================================
# Shared helpers
# =============================================================================


@dataclass
class FileChange:
    """Before/after text of one managed file."""

    path: Path
    before: str
    after: str
    existed: bool
    written: bool = False

    @property
    def changed(self) -> bool:
        return self.before != self.after

    def diff(self) -> str:
        """Unified diff between the current and proposed content."""
        return "".join(
            difflib.unified_diff(
                self.before.splitlines(keepends=True),
                self.after.splitlines(keepends=True),
                fromfile=f"{self.path.name} (current)",
                tofile=f"{self.path.name} (proposed)",
            )
        )


def _commit(ctx: RunContext, backups: BackupManager, path: Path, before: str | None, after: str) -> FileChange:
    """Write a file through the backup manager when the run applies changes."""
    change = FileChange(path=path, before=before or "", after=after, existed=before is not None)
    if ctx.mode == Mode.APPLY and change.changed:
        change.written = backups.write(path, after)
        if change.written:
            backups.prune(path)
    return change


def _settings_change(
    ctx: RunContext,
    backups: BackupManager,
    path: Path,
    merge: MergeResult,
) -> FileChange:
    before = read_text_if_exists(path)
    # An unchanged document keeps the user's formatting
    after = merge.text if merge.changed else (before or "")
    return _commit(ctx, backups, path, before, after)


def normalize_plugin_name(name: str) -> str:
    """Add the ``ccfg-`` prefix to a first-party plugin name when missing."""
    name = name.strip()
    if not name.startswith(FIRST_PARTY_PREFIX):
        name = FIRST_PARTY_PREFIX + name
    return name


def _first_party_by_names(first_party: Registry, names: Iterable[str]) -> tuple[list[Candidate], list[str]]:
    found: list[Candidate] = []
    unknown: list[str] = []
    for raw in names:
        if not raw.strip():
            continue
        name = normalize_plugin_name(raw)
        entry = first_party.find_by_name(name)
        if entry is None:
            logger.warning("Unknown plugin: %s (skipped)", name)
            unknown.append(name)
        elif all(c.id != entry.id for c in found):
            found.append(Candidate(entry, "requested"))
    return found, unknown


# =============================================================================
# plugins
# =============================================================================


@dataclass
class PluginPlan:
    """Detection result and candidate plan for a plugins run."""

    detection: DetectionResult
    plan: CandidatePlan


def plan_plugins(ctx: RunContext, registry: Registry, detector: Detector | None = None) -> PluginPlan:
    """Detect the project and build the candidate plan.

    Raises:
        ProjectNotFoundError: If the target directory is missing
    """
    detection = (detector or Detector()).detect(ctx.target_dir)
    logger.info("Detected: %s", ", ".join(detection.tags) or "nothing")
    plan = CandidateBuilder(registry).build(detection.tags, ctx.scope, ctx.category)
    return PluginPlan(detection=detection, plan=plan)


@dataclass
class PluginRunReport:
    """Outcome of a plugins run."""

    candidates: list[Candidate]
    merge: MergeResult
    settings: FileChange
    installs: InstallSummary | None = None
    missing_marketplaces: list[MissingMarketplace] = field(default_factory=list)

    @property
    def failure_count(self) -> int:
        return self.installs.failure_count if self.installs else 0


def run_plugins(
    ctx: RunContext,
    plan: CandidatePlan,
    registry: Registry,
    lister: MarketplaceLister,
    tool: PluginTool,
    selected: Iterable[Candidate] | None = None,
    merger: SettingsMerger | None = None,
) -> PluginRunReport:
    """Check marketplaces, install candidates and merge them into settings.

    In PREVIEW mode nothing is installed and the settings merge is projected
    as if every install succeeded.

    Args:
        ctx: Run context
        plan: Candidate plan from plan_plugins
        registry: Registry the plan was built from (for marketplace repos)
        lister: Reports configured marketplaces
        tool: Installs a single plugin
        selected: Candidates chosen by the user (defaults to every candidate)
        merger: Settings merger

    Returns:
        PluginRunReport

    Raises:
        ConfigError: If the settings file is invalid
        MissingMarketplaceError: If a required marketplace is missing (APPLY)
        ExternalToolError: If the claude CLI is not installed (APPLY)
    """
    merger = merger or SettingsMerger()
    backups = ctx.backups()
    settings_path = ctx.user_settings
    to_install = list(plan.candidates if selected is None else selected)

    # Fail on a broken settings file before installing anything
    existing = load_settings(settings_path)

    mode = ValidationMode.ENFORCE if ctx.mode == Mode.APPLY else ValidationMode.ADVISORY
    validator = MarketplaceValidator(lister, registry.marketplace_repo)
    missing = validator.check(plan.required_marketplaces(to_install), mode)

    installs: InstallSummary | None = None
    if ctx.mode == Mode.APPLY:
        installs = PluginInstaller(tool).install(to_install)
        outcomes = installs.outcomes
    else:
        outcomes = None

    merge = merger.merge(existing, to_install, outcomes)
    change = _settings_change(ctx, backups, settings_path, merge)
    if installs is not None:
        logger.info("%d installed, %d failed", installs.success_count, installs.failure_count)

    return PluginRunReport(
        candidates=to_install,
        merge=merge,
        settings=change,
        installs=installs,
        missing_marketplaces=missing,
    )


# =============================================================================
# bootstrap
# =============================================================================


def select_first_party(
    first_party: Registry,
    tags: Iterable[str],
    explicit: Iterable[str] | None = None,
) -> tuple[list[Candidate], list[str]]:
    """Choose the tool's own plugins for a bootstrap run.

    ``ccfg-core`` is always included. An explicit list replaces detection.

    Args:
        first_party: Registry of first-party plugins
        tags: Detected tags
        explicit: Plugin names from --plugins (``ccfg-`` prefix optional)

    Returns:
        Selected candidates and any unknown explicit names
    """
    core = first_party.find_by_name(CORE_PLUGIN)
    selected: list[Candidate] = [Candidate(core, "always included")] if core else []

    if explicit is not None:
        found, unknown = _first_party_by_names(first_party, explicit)
        selected.extend(c for c in found if c.module.name != CORE_PLUGIN)
        return selected, unknown

    plan = CandidateBuilder(first_party).build(tags, Scope.AUTO)
    selected.extend(c for c in plan.candidates if c.module.name != CORE_PLUGIN)
    return selected, []


@dataclass
class BootstrapReport:
    """Outcome of a bootstrap run."""

    plugins: list[Candidate]
    unknown_plugins: list[str] = field(default_factory=list)
    merge: MergeResult | None = None
    settings: FileChange | None = None
    sections: ApplyResult | None = None
    claude_md: FileChange | None = None

    @property
    def changed_files(self) -> list[FileChange]:
        return [c for c in (self.settings, self.claude_md) if c is not None and c.changed]


def run_bootstrap(
    ctx: RunContext,
    first_party: Registry,
    tags: Iterable[str],
    explicit: Iterable[str] | None = None,
    skip_settings: bool = False,
    skip_claude_md: bool = False,
    engine: TemplateEngine | None = None,
    merger: SettingsMerger | None = None,
) -> BootstrapReport:
    """Enable first-party plugins and write the user-level CLAUDE.md section.

    Raises:
        ConfigError: If the settings file is invalid
        MalformedDocumentError: If the user CLAUDE.md has broken markers
        TemplateRenderError: If the best-practices template fails to render
    """
    backups = ctx.backups()
    plugins, unknown = select_first_party(first_party, tags, explicit)
    report = BootstrapReport(plugins=plugins, unknown_plugins=unknown)

    if not skip_settings:
        existing = load_settings(ctx.user_settings)
        merge = (merger or SettingsMerger()).merge(existing, plugins, None, defaults=BOOTSTRAP_DEFAULTS)
        report.merge = merge
        report.settings = _settings_change(ctx, backups, ctx.user_settings, merge)

    if not skip_claude_md:
        engine = engine or TemplateEngine()
        context = TemplateContext().with_platform().build()
        section = ManagedSection(BEST_PRACTICES_SECTION, __version__, engine.render_user(context))
        mode = SectionMode.UPDATE if ctx.update else SectionMode.ADD
        path = ctx.user_claude_md
        before = read_text_if_exists(path)
        result = SectionManager(USER_FOOTER).apply(before, [section], mode, path=path)
        report.sections = result
        report.claude_md = _commit(ctx, backups, path, before, result.text)

    return report


# =============================================================================
# project-init
# =============================================================================


@dataclass
class ProjectInitReport:
    """Outcome of a project-init run."""

    detection: DetectionResult
    sections: list[str] = field(default_factory=list)
    missing_templates: list[str] = field(default_factory=list)
    result: ApplyResult | None = None
    claude_md: FileChange | None = None
    local_plugins: list[Candidate] = field(default_factory=list)
    unknown_plugins: list[str] = field(default_factory=list)
    local_settings: FileChange | None = None

    @property
    def changed_files(self) -> list[FileChange]:
        return [c for c in (self.claude_md, self.local_settings) if c is not None and c.changed]


def project_sections(tags: Iterable[str], engine: TemplateEngine) -> tuple[list[str], list[str]]:
    """Split tags into those with a section template and those without."""
    available: list[str] = []
    missing: list[str] = []
    for tag in tags:
        if engine.has_section(tag):
            available.append(tag)
        else:
            logger.warning("No template found for section: %s", tag)
            missing.append(tag)
    return available, missing


def run_project_init(
    ctx: RunContext,
    detection: DetectionResult,
    sections: Iterable[str] | None = None,
    engine: TemplateEngine | None = None,
    first_party: Registry | None = None,
    local: bool = False,
    local_plugins: Iterable[str] | None = None,
    merger: SettingsMerger | None = None,
) -> ProjectInitReport:
    """Write one CLAUDE.md section per detected technology.

    Args:
        ctx: Run context (target_dir is the project)
        detection: Detection result for the project
        sections: Tags to write (defaults to every detected tag)
        engine: Template engine
        first_party: Registry of first-party plugins (needed for local settings)
        local: Enable the plugin for every written section in settings.local.json
        local_plugins: Explicit plugin names for settings.local.json
        merger: Settings merger

    Returns:
        ProjectInitReport

    Raises:
        MalformedDocumentError: If the project CLAUDE.md has broken markers
        TemplateRenderError: If a section template fails to render
        ConfigError: If settings.local.json is invalid
    """
    engine = engine or TemplateEngine()
    backups = ctx.backups()
    wanted = list(detection.tags if sections is None else sections)
    available, missing = project_sections(wanted, engine)
    report = ProjectInitReport(detection=detection, sections=available, missing_templates=missing)

    if available:
        context = build_context(ctx.target_dir, detection.tags)
        managed = [ManagedSection(tag, __version__, engine.render_section(tag, context)) for tag in available]
        mode = SectionMode.UPDATE if ctx.update else SectionMode.ADD
        path = ctx.project_claude_md
        before = read_text_if_exists(path)
        result = SectionManager(PROJECT_FOOTER).apply(before, managed, mode, path=path)
        report.result = result
        report.claude_md = _commit(ctx, backups, path, before, result.text)

    if local or local_plugins is not None:
        if first_party is None:
            raise ConfigError("Local settings need the first-party plugin registry")
        names = available if local else list(local_plugins or [])
        found, unknown = _first_party_by_names(first_party, names)
        # Local settings only enable plugins; permissions stay user-level
        report.local_plugins = [
            Candidate(c.module.model_copy(update={"permissions": ()}), c.reason) for c in found
        ]
        report.unknown_plugins = unknown
        existing = load_settings(ctx.local_settings)
        merge = (merger or SettingsMerger()).merge(existing, report.local_plugins)
        report.local_settings = _settings_change(ctx, backups, ctx.local_settings, merge)

    return report


# =============================================================================
# rollback / status
# =============================================================================


@dataclass
class RollbackResult:
    """Outcome of rolling back one file."""

    path: Path
    restored: bool
    detail: str = ""


def rollback(ctx: RunContext, targets: Iterable[Path]) -> list[RollbackResult]:
    """Restore each target from its most recent snapshot.

    A target without snapshots is reported, not raised, so the other
    targets are still restored.
    """
    backups = ctx.backups()
    results: list[RollbackResult] = []
    for path in targets:
        try:
            restored = backups.restore_latest(path)
        except NoSnapshotError as e:
            logger.info("%s", e)
            results.append(RollbackResult(path, False, "No backup available"))
            continue
        detail = "Restored" if restored else "Would restore (dry run)"
        results.append(RollbackResult(path, restored, detail))
    return results


@dataclass
class SettingsStatus:
    """Summary of a settings file."""

    path: Path
    exists: bool
    enabled_plugins: int = 0
    permissions: int = 0
    always_thinking: Any = None
    first_party_plugins: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class DocumentStatus:
    """Summary of a CLAUDE.md file."""

    path: Path
    exists: bool
    sections: dict[str, str] = field(default_factory=dict)
    problems: list[str] = field(default_factory=list)


@dataclass
class StatusReport:
    settings: SettingsStatus
    documents: list[DocumentStatus]
    backups: dict[Path, list[Snapshot]]


def settings_status(path: Path) -> SettingsStatus:
    """Summarize a settings file without failing on a broken one."""
    if not path.exists():
        return SettingsStatus(path=path, exists=False)
    try:
        document = load_settings(path)
    except ConfigError as e:
        return SettingsStatus(path=path, exists=True, error=str(e))

    plugins = document.get(ENABLED_PLUGINS)
    plugins = plugins if isinstance(plugins, dict) else {}
    permissions = document.get("permissions")
    allow = permissions.get("allow") if isinstance(permissions, dict) else None
    return SettingsStatus(
        path=path,
        exists=True,
        enabled_plugins=len(plugins),
        permissions=len(allow) if isinstance(allow, list) else 0,
        always_thinking=document.get("alwaysThinkingEnabled"),
        first_party_plugins=sorted(k for k in plugins if k.endswith(f"@{FIRST_PARTY_MARKETPLACE}")),
    )


def document_status(path: Path) -> DocumentStatus:
    text = read_text_if_exists(path)
    if text is None:
        return DocumentStatus(path=path, exists=False)
    return DocumentStatus(path=path, exists=True, sections=section_versions(text), problems=validate(text))


def status(ctx: RunContext, include_project: bool = False) -> StatusReport:
    """Report the managed state of settings, CLAUDE.md files and backups."""
    documents = [document_status(ctx.user_claude_md)]
    if include_project:
        documents.append(document_status(ctx.project_claude_md))

    backups = ctx.backups()
    tracked = [ctx.user_settings] + [d.path for d in documents]
    return StatusReport(
        settings=settings_status(ctx.user_settings),
        documents=documents,
        backups={path: backups.list_snapshots(path) for path in tracked},
    )
