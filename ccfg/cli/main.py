"""Main CLI application for ccfg."""

import contextlib
import logging
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from ccfg import __version__
from ccfg.config.parser import ConfigError, load_tool_config
from ccfg.config.schemas import Tier, ToolConfig
from ccfg.core.backup import NoSnapshotError
from ccfg.core.candidates import (
    Candidate,
    CandidatePlan,
    Scope,
    UnknownCategoryError,
    parse_category,
)
from ccfg.core.context import Mode, RunContext
from ccfg.core.detector import DetectionResult, Detector, ProjectNotFoundError
from ccfg.core.installer import ClaudeCli, ExternalToolError
from ccfg.core.marketplace import ClaudeMarketplaceLister, MissingMarketplaceError
from ccfg.core.sections import MalformedDocumentError, SectionAction
from ccfg.core.workflows import (
    FileChange,
    plan_plugins,
    rollback as rollback_files,
    run_bootstrap,
    run_plugins,
    run_project_init,
    select_first_party,
    status as collect_status,
)
from ccfg.registry.base import Registry, load_first_party_registry, load_registry
from ccfg.template.engine import TemplateEngine, TemplateRenderError
from ccfg.utils.platform import describe_platform, find_executable

# Create the main Typer app
app = typer.Typer(
    name="ccfg",
    help="Plugin recommendations and CLAUDE.md/settings management for Claude Code",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)
# Final summaries are printed even with --quiet
summary_console = Console()

# Set up logger for the ccfg package
logger = logging.getLogger("ccfg")

FATAL_ERRORS = (
    ConfigError,
    ProjectNotFoundError,
    UnknownCategoryError,
    MalformedDocumentError,
    MissingMarketplaceError,
    NoSnapshotError,
    ExternalToolError,
    TemplateRenderError,
)

TIER_ORDER = {Tier.AUTO: 0, Tier.SUGGEST: 1, Tier.INFO: 2}


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source paths
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_failure(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_summary(message: str) -> None:
    summary_console.print(message)


@contextlib.contextmanager
def fatal_errors() -> Iterator[None]:
    """Turn the tool's fatal errors into an error message and exit code 1."""
    try:
        yield
    except FATAL_ERRORS as e:
        print_error(escape(str(e)))
        raise typer.Exit(1) from e


def is_interactive() -> bool:
    return sys.stdin.isatty()


def get_config(ctx: typer.Context) -> ToolConfig:
    config = ctx.obj
    if isinstance(config, ToolConfig):
        return config
    return ToolConfig()


def make_context(
    config: ToolConfig,
    target_dir: Path | None,
    dry_run: bool = False,
    scope: Scope = Scope.INTERACTIVE,
    update: bool = False,
    quiet: bool = False,
    category_value: str | None = None,
) -> RunContext:
    """Build the RunContext for a command."""
    home = Path.home()
    return RunContext(
        target_dir=(target_dir or Path.cwd()).resolve(),
        home=home,
        mode=Mode.PREVIEW if dry_run else Mode.APPLY,
        scope=scope,
        category=parse_category(category_value),
        update=update,
        quiet=quiet,
        backup_dir=config.backup_dir,
        backup_keep=config.backup_keep,
    )


def split_list(value: str | None) -> list[str] | None:
    """Split a comma-separated option value."""
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def show_detection(detection: DetectionResult) -> None:
    if not detection:
        console.print(f"No languages or technologies detected in: {escape(str(detection.root))}")
        return
    console.print(f"[bold]Detection[/bold]  {escape(str(detection.root))}")
    for tag in detection.tags:
        console.print(f"  [green]✓[/green] {tag:<16} [dim]{escape(detection.triggers[tag])}[/dim]")


def show_change(change: FileChange | None, label: str, diff: bool = False) -> None:
    if change is None:
        return
    if not change.changed:
        console.print(f"  [dim]•[/dim] {label} already up to date")
        return
    if change.written:
        print_success(f"Updated {label}: {escape(str(change.path))}")
    else:
        console.print(f"  [cyan]~[/cyan] Would update {label}: {escape(str(change.path))}")
    if diff:
        console.print(escape(change.diff()), highlight=False)


def choose_overlaps(plan: CandidatePlan) -> CandidatePlan:
    """Let the user pick a different member of each overlap group."""
    groups = sorted({c.module.overlap_group for c in plan.candidates if c.module.overlap_group})
    for group in groups:
        current = next(c for c in plan.candidates if c.module.overlap_group == group)
        options = [current.id] + [
            c.id for c in plan.overlap_skipped if c.module.overlap_group == group
        ]
        if len(options) < 2:
            continue
        console.print(f"\n[bold]{group}[/bold] has {len(options)} plugins:")
        for index, option in enumerate(options, start=1):
            console.print(f"  [{index}] {option}")
        answer = typer.prompt("Choose one", default="1")
        if not answer.isdigit() or not 1 <= int(answer) <= len(options):
            print_warning(f"Invalid choice, keeping {current.id}")
            continue
        choice = options[int(answer) - 1]
        if choice != current.id:
            plan = plan.with_overlap_choice(group, choice)
    return plan


def select_candidates(plan: CandidatePlan, auto: bool, yes: bool) -> list[Candidate]:
    """Decide which candidates to install.

    Auto-tier candidates are always selected. Suggest-tier candidates are
    confirmed one by one; --yes accepts all of them and they are skipped
    when stdin is not a terminal.
    """
    if auto:
        return plan.auto
    selected = list(plan.auto)
    if yes:
        return selected + plan.suggested
    if not is_interactive():
        if plan.suggested:
            logger.info("Not a terminal, skipping %d suggestion(s)", len(plan.suggested))
        return selected
    for candidate in plan.suggested:
        description = candidate.module.description or candidate.module.name
        if typer.confirm(f"Install {candidate.module.plugin_ref} ({description})?", default=False):
            selected.append(candidate)
    return selected


def show_plugin_list(plan: CandidatePlan, detection: DetectionResult) -> None:
    """Render the full registry as a table."""
    table = Table(title="Available Plugins")
    table.add_column("Plugin", style="cyan")
    table.add_column("Category")
    table.add_column("Tier", style="green")
    table.add_column("Marketplace", style="dim")
    table.add_column("Description")

    rows = list(plan.candidates) + list(plan.overlap_skipped)
    rows.sort(key=lambda c: (c.module.category.value, TIER_ORDER[c.tier], c.module.name))
    for candidate in rows:
        module = candidate.module
        name = module.name
        if module.detect and detection.has(module.detect):
            name += " *"
        table.add_row(name, module.category.value, module.tier.value, module.marketplace, module.description)

    console.print(table)
    console.print("[dim]* matches this project[/dim]")


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv trace)",
        ),
    ] = 0,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            help="Tool configuration file (defaults to ~/.claude/ccfg.yaml)",
        ),
    ] = None,
) -> None:
    """ccfg - configure Claude Code plugins, settings and CLAUDE.md."""
    setup_logging(verbose)
    console.quiet = False
    path = config or Path.home() / ".claude" / "ccfg.yaml"
    try:
        ctx.obj = load_tool_config(path)
    except ConfigError as e:
        print_error(escape(str(e)))
        raise typer.Exit(1) from e


@app.command()
def version() -> None:
    """Show the ccfg version."""
    console.print(f"ccfg {__version__}")


@app.command()
def detect(
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Project directory (defaults to current directory)"),
    ] = None,
) -> None:
    """Show the technologies detected in a project."""
    with fatal_errors():
        root = (project_dir or Path.cwd()).resolve()
        detection = Detector().detect(root)
    show_detection(detection)


@app.command()
def plugins(
    ctx: typer.Context,
    auto: Annotated[
        bool,
        typer.Option("--auto", help="Install auto-tier plugins only, without prompts"),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Accept every suggestion without prompting"),
    ] = False,
    list_all: Annotated[
        bool,
        typer.Option("--list", help="List every plugin in the registry"),
    ] = False,
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Only consider plugins in this category"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would happen without changing anything"),
    ] = False,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Project directory (defaults to current directory)"),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only print errors and the final summary"),
    ] = False,
) -> None:
    """Recommend and install third-party plugins for a project.

    Detects the project's technologies, installs matching auto-tier plugins
    and offers suggest-tier plugins interactively. Enabled plugins are
    recorded in ~/.claude/settings.json.
    """
    config = get_config(ctx)
    console.quiet = quiet

    if list_all:
        try:
            category_value = category
            parse_category(category)
        except UnknownCategoryError as e:
            print_warning(escape(str(e)))
            category_value = None
        with fatal_errors():
            run_ctx = make_context(config, project_dir, dry_run=True, scope=Scope.LIST, category_value=category_value)
            planned = plan_plugins(run_ctx, load_registry(config.registry_file))
        console.quiet = False
        show_plugin_list(planned.plan, planned.detection)
        return

    with fatal_errors():
        run_ctx = make_context(
            config,
            project_dir,
            dry_run=dry_run,
            scope=Scope.AUTO if auto else Scope.INTERACTIVE,
            quiet=quiet,
            category_value=category,
        )
        registry = load_registry(config.registry_file)
        planned = plan_plugins(run_ctx, registry)

    show_detection(planned.detection)
    plan = planned.plan

    if auto:
        for skipped in plan.overlap_skipped:
            console.print(f"  [dim]• {skipped.module.plugin_ref}: {escape(skipped.reason)}[/dim]")
    elif is_interactive() and not yes:
        plan = choose_overlaps(plan)

    selected = select_candidates(plan, auto, yes)
    if not selected:
        print_summary("Nothing to install.")
        return

    console.print(f"\n[bold]Plugins[/bold]  {len(selected)} selected")
    for candidate in selected:
        console.print(f"  [cyan]+[/cyan] {candidate.module.plugin_ref} [dim]({escape(candidate.reason)})[/dim]")

    cli = ClaudeCli(config.claude_command, config.install_timeout)
    with fatal_errors():
        report = run_plugins(
            run_ctx,
            plan,
            registry,
            ClaudeMarketplaceLister(cli),
            cli,
            selected=selected,
        )

    for missing in report.missing_marketplaces:
        print_warning(f"Missing marketplace: {missing.name}")
        if missing.remediation:
            console.print(f"    Run: [cyan]{missing.remediation}[/cyan]")

    if report.installs is not None:
        for outcome in report.installs.outcomes:
            if outcome.ok:
                print_success(f"Installed {outcome.plugin_ref}")
            else:
                print_failure(f"Failed {outcome.plugin_ref}: {escape(outcome.error_detail)}")

    show_change(report.settings, "settings.json")
    if dry_run:
        print_summary(f"Dry run complete. {len(selected)} plugin(s) would be installed. No files modified.")
        return

    assert report.installs is not None
    print_summary(f"{report.installs.success_count} installed, {report.installs.failure_count} failed")


@app.command()
def bootstrap(
    ctx: typer.Context,
    auto: Annotated[
        bool,
        typer.Option("--auto", help="Use detected plugins without prompting"),
    ] = False,
    plugin_list: Annotated[
        str | None,
        typer.Option("--plugins", help="Comma-separated plugins to enable (e.g. core,python,docker)"),
    ] = None,
    skip_settings: Annotated[
        bool,
        typer.Option("--skip-settings", help="Do not modify settings.json"),
    ] = False,
    skip_claude_md: Annotated[
        bool,
        typer.Option("--skip-claude-md", help="Do not modify CLAUDE.md"),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would happen without changing anything"),
    ] = False,
    diff: Annotated[
        bool,
        typer.Option("--diff", help="Show a diff of the proposed changes"),
    ] = False,
    update: Annotated[
        bool,
        typer.Option("--update", help="Update managed sections to the latest version"),
    ] = False,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Directory used for detection (defaults to current directory)"),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only print errors and the final summary"),
    ] = False,
) -> None:
    """Configure ~/.claude/settings.json and ~/.claude/CLAUDE.md.

    Enables the ccfg plugins matching the current project (ccfg-core is
    always included), merges their permissions, and adds the best-practices
    section to the user CLAUDE.md.
    """
    config = get_config(ctx)
    console.quiet = quiet
    explicit = split_list(plugin_list)

    with fatal_errors():
        run_ctx = make_context(config, project_dir, dry_run=dry_run, update=update, quiet=quiet)
        first_party = load_first_party_registry()
        tags: list[str] = []
        if explicit is None:
            detection = Detector().detect(run_ctx.target_dir)
            show_detection(detection)
            tags = list(detection.tags)
            if not auto and is_interactive():
                explicit = offer_first_party(first_party, tags)

        report = run_bootstrap(
            run_ctx,
            first_party,
            tags,
            explicit=explicit,
            skip_settings=skip_settings,
            skip_claude_md=skip_claude_md,
        )

    for name in report.unknown_plugins:
        print_warning(f"Unknown plugin: {name} (skipped)")

    console.print(f"\n[bold]Plugins[/bold]  {len(report.plugins)} enabled")
    for candidate in report.plugins:
        console.print(f"  [green]✓[/green] {candidate.module.plugin_ref}")

    if report.merge is not None:
        for permission in report.merge.added_permissions:
            console.print(f"  [cyan]+ permission[/cyan] {escape(permission)}")
        for key in report.merge.added_defaults:
            console.print(f"  [cyan]+ {key}[/cyan]")
    show_change(report.settings, "settings.json", diff=diff)

    if report.sections is not None:
        for name, action in report.sections.actions.items():
            console.print(f"  [dim]•[/dim] {name} section {action.value}")
    show_change(report.claude_md, "CLAUDE.md", diff=diff)

    if dry_run:
        print_summary("Dry run complete. No files modified.")
    elif not report.changed_files:
        print_summary("Already up to date. No changes needed.")
    else:
        print_summary(f"Done. {len(report.changed_files)} file(s) updated.")


def offer_first_party(first_party: Registry, tags: list[str]) -> list[str]:
    """Ask which optional first-party plugins to enable besides the detected ones."""
    selected, _ = select_first_party(first_party, tags)
    names = [c.module.name for c in selected]
    console.print("\n[bold]ccfg plugins[/bold]")
    for name in names:
        console.print(f"  [green]✓[/green] {name}")
    for entry in first_party.all():
        if entry.name in names:
            continue
        if typer.confirm(f"Also enable {entry.name}?", default=False):
            names.append(entry.name)
    return names


@app.command("project-init")
def project_init(
    ctx: typer.Context,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Project directory (defaults to current directory)"),
    ] = None,
    auto: Annotated[
        bool,
        typer.Option("--auto", help="Add every detected section without prompting"),
    ] = False,
    local: Annotated[
        bool,
        typer.Option("--local", help="Enable the matching plugins in .claude/settings.local.json"),
    ] = False,
    local_plugins: Annotated[
        str | None,
        typer.Option("--local-plugins", help="Comma-separated plugins to enable in .claude/settings.local.json"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would happen without changing anything"),
    ] = False,
    update: Annotated[
        bool,
        typer.Option("--update", help="Refresh sections that already exist"),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only print errors and the final summary"),
    ] = False,
) -> None:
    """Add technology sections to a project's CLAUDE.md."""
    config = get_config(ctx)
    console.quiet = quiet

    with fatal_errors():
        run_ctx = make_context(config, project_dir, dry_run=dry_run, update=update, quiet=quiet)
        detection = Detector().detect(run_ctx.target_dir)

    show_detection(detection)
    if not detection:
        print_summary("Nothing to do.")
        return

    sections = list(detection.tags)
    if not auto and is_interactive():
        sections = confirm_sections(sections)
    if not sections:
        print_summary("No sections selected. Nothing to do.")
        return

    with fatal_errors():
        report = run_project_init(
            run_ctx,
            detection,
            sections=sections,
            engine=TemplateEngine(),
            first_party=load_first_party_registry() if local or local_plugins else None,
            local=local,
            local_plugins=split_list(local_plugins),
        )

    for tag in report.missing_templates:
        print_warning(f"No template found for section: {tag}")
    for name in report.unknown_plugins:
        print_warning(f"Unknown plugin: {name} (skipped)")

    if report.result is not None:
        for name, action in report.result.actions.items():
            marker = "[cyan]+[/cyan]" if action == SectionAction.ADDED else "[dim]•[/dim]"
            console.print(f"  {marker} {name} section {action.value}")
    show_change(report.claude_md, "CLAUDE.md")
    for candidate in report.local_plugins:
        console.print(f"  [cyan]+[/cyan] {candidate.module.plugin_ref} (local)")
    show_change(report.local_settings, "settings.local.json")

    if dry_run:
        print_summary("Dry run complete. No files modified.")
        return
    actions = report.result.actions.values() if report.result else []
    added = sum(1 for a in actions if a == SectionAction.ADDED)
    updated = sum(1 for a in actions if a == SectionAction.UPDATED)
    if not report.changed_files:
        print_summary("Already up to date. No changes needed.")
    else:
        print_summary(
            f"Done. {len(report.changed_files)} file(s) touched, {added} section(s) added, {updated} updated."
        )


def confirm_sections(sections: list[str]) -> list[str]:
    """Let the user exclude sections by number."""
    console.print("\n[bold]Sections to add:[/bold]")
    for index, section in enumerate(sections, start=1):
        console.print(f"  [green]\\[{index}][/green] {section}")
    answer = typer.prompt("Press Enter to confirm all, or type numbers to exclude (e.g. 2,4)", default="")
    excluded = {item.strip() for item in answer.split(",") if item.strip()}
    return [s for i, s in enumerate(sections, start=1) if str(i) not in excluded]


@app.command()
def rollback(
    ctx: typer.Context,
    skip_settings: Annotated[
        bool,
        typer.Option("--skip-settings", help="Do not restore settings.json"),
    ] = False,
    skip_claude_md: Annotated[
        bool,
        typer.Option("--skip-claude-md", help="Do not restore CLAUDE.md"),
    ] = False,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Also restore this project's CLAUDE.md and settings.local.json"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be restored"),
    ] = False,
) -> None:
    """Restore managed files from their most recent backup."""
    config = get_config(ctx)
    run_ctx = make_context(config, project_dir, dry_run=dry_run)

    targets: list[Path] = []
    if not skip_settings:
        targets.append(run_ctx.user_settings)
    if not skip_claude_md:
        targets.append(run_ctx.user_claude_md)
    if project_dir is not None:
        if not skip_claude_md:
            targets.append(run_ctx.project_claude_md)
        if not skip_settings:
            targets.append(run_ctx.local_settings)

    results = rollback_files(run_ctx, targets)
    console.print("[bold]Rollback[/bold]")
    for result in results:
        if result.restored:
            print_success(f"{escape(str(result.path))}: {result.detail}")
        else:
            console.print(f"  [yellow]•[/yellow] {escape(str(result.path))}: {result.detail}")

    if dry_run:
        return
    if results and not any(r.restored for r in results):
        print_error("No backups available to restore")
        raise typer.Exit(1)


@app.command()
def status(
    ctx: typer.Context,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", "-p", help="Also report on this project's CLAUDE.md"),
    ] = None,
) -> None:
    """Show the managed state of settings, CLAUDE.md and backups."""
    config = get_config(ctx)
    run_ctx = make_context(config, project_dir)
    report = collect_status(run_ctx, include_project=project_dir is not None)

    console.print(f"[bold]Status[/bold]  ccfg {__version__} on {describe_platform()}")
    claude = find_executable(config.claude_command)
    console.print(f"  claude CLI: {escape(claude) if claude else '[yellow]not found[/yellow]'}")

    settings = report.settings
    console.print(f"\n[bold]Settings[/bold]  {escape(str(settings.path))}")
    if not settings.exists:
        console.print("  [yellow]•[/yellow] File not found")
    elif settings.error:
        print_warning(escape(settings.error))
    else:
        console.print(f"  • enabledPlugins: {settings.enabled_plugins} entries")
        console.print(f"  • permissions.allow: {settings.permissions} entries")
        thinking = "not set" if settings.always_thinking is None else settings.always_thinking
        console.print(f"  • alwaysThinkingEnabled: {thinking}")
        for ref in settings.first_party_plugins:
            console.print(f"    [green]✓[/green] {ref}")

    for document in report.documents:
        console.print(f"\n[bold]CLAUDE.md[/bold]  {escape(str(document.path))}")
        if not document.exists:
            console.print("  [yellow]•[/yellow] File not found")
            continue
        if not document.sections:
            console.print("  [yellow]•[/yellow] No managed sections")
        for name, section_version in document.sections.items():
            console.print(f"  [green]✓[/green] {name} section (v{section_version})")
        for problem in document.problems:
            print_warning(escape(problem))

    assert run_ctx.backup_dir is not None
    console.print(f"\n[bold]Backups[/bold]  {escape(str(run_ctx.backup_dir))}")
    snapshots = [s for items in report.backups.values() for s in items]
    if not snapshots:
        console.print("  No backups found")
    for snapshot in snapshots:
        console.print(f"  • {snapshot.id} ({snapshot.size} bytes)")


if __name__ == "__main__":
    app()
