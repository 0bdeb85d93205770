"""Run context shared by every workflow."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from ccfg.config.schemas import Category
from ccfg.core.backup import DEFAULT_KEEP, BackupManager, Clock
from ccfg.core.candidates import Scope


class Mode(str, Enum):
    """APPLY mutates files, PREVIEW only reports what would change."""

    APPLY = "apply"
    PREVIEW = "preview"


@dataclass(frozen=True)
class RunContext:
    """Everything a workflow needs to know about the current invocation.

    ``backup_dir`` and ``settings_path`` default to locations under
    ``home/.claude`` when not given.
    """

    target_dir: Path
    home: Path
    mode: Mode = Mode.APPLY
    scope: Scope = Scope.INTERACTIVE
    category: Category | None = None
    update: bool = False
    quiet: bool = False
    clock: Clock = datetime.now
    backup_dir: Path | None = None
    backup_keep: int = DEFAULT_KEEP
    settings_path: Path | None = None

    def __post_init__(self) -> None:
        if self.backup_dir is None:
            object.__setattr__(self, "backup_dir", self.claude_dir / "backups")
        if self.settings_path is None:
            object.__setattr__(self, "settings_path", self.claude_dir / "settings.json")

    @property
    def dry_run(self) -> bool:
        return self.mode == Mode.PREVIEW

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def user_settings(self) -> Path:
        assert self.settings_path is not None
        return self.settings_path

    @property
    def user_claude_md(self) -> Path:
        return self.claude_dir / "CLAUDE.md"

    @property
    def project_claude_md(self) -> Path:
        return self.target_dir / "CLAUDE.md"

    @property
    def local_settings(self) -> Path:
        return self.target_dir / ".claude" / "settings.local.json"

    def backups(self) -> BackupManager:
        """Backup manager configured for this run."""
        assert self.backup_dir is not None
        return BackupManager(
            self.backup_dir,
            clock=self.clock,
            keep=self.backup_keep,
            dry_run=self.dry_run,
            home=self.home,
        )
