"""Backup and rollback for managed documents.

Every write to a settings file or CLAUDE.md goes through ``BackupManager.write``,
which snapshots the current bytes before replacing the file atomically.
Snapshots live in one flat directory and are grouped into families by the
logical target they protect:

    settings_20260118_093012_123456.json
    CLAUDE_user_20260118_093012_123456.md
    CLAUDE_project-1f0c9a2b_20260118_093012_123456.md
    settings.local-1f0c9a2b_20260118_093012_123456.json

Project files carry a hash of their directory in the family name.
"""

import hashlib
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import NewType

from ccfg.utils.filesystem import (
    atomic_write_bytes,
    atomic_write_text,
    copy_bytes,
    ensure_directory,
    read_text_file,
)

logger = logging.getLogger("ccfg.backup")

SnapshotId = NewType("SnapshotId", str)
Clock = Callable[[], datetime]

DEFAULT_KEEP = 10
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
_TIMESTAMP_RE = r"(?P<stamp>\d{8}_\d{6}_\d{6})(?:_(?P<seq>\d+))?"


class NoSnapshotError(Exception):
    """No snapshot exists for the requested file."""

    def __init__(self, path: Path, snapshot_id: str | None = None):
        self.path = path
        self.snapshot_id = snapshot_id
        if snapshot_id:
            message = f"No backup {snapshot_id} for {path.name}"
        else:
            message = f"No backups available for {path}"
        super().__init__(message)


def directory_key(directory: Path) -> str:
    """Short stable key for a directory, used in snapshot family names."""
    return hashlib.sha256(str(directory).encode("utf-8")).hexdigest()[:8]


@dataclass(frozen=True)
class Snapshot:
    """A stored snapshot of one file."""

    id: SnapshotId
    path: Path
    taken_at: datetime
    seq: int = 0

    @property
    def size(self) -> int:
        return self.path.stat().st_size


class BackupManager:
    """Creates, lists, restores and prunes snapshots.

    Args:
        backup_dir: Directory holding every snapshot
        clock: Returns the current time, used to name snapshots
        keep: Snapshots kept per family when pruning
        dry_run: When True nothing is written, snapshotted or deleted
        home: Home directory, used to tell the user CLAUDE.md from project ones
    """

    def __init__(
        self,
        backup_dir: Path,
        clock: Clock = datetime.now,
        keep: int = DEFAULT_KEEP,
        dry_run: bool = False,
        home: Path | None = None,
    ):
        self.backup_dir = backup_dir
        self.clock = clock
        self.keep = keep
        self.dry_run = dry_run
        self.home = home or Path.home()

    def family(self, path: Path) -> tuple[str, str]:
        """Return the (family, extension) pair used to name snapshots of path.

        Files in the user's ``~/.claude`` directory keep a plain family name.
        Anything else, such as a project's CLAUDE.md or local settings, gets
        a short hash of its directory so two projects never share snapshots.
        """
        name = path.name
        if "." in name:
            stem, ext = name.rsplit(".", 1)
        else:
            stem, ext = name, "bak"

        user_dir = (self.home / ".claude").resolve()
        parent = path.parent.resolve()
        user_scoped = parent == user_dir or user_dir in parent.parents

        if name == "CLAUDE.md":
            stem = "CLAUDE_user" if user_scoped else "CLAUDE_project"
        if not user_scoped:
            stem = f"{stem}-{directory_key(parent)}"
        return stem, ext

    def _pattern(self, path: Path) -> re.Pattern[str]:
        stem, ext = self.family(path)
        return re.compile(rf"^{re.escape(stem)}_{_TIMESTAMP_RE}\.{re.escape(ext)}$")

    def list_snapshots(self, path: Path) -> list[Snapshot]:
        """List snapshots of a file, newest first.

        Args:
            path: The protected file

        Returns:
            Snapshots ordered from newest to oldest
        """
        if not self.backup_dir.is_dir():
            return []
        pattern = self._pattern(path)
        snapshots: list[Snapshot] = []
        for entry in self.backup_dir.iterdir():
            match = pattern.match(entry.name)
            if not match or not entry.is_file():
                continue
            snapshots.append(
                Snapshot(
                    id=SnapshotId(entry.name),
                    path=entry,
                    taken_at=datetime.strptime(match["stamp"], TIMESTAMP_FORMAT),
                    seq=int(match["seq"] or 0),
                )
            )
        snapshots.sort(key=lambda s: (s.taken_at, s.seq), reverse=True)
        return snapshots

    def snapshot(self, path: Path) -> SnapshotId | None:
        """Copy a file's current bytes into the backup directory.

        Args:
            path: File to snapshot

        Returns:
            The new snapshot id, or None if the file does not exist or this
            is a dry run
        """
        if self.dry_run:
            logger.debug("Dry run, not snapshotting %s", path)
            return None
        if not path.is_file():
            logger.debug("Nothing to back up, file not found: %s", path)
            return None

        ensure_directory(self.backup_dir)
        stem, ext = self.family(path)
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        target = self.backup_dir / f"{stem}_{stamp}.{ext}"
        seq = 0
        while target.exists():
            seq += 1
            target = self.backup_dir / f"{stem}_{stamp}_{seq}.{ext}"

        copy_bytes(path, target)
        logger.info("Backup created: %s", target)
        return SnapshotId(target.name)

    def write(self, path: Path, content: str) -> bool:
        """Snapshot a file and atomically replace its content.

        Args:
            path: File to write
            content: New content

        Returns:
            True if the file was written, False for a dry run or when the
            content is already identical
        """
        if path.is_file() and read_text_file(path) == content:
            logger.debug("Unchanged, not writing %s", path)
            return False
        if self.dry_run:
            logger.info("Dry run, would write %s", path)
            return False

        self.snapshot(path)
        atomic_write_text(path, content)
        logger.info("Wrote %s", path)
        return True

    def restore(self, path: Path, snapshot_id: str) -> SnapshotId | None:
        """Restore a specific snapshot over a file.

        The current file is snapshotted first so the restore can itself be
        undone.

        Args:
            path: File to restore
            snapshot_id: Snapshot name, or a unique part of it such as the timestamp

        Returns:
            Id of the safety snapshot, or None if the file did not exist

        Raises:
            NoSnapshotError: If no matching snapshot exists
        """
        snapshots = self.list_snapshots(path)
        match = next((s for s in snapshots if s.id == snapshot_id), None)
        if match is None:
            match = next((s for s in snapshots if snapshot_id in s.id), None)
        if match is None:
            raise NoSnapshotError(path, snapshot_id)
        return self._restore_from(path, match)

    def restore_latest(self, path: Path) -> bool:
        """Restore the most recent snapshot taken before this call.

        Args:
            path: File to restore

        Returns:
            True if the file was restored, False for a dry run

        Raises:
            NoSnapshotError: If the file has no snapshots
        """
        snapshots = self.list_snapshots(path)
        if not snapshots:
            raise NoSnapshotError(path)
        if self.dry_run:
            logger.info("Dry run, would restore %s from %s", path, snapshots[0].id)
            return False
        self._restore_from(path, snapshots[0])
        return True

    def _restore_from(self, path: Path, snapshot: Snapshot) -> SnapshotId | None:
        if self.dry_run:
            return None
        data = snapshot.path.read_bytes()
        safety = self.snapshot(path)
        if safety:
            logger.info("Safety backup before restore: %s", safety)
        atomic_write_bytes(path, data)
        logger.info("Restored %s from %s", path, snapshot.id)
        return safety

    def prune(self, path: Path, keep: int | None = None) -> list[SnapshotId]:
        """Delete all but the newest snapshots of a file.

        Args:
            path: The protected file
            keep: Snapshots to keep (defaults to the manager's keep)

        Returns:
            Ids of the deleted snapshots
        """
        keep = self.keep if keep is None else keep
        snapshots = self.list_snapshots(path)
        stale = snapshots[keep:]
        if self.dry_run or not stale:
            return []
        for snapshot in stale:
            snapshot.path.unlink(missing_ok=True)
        logger.info("Pruned %d old backups of %s", len(stale), path.name)
        return [s.id for s in stale]
