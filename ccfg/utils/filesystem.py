"""Filesystem utilities for ccfg."""

import os
import tempfile
from pathlib import Path


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def read_text_file(path: Path) -> str:
    """Read a text file without translating line endings.

    Args:
        path: Path to the file

    Returns:
        File contents as a string, with ``\\r\\n`` and ``\\r`` kept as on disk
    """
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def read_text_if_exists(path: Path) -> str | None:
    """Read a text file, returning None when it does not exist."""
    if not path.is_file():
        return None
    return read_text_file(path)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write bytes to a file through a temporary file and rename.

    The temporary file lives in the destination directory so the final
    ``os.replace`` never crosses a filesystem boundary. A reader either sees
    the old content or the new content, never a partial write.

    Args:
        path: Destination file
        data: Bytes to write
    """
    ensure_directory(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o777)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, content: str) -> None:
    """Atomically write text as UTF-8, line endings untouched.

    Args:
        path: Destination file
        content: Text to write
    """
    atomic_write_bytes(path, content.encode("utf-8"))


def copy_bytes(src: Path, dest: Path) -> Path:
    """Copy a file's bytes to a destination, creating parent directories.

    Args:
        src: Source file path
        dest: Destination file path

    Returns:
        Path to the copied file
    """
    ensure_directory(dest.parent)
    dest.write_bytes(src.read_bytes())
    return dest
