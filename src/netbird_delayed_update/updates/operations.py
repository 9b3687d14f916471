"""
Atomic filesystem operations for the NetBird delayed auto-update.

CRITICAL: a file replaced by this module is never visible half-written.
The pattern is:
1. Write the content to a temporary file in the destination directory
2. Flush and fsync the temporary file
3. Atomic rename: os.replace(temp_path, final_path)

The temporary file lives beside the destination so the rename never crosses
a filesystem boundary.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

from netbird_delayed_update.errors import FailedPreconditionError
from netbird_delayed_update.logging import get_logger

logger = get_logger(__name__)

EXECUTABLE_BITS = 0o111


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions (default 0o755).

    Returns:
        The directory path.

    Raises:
        FailedPreconditionError: If directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def atomic_write_bytes(
    path: Path,
    data: bytes,
    *,
    mode: int | None = None,
) -> None:
    """
    Atomically replace a file with the given content.

    Args:
        path: Destination file.
        data: Full new content.
        mode: Permission bits for the new file. When None, the mode of the
            existing destination is kept (0o644 for a new file).

    Raises:
        OSError: If writing or renaming fails. The destination is untouched
            in that case and the temporary file is removed.
    """
    if mode is None:
        try:
            mode = path.stat().st_mode & 0o7777
        except FileNotFoundError:
            mode = 0o644

    fd, temp_name = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except OSError:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise

    logger.debug(
        "Atomic write completed",
        extra={"path": str(path), "size": len(data)},
    )


def atomic_write_text(path: Path, text: str, *, mode: int | None = None) -> None:
    """Atomically replace a file with UTF-8 text."""
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)


def is_writable_file(path: Path) -> bool:
    """
    Check that a file can be replaced in place.

    Both the file and its directory must be writable: the atomic rename
    creates a new directory entry.
    """
    return (
        path.is_file()
        and os.access(path, os.W_OK)
        and os.access(path.parent, os.W_OK)
    )
