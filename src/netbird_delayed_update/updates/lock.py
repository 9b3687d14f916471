"""
Single-run guard for the NetBird delayed auto-update.

An exclusive, non-blocking flock() on a well-known file ensures that at most
one run per host performs the decision-and-upgrade sequence. The kernel drops
the lock when the holding process exits, including on a crash, so a dead run
never blocks later runs.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from types import TracebackType

from netbird_delayed_update.errors import AlreadyLockedError
from netbird_delayed_update.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LOCK_FILE = Path("/run/netbird-delayed-update.lock")


class LockHandle:
    """
    A held run lock.

    Releases the lock on release(), on leaving a with-block, or when the
    process ends.
    """

    def __init__(self, path: Path, fd: int) -> None:
        self._path = path
        self._fd: int | None = fd

    @property
    def path(self) -> Path:
        """Get the lock file path."""
        return self._path

    @property
    def held(self) -> bool:
        """Whether the lock is still held by this handle."""
        return self._fd is not None

    def release(self) -> None:
        """Release the lock. Safe to call more than once."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released run lock", extra={"path": str(self._path)})

    def __enter__(self) -> LockHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class RunLock:
    """
    Advisory exclusive lock on a well-known file.

    Example:
        >>> with RunLock("/run/netbird-delayed-update.lock").acquire():
        ...     run_checks()
    """

    def __init__(self, path: Path | str | None = None) -> None:
        """
        Initialize the RunLock.

        Args:
            path: Lock file path. Defaults to /run/netbird-delayed-update.lock.
        """
        self._path = Path(path) if path else DEFAULT_LOCK_FILE

    @property
    def path(self) -> Path:
        """Get the lock file path."""
        return self._path

    def acquire(self) -> LockHandle:
        """
        Acquire the lock without waiting.

        Returns:
            LockHandle holding the lock.

        Raises:
            AlreadyLockedError: If another process holds the lock.
            OSError: If the lock file cannot be opened.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise AlreadyLockedError(
                "Another delayed-update run is already in progress",
                details={"path": str(self._path)},
            ) from e
        except OSError:
            os.close(fd)
            raise

        logger.debug("Acquired run lock", extra={"path": str(self._path)})
        return LockHandle(self._path, fd)
