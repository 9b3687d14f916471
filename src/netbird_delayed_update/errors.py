"""
Error types for the NetBird delayed auto-update.

This module defines the UpdaterError base class and subclasses for the error
categories of a delayed-update run. Recoverable conditions are logged and
swallowed where they are detected; only the errors that represent an
actionable failure reach the command-line entry point and turn into a
non-zero exit status.
"""

from __future__ import annotations

from typing import Any


class UpdaterError(Exception):
    """
    Base exception class for delayed-update errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "missing_dependency", "upgrade_failed", "state_write_failed").
        message: Human-readable error message.
        details: Optional structured details (e.g., versions, paths, stderr).

    Example:
        >>> raise UpdaterError(
        ...     error_code="upgrade_failed",
        ...     message="apt-get install failed",
        ...     details={"packages": ["netbird"]},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdaterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for structured logging.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdaterError):
    """
    Error raised for invalid input values.

    Used for malformed version strings, release tags and command-line values.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class UnavailableError(UpdaterError):
    """
    Error raised when an external command or service is unavailable.

    Used when a command cannot be executed or times out.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(UpdaterError):
    """
    Error raised when a precondition for the operation is not met.

    Used for filesystem preconditions such as an uncreatable directory.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class MissingDependencyError(UpdaterError):
    """
    Error raised when a required external tool is not available.

    Fatal: the run aborts with a non-zero exit status.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a MissingDependencyError."""
        super().__init__(
            error_code="missing_dependency", message=message, details=details
        )


class UpgradeFailedError(UpdaterError):
    """
    Error raised when the package upgrade failed, including its fallback.

    Fatal for the run, but the aging state is still persisted so the next
    run retries the mature candidate without re-aging it.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UpgradeFailedError."""
        super().__init__(error_code="upgrade_failed", message=message, details=details)


class StateWriteError(UpdaterError):
    """Error raised when the aging state cannot be written or removed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a StateWriteError."""
        super().__init__(
            error_code="state_write_failed", message=message, details=details
        )


class AlreadyLockedError(UpdaterError):
    """
    Error raised when another run already holds the run lock.

    This is a benign skip, not a failure.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an AlreadyLockedError."""
        super().__init__(error_code="already_locked", message=message, details=details)


class SelfUpdateError(UpdaterError):
    """
    Error raised inside the self-updater.

    The error_code is the skip reason reported for the run (for example
    "network_error" or "write_failed"); it never escapes the self-updater.
    """

    def __init__(
        self,
        reason: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a SelfUpdateError with its skip reason."""
        super().__init__(error_code=reason, message=message, details=details)
