"""
Tests for the errors module.

This test module validates:
- UpdaterError base class functionality
- Error subclasses and their error codes
- Error serialization (to_dict)
"""

from __future__ import annotations

import pytest

from netbird_delayed_update.errors import (
    AlreadyLockedError,
    FailedPreconditionError,
    InvalidArgumentError,
    MissingDependencyError,
    SelfUpdateError,
    StateWriteError,
    UnavailableError,
    UpdaterError,
    UpgradeFailedError,
)

# =============================================================================
# Tests for UpdaterError Base Class
# =============================================================================


class TestUpdaterError:
    """Tests for UpdaterError base class."""

    def test_init_with_all_args(self) -> None:
        """Test UpdaterError initialization with all arguments."""
        error = UpdaterError(
            error_code="upgrade_failed",
            message="apt-get install failed",
            details={"packages": ["netbird"]},
        )

        assert error.error_code == "upgrade_failed"
        assert error.message == "apt-get install failed"
        assert error.details == {"packages": ["netbird"]}

    def test_init_with_minimal_args(self) -> None:
        """Test details default to an empty dict."""
        error = UpdaterError(error_code="test_error", message="Test message")
        assert error.details == {}

    def test_str_representation(self) -> None:
        """Test str() is the message."""
        error = UpdaterError(error_code="test_error", message="Test error message")
        assert str(error) == "Test error message"

    def test_repr_representation(self) -> None:
        """Test repr() names the class and all fields."""
        error = UpdaterError(
            error_code="test_error", message="msg", details={"key": "value"}
        )
        assert repr(error) == (
            "UpdaterError(error_code='test_error', message='msg', "
            "details={'key': 'value'})"
        )

    def test_to_dict(self) -> None:
        """Test conversion to a dictionary."""
        error = UpdaterError(
            error_code="test_error", message="msg", details={"key": "value"}
        )
        assert error.to_dict() == {
            "error_code": "test_error",
            "message": "msg",
            "details": {"key": "value"},
        }


# =============================================================================
# Tests for Error Subclasses
# =============================================================================


class TestErrorSubclasses:
    """Tests for the error subclasses."""

    @pytest.mark.parametrize(
        ("error_class", "error_code"),
        [
            (InvalidArgumentError, "invalid_argument"),
            (UnavailableError, "unavailable"),
            (FailedPreconditionError, "failed_precondition"),
            (MissingDependencyError, "missing_dependency"),
            (UpgradeFailedError, "upgrade_failed"),
            (StateWriteError, "state_write_failed"),
            (AlreadyLockedError, "already_locked"),
        ],
    )
    def test_error_codes(self, error_class: type[UpdaterError], error_code: str) -> None:
        """Test each subclass carries its error code."""
        error = error_class("Something happened", details={"k": 1})

        assert isinstance(error, UpdaterError)
        assert error.error_code == error_code
        assert error.message == "Something happened"
        assert error.details == {"k": 1}

    def test_self_update_error_uses_reason(self) -> None:
        """Test SelfUpdateError uses the skip reason as its error code."""
        error = SelfUpdateError("network_error", "GitHub unreachable")

        assert isinstance(error, UpdaterError)
        assert error.error_code == "network_error"
        assert error.message == "GitHub unreachable"

    def test_errors_can_be_raised_and_caught_as_base(self) -> None:
        """Test subclasses are caught as UpdaterError."""
        with pytest.raises(UpdaterError) as exc_info:
            raise MissingDependencyError("apt-get not found")

        assert exc_info.value.error_code == "missing_dependency"
