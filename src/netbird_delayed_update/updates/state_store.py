"""
Aging state persistence for the NetBird delayed auto-update.

The state file is a small JSON object:

    {
      "candidateVersion": "0.59.12-1",
      "firstSeenUtc": "2025-01-15T04:00:00Z",
      "lastCheckUtc": "2025-01-17T04:12:31Z"
    }

Readers ignore unknown keys, so fields can be added without breaking older
versions. The PascalCase keys written by the shell version of this tool are
accepted as well. A missing, unreadable or malformed file is treated as "no
state": aging starts over, the run continues.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from netbird_delayed_update.errors import StateWriteError
from netbird_delayed_update.logging import get_logger
from netbird_delayed_update.updates.operations import atomic_write_text

logger = get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    """Normalize a timestamp to UTC; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_utc(value: datetime) -> str:
    """Format a timestamp as ISO 8601 UTC with a "Z" suffix."""
    return as_utc(value).isoformat().replace("+00:00", "Z")


class AgingState(BaseModel):
    """
    Aging progress of the current repository candidate.

    Attributes:
        candidate_version: The candidate version being aged.
        first_seen_at: When this exact version was first seen as candidate.
        last_check_at: When the candidate was last evaluated (diagnostic only).
    """

    model_config = ConfigDict(frozen=True)

    candidate_version: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices(
            "candidate_version", "candidateVersion", "CandidateVersion"
        ),
        serialization_alias="candidateVersion",
        description="Candidate version being aged",
    )
    first_seen_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("first_seen_at", "firstSeenUtc", "FirstSeenUtc"),
        serialization_alias="firstSeenUtc",
        description="UTC timestamp when the version was first seen as candidate",
    )
    last_check_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("last_check_at", "lastCheckUtc", "LastCheckUtc"),
        serialization_alias="lastCheckUtc",
        description="UTC timestamp of the most recent evaluation",
    )

    @field_validator("first_seen_at", "last_check_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Normalize timestamps to UTC; naive values are taken as UTC."""
        return as_utc(v)

    @field_serializer("first_seen_at", "last_check_at")
    def serialize_timestamp(self, v: datetime) -> str:
        """Serialize timestamps as ISO 8601 UTC strings."""
        return format_utc(v)

    def to_record(self) -> dict[str, Any]:
        """Return the persisted field-name/value record."""
        return self.model_dump(by_alias=True)

    def checked_at(self, now: datetime) -> AgingState:
        """Return a copy with last_check_at advanced to now."""
        return self.model_copy(update={"last_check_at": as_utc(now)})


class StateStore:
    """
    Loads and saves the aging state file.

    Attributes:
        path: Path of the state file.
    """

    DEFAULT_STATE_FILE = Path("/var/lib/netbird-delayed-update/state.json")

    def __init__(self, state_file: Path | str | None = None) -> None:
        """
        Initialize the StateStore.

        Args:
            state_file: Path to the state file. Defaults to
                /var/lib/netbird-delayed-update/state.json.
        """
        self._state_file = Path(state_file) if state_file else self.DEFAULT_STATE_FILE

    @property
    def path(self) -> Path:
        """Get the state file path."""
        return self._state_file

    def load(self) -> AgingState | None:
        """
        Load the aging state.

        Returns:
            The stored AgingState, or None if there is no usable state.
        """
        try:
            raw = self._state_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(
                f"Failed to read state file '{self._state_file}', ignoring it.",
                extra={"path": str(self._state_file), "error": str(e)},
            )
            return None

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(
                f"Failed to parse state file '{self._state_file}', ignoring it.",
                extra={"path": str(self._state_file), "error": str(e)},
            )
            return None

        try:
            state = AgingState.model_validate(data)
        except ValidationError as e:
            logger.warning(
                f"State file '{self._state_file}' is incomplete, ignoring it.",
                extra={"path": str(self._state_file), "error": str(e)},
            )
            return None

        logger.debug(
            "Loaded aging state",
            extra={
                "path": str(self._state_file),
                "candidate": state.candidate_version,
                "first_seen": format_utc(state.first_seen_at),
            },
        )
        return state

    def save(self, state: AgingState) -> None:
        """
        Save the aging state with an atomic write.

        Args:
            state: State to persist.

        Raises:
            StateWriteError: If the file cannot be written.
        """
        payload = json.dumps(state.to_record(), indent=2, sort_keys=True) + "\n"

        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(self._state_file, payload)
        except OSError as e:
            raise StateWriteError(
                f"Failed to write state file '{self._state_file}'",
                details={"path": str(self._state_file), "error": str(e)},
            ) from e

        logger.debug(
            "Saved aging state",
            extra={"path": str(self._state_file), "candidate": state.candidate_version},
        )

    def clear(self) -> bool:
        """
        Remove the state file.

        Returns:
            True if a file was removed, False if there was none.

        Raises:
            StateWriteError: If the file exists but cannot be removed.
        """
        try:
            self._state_file.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StateWriteError(
                f"Failed to remove state file '{self._state_file}'",
                details={"path": str(self._state_file), "error": str(e)},
            ) from e

        logger.debug("Removed aging state", extra={"path": str(self._state_file)})
        return True
