"""
Delayed-rollout decision engine for the NetBird delayed auto-update.

decide() maps (installed version, candidate version, stored aging state,
current time, configured delay) to a decision and the state to persist.
It performs no I/O.

Decisions, in priority order:
- not_installed: the package is not installed; nothing is evaluated
- no_candidate: the repository offers no version
- already_current: installed >= candidate; stale aging state is cleared
- new_candidate: the candidate differs from the tracked one; aging restarts
- still_aging: same candidate, younger than the delay
- mature: same candidate, at least as old as the delay; upgrade authorized

A superseded candidate's aging progress is discarded and never resumed, even
if the same version string is offered again later.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from netbird_delayed_update.updates.state_store import AgingState, as_utc
from netbird_delayed_update.updates.version import version_gte

# apt-cache policy prints this when no version is offered
NO_CANDIDATE_MARKER = "(none)"


class Decision(str, Enum):
    """Outcome of one evaluation."""

    NOT_INSTALLED = "not_installed"
    NO_CANDIDATE = "no_candidate"
    ALREADY_CURRENT = "already_current"
    NEW_CANDIDATE = "new_candidate"
    STILL_AGING = "still_aging"
    MATURE = "mature"


class StateChange(str, Enum):
    """What the caller must do with the stored aging state."""

    KEEP = "keep"
    SAVE = "save"
    CLEAR = "clear"


@dataclass(frozen=True)
class Evaluation:
    """
    Result of decide().

    Attributes:
        decision: The decision reached.
        state: State to persist when state_change is SAVE, otherwise the
            untouched prior state (KEEP) or None (CLEAR).
        state_change: Persistence action for the caller.
        installed: Installed version that was evaluated.
        candidate: Candidate version that was evaluated.
        age: Age of the tracked candidate (zero unless still_aging or mature).
    """

    decision: Decision
    state: AgingState | None
    state_change: StateChange
    installed: str | None = None
    candidate: str | None = None
    age: timedelta = timedelta(0)

    @property
    def age_days(self) -> int:
        """Age in whole days."""
        return self.age.days

    @property
    def upgrade_authorized(self) -> bool:
        """True only for a mature candidate."""
        return self.decision is Decision.MATURE


def candidate_age(state: AgingState, now: datetime) -> timedelta:
    """
    Age of the tracked candidate, clamped to zero.

    A clock that jumped backwards yields zero, never a negative age.
    """
    age = as_utc(now) - state.first_seen_at
    if age < timedelta(0):
        return timedelta(0)
    return age


def has_candidate(candidate: str | None) -> bool:
    """Return False for an absent, empty or "(none)" candidate."""
    if candidate is None:
        return False
    candidate = candidate.strip()
    return bool(candidate) and candidate != NO_CANDIDATE_MARKER


def decide(
    installed: str | None,
    candidate: str | None,
    prior_state: AgingState | None,
    now: datetime,
    delay_days: int,
) -> Evaluation:
    """
    Decide whether to defer or apply an upgrade.

    Args:
        installed: Installed version, or None if the package is not installed.
        candidate: Candidate version offered by the repository, or None.
        prior_state: Stored aging state, or None.
        now: Current time.
        delay_days: Minimum candidate age in days.

    Returns:
        Evaluation with the decision and the state action.

    Raises:
        ValueError: If delay_days is negative.
        InvalidArgumentError: If a version string cannot be parsed.
    """
    if delay_days < 0:
        raise ValueError(f"delay_days must be >= 0, got {delay_days}")

    if not installed:
        return Evaluation(
            decision=Decision.NOT_INSTALLED,
            state=prior_state,
            state_change=StateChange.KEEP,
            candidate=candidate,
        )

    if not has_candidate(candidate):
        return Evaluation(
            decision=Decision.NO_CANDIDATE,
            state=prior_state,
            state_change=StateChange.KEEP,
            installed=installed,
        )

    candidate = (candidate or "").strip()

    if version_gte(installed, candidate):
        return Evaluation(
            decision=Decision.ALREADY_CURRENT,
            state=None,
            state_change=StateChange.CLEAR,
            installed=installed,
            candidate=candidate,
        )

    now = as_utc(now)

    if prior_state is None or prior_state.candidate_version != candidate:
        return Evaluation(
            decision=Decision.NEW_CANDIDATE,
            state=AgingState(
                candidate_version=candidate,
                first_seen_at=now,
                last_check_at=now,
            ),
            state_change=StateChange.SAVE,
            installed=installed,
            candidate=candidate,
        )

    age = candidate_age(prior_state, now)
    decision = (
        Decision.MATURE
        if age >= timedelta(days=delay_days)
        else Decision.STILL_AGING
    )

    return Evaluation(
        decision=decision,
        state=prior_state.checked_at(now),
        state_change=StateChange.SAVE,
        installed=installed,
        candidate=candidate,
        age=age,
    )
