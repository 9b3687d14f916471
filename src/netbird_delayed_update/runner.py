"""
Per-run orchestration for the NetBird delayed auto-update.

One run, in order:
1. Acquire the single-run lock (contention is a benign skip)
2. Self-update check (best effort)
3. Random jitter sleep
4. Package manager prerequisites
5. Query installed and candidate versions, load the aging state
6. Decide; on a mature candidate upgrade and restart the service
7. Persist the aging state
8. Surface an upgrade failure only after the state was persisted
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from netbird_delayed_update import __version__
from netbird_delayed_update.config import AppConfig
from netbird_delayed_update.errors import (
    AlreadyLockedError,
    FailedPreconditionError,
    StateWriteError,
    UpdaterError,
    UpgradeFailedError,
)
from netbird_delayed_update.logging import get_logger
from netbird_delayed_update.updates.apt_backend import AptUpgrader, AptVersionSource
from netbird_delayed_update.updates.backends import Upgrader, VersionSource
from netbird_delayed_update.updates.engine import (
    Decision,
    Evaluation,
    StateChange,
    decide,
)
from netbird_delayed_update.updates.lock import RunLock
from netbird_delayed_update.updates.self_update import SelfUpdater, SelfUpdateResult
from netbird_delayed_update.updates.state_store import StateStore

logger = get_logger(__name__)


@dataclass
class RunReport:
    """
    What happened during one run.

    Attributes:
        locked: Another run held the lock; nothing was done.
        self_update: Result of the self-update check.
        evaluation: Decision engine result, if the checks got that far.
        upgraded: The mature candidate was installed.
        restarted: The managed service was restarted after the upgrade.
        error: Fatal error that ended the run.
    """

    locked: bool = False
    self_update: SelfUpdateResult | None = None
    evaluation: Evaluation | None = None
    upgraded: bool = False
    restarted: bool = False
    error: UpdaterError | None = None

    @property
    def exit_code(self) -> int:
        """0 for success or a benign skip, 1 for a fatal error."""
        return 1 if self.error is not None else 0


class DelayedUpdateRunner:
    """
    Runs one delayed-update check.

    Collaborators default to the APT backend, the configured state file and
    lock file, and the GitHub self-updater; tests inject their own.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        version_source: VersionSource | None = None,
        upgrader: Upgrader | None = None,
        state_store: StateStore | None = None,
        run_lock: RunLock | None = None,
        self_updater: SelfUpdater | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            config: Application configuration.
            version_source: Installed/candidate version queries.
            upgrader: Package upgrades and service restart.
            state_store: Aging state persistence.
            run_lock: Single-run lock.
            self_updater: Self-update check.
            clock: Returns the current time.
            sleep: Awaitable sleep used for the jitter delay.
            rng: Random source for the jitter delay.
        """
        rollout = config.rollout
        self.config = config
        self._version_source = version_source or AptVersionSource(
            timeout=rollout.command_timeout_seconds
        )
        self._upgrader = upgrader or AptUpgrader(
            service_name=rollout.restart_service_name,
            timeout=rollout.command_timeout_seconds,
        )
        self._state_store = state_store or StateStore(config.paths.state_file_path)
        self._run_lock = run_lock or RunLock(config.paths.lock_file)
        self._self_updater = self_updater or SelfUpdater.from_config(
            config.self_update, __version__
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run(self) -> RunReport:
        """
        Execute one run.

        Returns:
            RunReport; fatal errors are recorded in it, not raised.
        """
        report = RunReport()
        logger.info(f"Starting NetBird delayed auto-update (version {__version__}).")

        try:
            handle = self._run_lock.acquire()
        except AlreadyLockedError as e:
            logger.info(f"{e.message}; skipping this run.")
            report.locked = True
            return report
        except OSError as e:
            report.error = FailedPreconditionError(
                f"Cannot open lock file '{self._run_lock.path}': {e}",
                details={"path": str(self._run_lock.path)},
            )
            self._log_fatal(report.error)
            return report

        with handle:
            try:
                await self._run_locked(report)
            except UpdaterError as e:
                report.error = e
                self._log_fatal(e)
                return report

        logger.info("NetBird delayed update finished.")
        return report

    async def _run_locked(self, report: RunReport) -> None:
        rollout = self.config.rollout
        package = rollout.package_name

        report.self_update = await self._self_updater.check_and_apply()

        await self._jitter()

        await self._upgrader.check_prerequisites()

        installed = await self._version_source.get_installed_version(package)
        candidate = None
        if installed is not None:
            candidate = await self._version_source.get_candidate_version(package)

        prior_state = self._state_store.load()
        evaluation = decide(
            installed, candidate, prior_state, self._clock(), rollout.delay_days
        )
        report.evaluation = evaluation
        self._log_evaluation(evaluation)

        upgrade_error: UpgradeFailedError | None = None
        if evaluation.upgrade_authorized:
            logger.info(
                f"Upgrading {package}: {evaluation.installed} -> {evaluation.candidate} "
                f"(version has matured for {evaluation.age_days} day(s)).",
                extra={"packages": rollout.packages},
            )
            try:
                await self._upgrader.upgrade(rollout.packages, evaluation.candidate)
            except UpgradeFailedError as e:
                upgrade_error = e
            else:
                report.upgraded = True
                report.restarted = await self._upgrader.restart_managed_service()

        self._persist(evaluation)

        if upgrade_error is not None:
            raise upgrade_error

    async def _jitter(self) -> None:
        max_delay = self.config.rollout.max_random_delay_seconds
        if max_delay <= 0:
            return
        seconds = self._rng.randint(0, max_delay)
        if seconds > 0:
            logger.info(
                f"Sleeping for {seconds} second(s) before running checks (random jitter)."
            )
            await self._sleep(seconds)

    def _persist(self, evaluation: Evaluation) -> None:
        try:
            if evaluation.state_change is StateChange.SAVE and evaluation.state:
                self._state_store.save(evaluation.state)
            elif evaluation.state_change is StateChange.CLEAR:
                self._state_store.clear()
        except StateWriteError as e:
            logger.warning(
                f"{e.message}; aging progress may be lost.",
                extra={"error_code": e.error_code, "details": e.details},
            )

    def _log_evaluation(self, evaluation: Evaluation) -> None:
        package = self.config.rollout.package_name
        delay_days = self.config.rollout.delay_days
        decision = evaluation.decision
        extra = {
            "decision": decision.value,
            "installed": evaluation.installed,
            "candidate": evaluation.candidate,
        }

        if decision is Decision.NOT_INSTALLED:
            logger.info(
                f"Package '{package}' is not installed. "
                "Auto-install is not performed.",
                extra=extra,
            )
        elif decision is Decision.NO_CANDIDATE:
            logger.info(
                f"No candidate version found in APT for package '{package}'. "
                "Nothing to do.",
                extra=extra,
            )
        elif decision is Decision.ALREADY_CURRENT:
            logger.info(
                f"Local version {evaluation.installed} is already >= repository "
                f"version {evaluation.candidate}. No update needed.",
                extra=extra,
            )
        elif decision is Decision.NEW_CANDIDATE:
            logger.info(
                f"New candidate version detected: {evaluation.candidate}. "
                f"First seen now, waiting {delay_days} day(s).",
                extra=extra,
            )
        else:
            logger.info(
                f"Candidate version {evaluation.candidate} has been in the "
                f"repository for approximately {evaluation.age_days} day(s).",
                extra={**extra, "age_days": evaluation.age_days},
            )
            if decision is Decision.STILL_AGING:
                logger.info(
                    f"Age is less than {delay_days} day(s), deferring update."
                )

    @staticmethod
    def _log_fatal(error: UpdaterError) -> None:
        logger.error(
            error.message,
            extra={"error_code": error.error_code, "details": error.details},
        )
