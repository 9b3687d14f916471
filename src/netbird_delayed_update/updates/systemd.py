"""
systemd integration for the NetBird delayed auto-update.

This module provides:
- Restarting the managed NetBird service after an upgrade
- Rendering, installing and removing the oneshot service + daily timer that
  run the delayed-update check
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from netbird_delayed_update.config import DAILY_TIME_PATTERN
from netbird_delayed_update.errors import (
    FailedPreconditionError,
    InvalidArgumentError,
    UnavailableError,
)
from netbird_delayed_update.logging import get_logger
from netbird_delayed_update.process_utils import command_available, run_command
from netbird_delayed_update.updates.operations import (
    atomic_write_bytes,
    atomic_write_text,
    ensure_directory,
)

if TYPE_CHECKING:
    from netbird_delayed_update.config import AppConfig

logger = get_logger(__name__)


async def _run_systemctl(
    *args: str,
    timeout: float = 30.0,
) -> tuple[int, str, str]:
    """
    Run a systemctl command.

    Args:
        *args: Arguments to pass to systemctl.
        timeout: Command timeout in seconds.

    Returns:
        Tuple of (return_code, stdout, stderr).

    Raises:
        UnavailableError: If systemctl is not available or times out.
    """
    return await run_command("systemctl", *args, timeout=timeout)


async def is_unit_installed(unit_name: str) -> bool:
    """
    Check whether a unit file is known to systemd.

    Args:
        unit_name: Unit name (e.g., "netbird.service").

    Returns:
        True if the unit appears in `systemctl list-unit-files`.
    """
    try:
        returncode, stdout, _ = await _run_systemctl(
            "list-unit-files", "--no-legend", "--no-pager", timeout=30.0
        )
    except UnavailableError:
        return False

    if returncode != 0:
        return False

    for line in stdout.splitlines():
        fields = line.split()
        if fields and fields[0] == unit_name:
            return True
    return False


async def restart_service(service_name: str, timeout: float = 60.0) -> bool:
    """
    Restart a systemd service.

    Args:
        service_name: Name of the service to restart.
        timeout: Timeout for the restart operation.

    Returns:
        True if restart succeeded, False otherwise.
    """
    try:
        returncode, stdout, stderr = await _run_systemctl(
            "restart", service_name, timeout=timeout
        )
    except UnavailableError as e:
        logger.warning(f"Failed to restart {service_name}: {e.message}")
        return False

    if returncode != 0:
        logger.warning(
            f"Failed to restart {service_name}.service via systemctl.",
            extra={"service": service_name, "stderr": (stderr or stdout).strip()},
        )
        return False

    logger.info(f"Restarted {service_name}.service via systemctl.")
    return True


async def restart_managed_service(
    service_name: str = "netbird",
    cli_name: str = "netbird",
    timeout: float = 60.0,
) -> bool:
    """
    Restart the managed service after an upgrade. Best effort, never raises.

    The systemd unit is preferred; the NetBird CLI (`netbird service restart`)
    is used when no unit file exists.

    Args:
        service_name: systemd service name without the ".service" suffix.
        cli_name: Command offering `service restart` as a fallback.
        timeout: Timeout for the restart command.

    Returns:
        True if a restart was performed successfully.
    """
    if command_available("systemctl") and await is_unit_installed(
        f"{service_name}.service"
    ):
        return await restart_service(service_name, timeout=timeout)

    if command_available(cli_name):
        try:
            returncode, _, stderr = await run_command(
                cli_name, "service", "restart", timeout=timeout
            )
        except UnavailableError as e:
            logger.warning(
                f"Failed to restart NetBird via '{cli_name} service restart': {e.message}"
            )
            return False
        if returncode != 0:
            logger.warning(
                f"Failed to restart NetBird via '{cli_name} service restart'.",
                extra={"stderr": stderr.strip()},
            )
            return False
        logger.info(f"Restarted NetBird via '{cli_name} service restart'.")
        return True

    logger.info("Could not find a systemd service or CLI restart command for NetBird.")
    return False


async def reload_systemd_daemon() -> bool:
    """
    Reload the systemd daemon (daemon-reload).

    Returns:
        True if reload succeeded, False otherwise.
    """
    try:
        returncode, stdout, stderr = await _run_systemctl("daemon-reload", timeout=30.0)
    except UnavailableError as e:
        logger.error(f"Daemon reload failed: {e.message}")
        return False

    if returncode != 0:
        logger.error(f"Daemon reload failed: {stderr or stdout}")
        return False

    return True


# =============================================================================
# Unit files
# =============================================================================


def validate_daily_time(value: str) -> str:
    """
    Validate a daily run time in 24-hour "HH:MM" format.

    Raises:
        InvalidArgumentError: If the value is not a valid time.
    """
    if not DAILY_TIME_PATTERN.match(value or ""):
        raise InvalidArgumentError(
            f"Invalid time format '{value}'. Use HH:MM (24-hour), e.g. 04:00.",
            details={"daily_time": value},
        )
    return value


def render_service_unit(config: AppConfig) -> str:
    """Render the oneshot service that runs one delayed-update check."""
    rollout = config.rollout
    exec_start = " ".join(
        [
            config.scheduler.installed_executable,
            "--delay-days",
            str(rollout.delay_days),
            "--max-random-delay-seconds",
            str(rollout.max_random_delay_seconds),
            "--log-retention-days",
            str(config.logging.retention_days),
        ]
    )
    return (
        "[Unit]\n"
        "Description=NetBird auto-update with delayed rollout (APT)\n"
        "Wants=network-online.target\n"
        "After=network-online.target\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        f"ExecStart={exec_start}\n"
        "Nice=10\n"
    )


def render_timer_unit(config: AppConfig) -> str:
    """Render the daily timer with random spread and catch-up after downtime."""
    scheduler = config.scheduler
    return (
        "[Unit]\n"
        "Description=Daily NetBird delayed auto-update check\n"
        "\n"
        "[Timer]\n"
        f"OnCalendar=*-*-* {scheduler.daily_time}:00\n"
        f"RandomizedDelaySec={config.rollout.max_random_delay_seconds}\n"
        "Persistent=true\n"
        f"Unit={scheduler.service_name}\n"
        "\n"
        "[Install]\n"
        "WantedBy=timers.target\n"
    )


async def install_units(config: AppConfig, archive: bytes) -> tuple[Path, Path]:
    """
    Install the executable, the service unit and the timer, then enable the timer.

    Args:
        config: Application configuration.
        archive: Executable archive written to the installed location.

    Returns:
        Tuple of (service_path, timer_path).

    Raises:
        FailedPreconditionError: If files cannot be written or systemctl fails.
    """
    validate_daily_time(config.scheduler.daily_time)

    scheduler = config.scheduler
    unit_dir = Path(scheduler.unit_dir)
    installed = Path(scheduler.installed_executable)
    service_path = unit_dir / scheduler.service_name
    timer_path = unit_dir / scheduler.timer_name

    try:
        ensure_directory(installed.parent)
        atomic_write_bytes(installed, archive, mode=0o755)
        ensure_directory(Path(config.paths.state_dir))
        ensure_directory(unit_dir)
        atomic_write_text(service_path, render_service_unit(config))
        atomic_write_text(timer_path, render_timer_unit(config))
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to install systemd units: {e}",
            details={"unit_dir": str(unit_dir), "error": str(e)},
        ) from e

    if not await reload_systemd_daemon():
        raise FailedPreconditionError("systemctl daemon-reload failed")

    returncode, stdout, stderr = await _run_systemctl(
        "enable", "--now", scheduler.timer_name, timeout=60.0
    )
    if returncode != 0:
        raise FailedPreconditionError(
            f"Failed to enable {scheduler.timer_name}",
            details={"stderr": (stderr or stdout).strip()},
        )

    logger.info(
        f"Installed {service_path} and {timer_path}; daily schedule "
        f"{scheduler.daily_time} with up to "
        f"{config.rollout.max_random_delay_seconds}s random delay."
    )
    return service_path, timer_path


async def uninstall_units(config: AppConfig, *, remove_state: bool = False) -> None:
    """
    Disable and remove the timer and service. Best effort.

    Args:
        config: Application configuration.
        remove_state: Also remove the installed executable and the state
            directory (state file and logs).
    """
    scheduler = config.scheduler
    unit_dir = Path(scheduler.unit_dir)

    try:
        await _run_systemctl("disable", "--now", scheduler.timer_name, timeout=60.0)
    except UnavailableError as e:
        logger.warning(f"Could not disable {scheduler.timer_name}: {e.message}")

    for name in (scheduler.timer_name, scheduler.service_name):
        try:
            (unit_dir / name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {unit_dir / name}: {e}")

    await reload_systemd_daemon()

    if remove_state:
        try:
            Path(scheduler.installed_executable).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {scheduler.installed_executable}: {e}")
        shutil.rmtree(config.paths.state_dir, ignore_errors=True)
        logger.info(
            f"Removed {scheduler.installed_executable} and {config.paths.state_dir}."
        )

    logger.info("Systemd units removed.")
