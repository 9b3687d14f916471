"""
Command-line entry point for the NetBird delayed auto-update.

Modes:
- run (default): one delayed-update check
- --install / -i: install or update the systemd service + daily timer
- --uninstall / -u: remove them (with --remove-state, also the installed
  executable, state and logs)

Exit status is 0 for success or a benign skip (another run in progress,
nothing to do, candidate still aging) and 1 for fatal errors.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import UTC, datetime
from typing import Any

import yaml
from pydantic import ValidationError

from netbird_delayed_update.config import (
    MODE_INSTALL,
    MODE_UNINSTALL,
    AppConfig,
    load_config,
    parse_cli_args,
)
from netbird_delayed_update.errors import FailedPreconditionError, UpdaterError
from netbird_delayed_update.logging import get_logger, setup_logging
from netbird_delayed_update.runner import DelayedUpdateRunner
from netbird_delayed_update.updates.archive import build_archive
from netbird_delayed_update.updates.systemd import install_units, uninstall_units

logger = get_logger(__name__)


async def _install(config: AppConfig) -> int:
    try:
        archive = build_archive()
    except OSError as e:
        raise FailedPreconditionError(
            f"Failed to build the executable archive: {e}",
            details={"error": str(e)},
        ) from e

    service_path, timer_path = await install_units(config, archive)
    print(f"Installed {service_path} and {timer_path}.")
    print(f"Check the timer with: systemctl list-timers {config.scheduler.timer_name}")
    return 0


async def _uninstall(config: AppConfig, remove_state: bool) -> int:
    await uninstall_units(config, remove_state=remove_state)
    return 0


async def _run(config: AppConfig) -> int:
    report = await DelayedUpdateRunner(config).run()
    return report.exit_code


def _dispatch(config: AppConfig, cli_overrides: dict[str, Any]) -> int:
    mode = cli_overrides["_mode"]
    remove_state = cli_overrides["_remove_state"]

    if remove_state and mode != MODE_UNINSTALL:
        logger.warning("--remove-state has no effect without --uninstall.")

    if mode == MODE_INSTALL:
        return asyncio.run(_install(config))
    if mode == MODE_UNINSTALL:
        return asyncio.run(_uninstall(config, remove_state))
    return asyncio.run(_run(config))


def main(argv: list[str] | None = None) -> int:
    """
    Run the command-line interface.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit status.
    """
    started_at = datetime.now(UTC)

    try:
        cli_overrides = parse_cli_args(argv)
    except SystemExit as e:
        # argparse exits with 0 after --help / --version and 2 on usage errors
        return 0 if not e.code else 1

    try:
        config = load_config(cli_overrides=cli_overrides)
    except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config, started_at=started_at)

    try:
        return _dispatch(config, cli_overrides)
    except UpdaterError as e:
        logger.error(
            e.message,
            extra={"error_code": e.error_code, "details": e.details},
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
