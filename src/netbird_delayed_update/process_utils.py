"""
Subprocess helpers shared by the APT backend, systemd integration and
self-updater.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shutil

from netbird_delayed_update.errors import UnavailableError


async def run_command(
    *args: str,
    timeout: float = 300.0,
    env: dict[str, str] | None = None,
    cwd: str | None = None,
) -> tuple[int, str, str]:
    """
    Run a subprocess command asynchronously.

    Args:
        *args: Command and arguments.
        timeout: Command timeout in seconds.
        env: Extra environment variables merged over the current environment.
        cwd: Working directory for the command.

    Returns:
        Tuple of (return_code, stdout, stderr).

    Raises:
        UnavailableError: If the command times out or fails to execute.
    """
    process_env = None
    if env:
        process_env = {**os.environ, **env}

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=process_env,
            cwd=cwd,
        )
    except OSError as e:
        raise UnavailableError(
            f"Failed to execute command: {e}",
            details={"command": " ".join(args), "error": str(e)},
        ) from e

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout,
        )
    except TimeoutError as e:
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        raise UnavailableError(
            f"Command timed out after {timeout}s",
            details={"command": " ".join(args)},
        ) from e

    return (
        process.returncode or 0,
        stdout.decode("utf-8", errors="replace") if stdout else "",
        stderr.decode("utf-8", errors="replace") if stderr else "",
    )


def command_available(name: str) -> bool:
    """Check if a command is available on PATH."""
    return shutil.which(name) is not None
