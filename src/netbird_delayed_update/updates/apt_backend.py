"""
APT backend for the NetBird delayed auto-update.

Queries installed and candidate versions with dpkg-query / apt-cache and
upgrades already-installed packages with apt-get. Packages that are not
installed are never installed by this backend.
"""

from __future__ import annotations

from netbird_delayed_update.errors import (
    InvalidArgumentError,
    MissingDependencyError,
    UnavailableError,
    UpgradeFailedError,
)
from netbird_delayed_update.logging import get_logger
from netbird_delayed_update.process_utils import command_available, run_command
from netbird_delayed_update.updates.backends import Upgrader, VersionSource
from netbird_delayed_update.updates.engine import NO_CANDIDATE_MARKER
from netbird_delayed_update.updates.systemd import restart_managed_service

logger = get_logger(__name__)

REQUIRED_COMMANDS = ("apt-get", "apt-cache", "dpkg-query")

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def pin(packages: list[str], version: str) -> list[str]:
    """Pin each package to a version (`name=version`) for apt-get install."""
    return [f"{package}={version}" for package in packages]


def parse_candidate(policy_output: str) -> str | None:
    """
    Extract the candidate version from `apt-cache policy` output.

    Args:
        policy_output: Output of `apt-cache policy <package>`.

    Returns:
        Candidate version, or None when missing or "(none)".
    """
    for line in policy_output.splitlines():
        line = line.strip()
        if line.startswith("Candidate:"):
            value = line.split(":", 1)[1].strip()
            if not value or value == NO_CANDIDATE_MARKER:
                return None
            return value
    return None


class AptVersionSource(VersionSource):
    """
    VersionSource backed by dpkg-query and apt-cache.

    Attributes:
        timeout: Timeout for each query in seconds.
    """

    def __init__(self, timeout: float = 120.0) -> None:
        """
        Initialize the AptVersionSource.

        Args:
            timeout: Timeout for each query in seconds.
        """
        self.timeout = timeout

    async def get_installed_version(self, package_name: str) -> str | None:
        """
        Get the installed version via `dpkg-query -W -f=${Version}`.

        Returns:
            Version string, or None if the package is not installed.
        """
        try:
            returncode, stdout, _ = await run_command(
                "dpkg-query",
                "-W",
                "-f=${Version}\n",
                package_name,
                timeout=self.timeout,
            )
        except UnavailableError as e:
            logger.warning(f"dpkg-query failed for '{package_name}': {e.message}")
            return None

        if returncode != 0:
            return None

        version = stdout.strip().splitlines()[0].strip() if stdout.strip() else ""
        return version or None

    async def get_candidate_version(self, package_name: str) -> str | None:
        """
        Get the candidate version via `apt-cache policy`.

        Returns:
            Version string, or None if no version is offered.
        """
        try:
            returncode, stdout, _ = await run_command(
                "apt-cache",
                "policy",
                package_name,
                timeout=self.timeout,
            )
        except UnavailableError as e:
            logger.warning(f"apt-cache policy failed for '{package_name}': {e.message}")
            return None

        if returncode != 0:
            return None

        return parse_candidate(stdout)


class AptUpgrader(Upgrader):
    """
    Upgrader backed by apt-get.

    Attributes:
        service_name: systemd service restarted after an upgrade.
        timeout: Timeout for each apt-get invocation in seconds.
    """

    def __init__(
        self,
        service_name: str = "netbird",
        timeout: float = 600.0,
    ) -> None:
        """
        Initialize the AptUpgrader.

        Args:
            service_name: systemd service restarted after an upgrade.
            timeout: Timeout for each apt-get invocation in seconds.
        """
        self.service_name = service_name
        self.timeout = timeout

    async def check_prerequisites(self) -> None:
        """
        Verify that apt-get, apt-cache and dpkg-query are available.

        Raises:
            MissingDependencyError: If a command is missing.
        """
        missing = [cmd for cmd in REQUIRED_COMMANDS if not command_available(cmd)]
        if missing:
            raise MissingDependencyError(
                f"Required command(s) not found: {', '.join(missing)}. "
                "This tool is intended for APT-based systems (e.g. Debian, Ubuntu).",
                details={"missing": missing},
            )

    async def _apt_get(self, *args: str) -> tuple[int, str, str]:
        return await run_command(
            "apt-get",
            *args,
            timeout=self.timeout,
            env=APT_ENV,
        )

    async def _install_only_upgrade(self, packages: list[str]) -> tuple[bool, str]:
        try:
            returncode, stdout, stderr = await self._apt_get(
                "install", "--only-upgrade", "-y", *packages
            )
        except UnavailableError as e:
            return False, e.message
        return returncode == 0, (stderr or stdout).strip()

    async def refresh_metadata(self) -> bool:
        """
        Run `apt-get update`. Failure is a warning: cached metadata is used.

        Returns:
            True if the update succeeded.
        """
        try:
            returncode, _, stderr = await self._apt_get("update", "-y")
        except UnavailableError as e:
            returncode, stderr = 1, e.message

        if returncode != 0:
            logger.warning(
                "'apt-get update' failed; continuing with cached metadata.",
                extra={"stderr": stderr.strip()},
            )
            return False
        return True

    async def upgrade(self, packages: list[str], version: str) -> None:
        """
        Upgrade packages to exactly `version`, retrying with the primary
        package only on failure.

        Every package is pinned (`name=version`), so a candidate published
        by the metadata refresh is never installed in place of the aged one.

        Args:
            packages: Ordered package list, primary package first.
            version: The aged candidate version.

        Raises:
            InvalidArgumentError: If the package list or version is empty.
            UpgradeFailedError: If the fallback upgrade fails too.
        """
        if not packages:
            raise InvalidArgumentError("No packages to upgrade")
        version = version.strip()
        if not version:
            raise InvalidArgumentError(
                "No version to upgrade to", details={"packages": packages}
            )

        await self.refresh_metadata()

        ok, output = await self._install_only_upgrade(pin(packages, version))
        if ok:
            logger.info(f"Upgraded {', '.join(packages)} to {version}.")
            return

        primary = packages[:1]
        if len(packages) == 1:
            raise UpgradeFailedError(
                f"Failed to upgrade '{primary[0]}' to {version}.",
                details={"packages": primary, "version": version, "output": output},
            )

        logger.warning(
            f"Failed to upgrade {', '.join(packages)} to {version} (companion "
            f"package possibly not installed or not at that version). "
            f"Retrying with '{primary[0]}' only.",
            extra={"output": output},
        )

        ok, output = await self._install_only_upgrade(pin(primary, version))
        if not ok:
            raise UpgradeFailedError(
                f"Failed to upgrade '{primary[0]}' to {version} after fallback.",
                details={"packages": packages, "version": version, "output": output},
            )

        logger.info(f"Upgraded {primary[0]} to {version}.")

    async def restart_managed_service(self) -> bool:
        """Restart the managed service. Best effort."""
        return await restart_managed_service(self.service_name)
