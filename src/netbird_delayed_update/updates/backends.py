"""
Package manager abstraction for the NetBird delayed auto-update.

The decision engine never talks to the package manager itself. It consumes
versions from a VersionSource and hands mature candidates to an Upgrader.
The APT implementation lives in apt_backend.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class VersionSource(ABC):
    """
    Reports installed and candidate versions of a package.

    Pure queries; implementations never modify the system.
    """

    @abstractmethod
    async def get_installed_version(self, package_name: str) -> str | None:
        """
        Get the installed version of a package.

        Args:
            package_name: Package to query.

        Returns:
            Version string, or None if the package is not installed.
        """
        pass

    @abstractmethod
    async def get_candidate_version(self, package_name: str) -> str | None:
        """
        Get the version currently offered by the repository.

        Args:
            package_name: Package to query.

        Returns:
            Version string, or None if no version is offered.
        """
        pass


class Upgrader(ABC):
    """
    Performs package upgrades and restarts the managed service.
    """

    @abstractmethod
    async def check_prerequisites(self) -> None:
        """
        Verify that the package manager tools are available.

        Raises:
            MissingDependencyError: If a required tool is missing.
        """
        pass

    @abstractmethod
    async def upgrade(self, packages: list[str], version: str) -> None:
        """
        Upgrade already-installed packages to exactly the given version.

        The full list is attempted first; on failure a single retry is made
        with only the first (primary) package, dropping optional companions.
        Implementations must never install a version other than `version`.

        Args:
            packages: Ordered package list, primary package first.
            version: The aged candidate version.

        Raises:
            UpgradeFailedError: If the retry fails as well.
        """
        pass

    @abstractmethod
    async def restart_managed_service(self) -> bool:
        """
        Restart the managed service after an upgrade. Best effort.

        Returns:
            True if a restart was performed successfully.
        """
        pass
