"""
Self-update for the NetBird delayed auto-update.

Once per run, before the package checks, the tool asks GitHub for the latest
release of its own repository. When that release is strictly newer than the
running version the executable file is replaced, either by fast-forwarding
the git work tree it lives in or by downloading the release's executable
archive and swapping it in atomically. The new code takes effect on the next
run; it is never executed by the current process.

Every failure is reported as a skipped outcome with a reason. Nothing in this
module aborts a run.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from netbird_delayed_update.errors import (
    InvalidArgumentError,
    SelfUpdateError,
    UnavailableError,
)
from netbird_delayed_update.logging import get_logger
from netbird_delayed_update.process_utils import command_available, run_command
from netbird_delayed_update.updates.archive import (
    archive_version,
    default_interpreter,
    retarget_archive,
)
from netbird_delayed_update.updates.operations import (
    EXECUTABLE_BITS,
    atomic_write_bytes,
    is_writable_file,
)
from netbird_delayed_update.updates.version import (
    compare_versions,
    is_newer,
    validate_release_tag,
)

if TYPE_CHECKING:
    from netbird_delayed_update.config import SelfUpdateConfig

logger = get_logger(__name__)

# Skip reasons
REASON_DISABLED = "disabled"
REASON_NETWORK_ERROR = "network_error"
REASON_PARSE_ERROR = "parse_error"
REASON_INVALID_TAG = "invalid_tag"
REASON_NOT_WRITABLE = "not_writable"
REASON_DOWNLOAD_FAILED = "download_failed"
REASON_WRITE_FAILED = "write_failed"

STRATEGY_GIT = "git"
STRATEGY_DOWNLOAD = "download"

DEFAULT_ASSET_NAME = "netbird-delayed-update.pyz"
GIT_TIMEOUT_SECONDS = 120.0


class SelfUpdateOutcome(str, Enum):
    """Outcome of one self-update check."""

    UP_TO_DATE = "up_to_date"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class SelfUpdateResult:
    """
    Result of SelfUpdater.check_and_apply().

    Attributes:
        outcome: What happened.
        reason: Skip reason when outcome is SKIPPED.
        remote_tag: Release tag reported by the repository, if any.
        strategy: "git" or "download" when outcome is UPDATED.
    """

    outcome: SelfUpdateOutcome
    reason: str | None = None
    remote_tag: str | None = None
    strategy: str | None = None

    @classmethod
    def skipped(cls, reason: str, remote_tag: str | None = None) -> SelfUpdateResult:
        """Build a skipped result."""
        return cls(SelfUpdateOutcome.SKIPPED, reason=reason, remote_tag=remote_tag)


@dataclass(frozen=True)
class Release:
    """
    A published release.

    Attributes:
        tag: Raw tag name (e.g., "v0.3.1").
        assets: Download URL of each attached file, by file name.
    """

    tag: str
    assets: dict[str, str] = field(default_factory=dict)


class GitHubReleaseSource:
    """
    Reads release metadata and release assets of a GitHub repository.

    Attributes:
        repo: Repository as "owner/name".
        timeout: Timeout for each request in seconds.
    """

    def __init__(
        self,
        repo: str,
        *,
        timeout: float = 30.0,
        api_url: str = "https://api.github.com",
    ) -> None:
        """
        Initialize the release source.

        Args:
            repo: Repository as "owner/name".
            timeout: Timeout for each request in seconds.
            api_url: GitHub API base URL.
        """
        self.repo = repo
        self.timeout = timeout
        self._api_url = api_url.rstrip("/")

    @classmethod
    def from_config(cls, config: SelfUpdateConfig) -> GitHubReleaseSource:
        """Create a GitHubReleaseSource from configuration."""
        return cls(
            config.repo,
            timeout=config.timeout_seconds,
            api_url=config.api_url,
        )

    def latest_release_url(self) -> str:
        """URL of the latest-release endpoint."""
        return f"{self._api_url}/repos/{self.repo}/releases/latest"

    async def latest_release(self) -> Release:
        """
        Get the latest release with its assets.

        Returns:
            The latest Release.

        Raises:
            SelfUpdateError: With reason network_error or parse_error.
        """
        url = self.latest_release_url()
        logger.debug(f"Querying latest release from {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    url, headers={"Accept": "application/vnd.github+json"}
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise SelfUpdateError(
                REASON_NETWORK_ERROR,
                f"Failed to query latest release: {e}",
                details={"url": url},
            ) from e
        except ValueError as e:
            raise SelfUpdateError(
                REASON_PARSE_ERROR,
                f"Invalid release response: {e}",
                details={"url": url},
            ) from e

        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not isinstance(tag, str):
            raise SelfUpdateError(
                REASON_PARSE_ERROR,
                "Release response has no tag_name",
                details={"url": url},
            )

        assets: dict[str, str] = {}
        for asset in data.get("assets") or []:
            if not isinstance(asset, dict):
                continue
            name = asset.get("name")
            download_url = asset.get("browser_download_url")
            if isinstance(name, str) and isinstance(download_url, str):
                assets[name] = download_url

        return Release(tag=tag, assets=assets)

    async def fetch_asset(self, url: str) -> bytes:
        """
        Download a release asset.

        Raises:
            SelfUpdateError: With reason download_failed.
        """
        logger.debug(f"Downloading {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True
            ) as client:
                response = await client.get(
                    url, headers={"Accept": "application/octet-stream"}
                )
                response.raise_for_status()
                content = response.content
        except httpx.HTTPError as e:
            raise SelfUpdateError(
                REASON_DOWNLOAD_FAILED,
                f"Failed to download {url}: {e}",
                details={"url": url},
            ) from e

        if not content:
            raise SelfUpdateError(
                REASON_DOWNLOAD_FAILED,
                f"Downloaded file is empty: {url}",
                details={"url": url},
            )
        return content


def running_executable() -> Path:
    """Path of the executable this process was started from."""
    return Path(sys.argv[0]).resolve()


class SelfUpdater:
    """
    Replaces the tool's own executable with a newer release.

    Example:
        >>> updater = SelfUpdater.from_config(config.self_update, __version__)
        >>> result = await updater.check_and_apply()
        >>> result.outcome
        <SelfUpdateOutcome.UP_TO_DATE: 'up_to_date'>
    """

    def __init__(
        self,
        current_version: str,
        release_source: GitHubReleaseSource | None,
        executable_path: Path,
        *,
        asset_name: str = DEFAULT_ASSET_NAME,
        interpreter: str | None = None,
        enabled: bool = True,
    ) -> None:
        """
        Initialize the SelfUpdater.

        Args:
            current_version: Version of the running code.
            release_source: Where releases are read from; None disables
                self-update.
            executable_path: File replaced on update.
            asset_name: Name of the executable archive attached to releases.
            interpreter: Interpreter written into the downloaded archive's
                shebang. Defaults to the running interpreter.
            enabled: Whether self-update is turned on.
        """
        self.current_version = current_version
        self.release_source = release_source
        self.executable_path = executable_path
        self.asset_name = asset_name
        self.interpreter = interpreter or default_interpreter()
        self.enabled = enabled

    @classmethod
    def from_config(
        cls,
        config: SelfUpdateConfig,
        current_version: str,
    ) -> SelfUpdater:
        """Create a SelfUpdater from configuration."""
        executable = (
            Path(config.executable_path)
            if config.executable_path
            else running_executable()
        )
        source = GitHubReleaseSource.from_config(config) if config.repo else None
        return cls(
            current_version,
            source,
            executable,
            asset_name=config.asset_name,
            enabled=config.enabled,
        )

    async def check_and_apply(self) -> SelfUpdateResult:
        """
        Check for a newer release and install it. Never raises.

        Returns:
            SelfUpdateResult describing what happened.
        """
        if not self.enabled or self.release_source is None:
            logger.debug("Self-update is disabled.")
            return SelfUpdateResult.skipped(REASON_DISABLED)

        try:
            return await self._check_and_apply(self.release_source)
        except SelfUpdateError as e:
            logger.warning(
                f"Self-update skipped ({e.error_code}): {e.message}",
                extra={"reason": e.error_code},
            )
            return SelfUpdateResult.skipped(
                e.error_code, remote_tag=e.details.get("tag")
            )

    async def _check_and_apply(
        self, source: GitHubReleaseSource
    ) -> SelfUpdateResult:
        release = await source.latest_release()
        tag = release.tag

        try:
            remote_version = validate_release_tag(tag)
        except InvalidArgumentError as e:
            raise SelfUpdateError(
                REASON_INVALID_TAG,
                e.message,
                details={"tag": tag},
            ) from e

        try:
            newer = is_newer(remote_version, self.current_version)
        except InvalidArgumentError as e:
            raise SelfUpdateError(
                REASON_INVALID_TAG,
                f"Cannot compare {remote_version} with {self.current_version}",
                details={"tag": tag},
            ) from e

        if not newer:
            logger.info(
                f"Self-update: running version {self.current_version} is up to date "
                f"(latest release {tag})."
            )
            return SelfUpdateResult(SelfUpdateOutcome.UP_TO_DATE, remote_tag=tag)

        logger.info(
            f"Self-update: new release {tag} available "
            f"(running {self.current_version})."
        )

        if not is_writable_file(self.executable_path):
            raise SelfUpdateError(
                REASON_NOT_WRITABLE,
                f"Executable '{self.executable_path}' is not writable",
                details={"tag": tag, "path": str(self.executable_path)},
            )

        if await self._try_git_update():
            logger.info(
                f"Self-update: updated to {tag} via git; "
                "the new version takes effect on the next run."
            )
            return SelfUpdateResult(
                SelfUpdateOutcome.UPDATED, remote_tag=tag, strategy=STRATEGY_GIT
            )

        await self._download_update(source, release, remote_version)
        logger.info(
            f"Self-update: updated {self.executable_path} to {tag}; "
            "the new version takes effect on the next run."
        )
        return SelfUpdateResult(
            SelfUpdateOutcome.UPDATED, remote_tag=tag, strategy=STRATEGY_DOWNLOAD
        )

    async def _try_git_update(self) -> bool:
        """
        Fast-forward the git work tree holding the executable.

        Returns:
            True if `git pull --ff-only` succeeded; False if the executable is
            not in a work tree or the pull failed.
        """
        if not command_available("git"):
            return False

        directory = str(self.executable_path.parent)
        try:
            returncode, stdout, _ = await run_command(
                "git", "-C", directory, "rev-parse", "--show-toplevel",
                timeout=GIT_TIMEOUT_SECONDS,
            )
            if returncode != 0 or not stdout.strip():
                return False

            top_level = stdout.strip()
            returncode, _, stderr = await run_command(
                "git", "-C", top_level, "pull", "--ff-only",
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except UnavailableError as e:
            logger.warning(f"Self-update via git failed: {e.message}")
            return False

        if returncode != 0:
            logger.warning(
                "Self-update via 'git pull --ff-only' failed; falling back to download.",
                extra={"stderr": stderr.strip()},
            )
            return False
        return True

    async def _download_update(
        self, source: GitHubReleaseSource, release: Release, remote_version: str
    ) -> None:
        """
        Download the release's executable archive and swap it in atomically.

        The archive must declare the released version; anything else is
        rejected before the executable is touched.

        Raises:
            SelfUpdateError: With reason download_failed or write_failed.
        """
        tag = release.tag
        url = release.assets.get(self.asset_name)
        if not url:
            raise SelfUpdateError(
                REASON_DOWNLOAD_FAILED,
                f"Release {tag} has no asset '{self.asset_name}'",
                details={"tag": tag, "assets": sorted(release.assets)},
            )

        try:
            content = await source.fetch_asset(url)
        except SelfUpdateError as e:
            e.details.setdefault("tag", tag)
            raise

        try:
            bundled_version = archive_version(content)
            matches = compare_versions(bundled_version, remote_version) == 0
        except InvalidArgumentError as e:
            raise SelfUpdateError(
                REASON_DOWNLOAD_FAILED,
                f"Asset '{self.asset_name}' of {tag} is not usable: {e.message}",
                details={"tag": tag, "url": url},
            ) from e

        if not matches:
            raise SelfUpdateError(
                REASON_DOWNLOAD_FAILED,
                f"Asset '{self.asset_name}' of {tag} contains version "
                f"{bundled_version}, expected {remote_version}",
                details={"tag": tag, "url": url},
            )

        payload = retarget_archive(content, self.interpreter)
        try:
            mode = self.executable_path.stat().st_mode & 0o7777
            atomic_write_bytes(
                self.executable_path, payload, mode=mode | EXECUTABLE_BITS
            )
        except OSError as e:
            raise SelfUpdateError(
                REASON_WRITE_FAILED,
                f"Failed to replace '{self.executable_path}': {e}",
                details={"tag": tag, "path": str(self.executable_path)},
            ) from e
