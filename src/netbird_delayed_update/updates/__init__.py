"""
Delayed-update machinery for the NetBird delayed auto-update.

This package implements:
- dpkg version ordering and release tag validation
- The aging decision engine
- Aging state persistence with atomic writes
- The single-run lock
- Package manager abstraction and the APT backend
- systemd service restart and unit installation
- Self-update from GitHub releases
- Executable zipapp archives of the package
"""

from netbird_delayed_update.updates.apt_backend import AptUpgrader, AptVersionSource
from netbird_delayed_update.updates.archive import (
    archive_version,
    build_archive,
    retarget_archive,
)
from netbird_delayed_update.updates.backends import Upgrader, VersionSource
from netbird_delayed_update.updates.engine import (
    Decision,
    Evaluation,
    StateChange,
    decide,
)
from netbird_delayed_update.updates.lock import LockHandle, RunLock
from netbird_delayed_update.updates.operations import (
    atomic_write_bytes,
    atomic_write_text,
    ensure_directory,
)
from netbird_delayed_update.updates.self_update import (
    GitHubReleaseSource,
    Release,
    SelfUpdateOutcome,
    SelfUpdater,
    SelfUpdateResult,
)
from netbird_delayed_update.updates.state_store import AgingState, StateStore
from netbird_delayed_update.updates.systemd import (
    install_units,
    restart_managed_service,
    uninstall_units,
)
from netbird_delayed_update.updates.version import (
    compare_versions,
    is_newer,
    validate_release_tag,
    version_gte,
)

__all__ = [
    # Versions
    "compare_versions",
    "version_gte",
    "is_newer",
    "validate_release_tag",
    # Decision engine
    "decide",
    "Decision",
    "Evaluation",
    "StateChange",
    # State
    "AgingState",
    "StateStore",
    # Lock
    "RunLock",
    "LockHandle",
    # Backends
    "VersionSource",
    "Upgrader",
    "AptVersionSource",
    "AptUpgrader",
    # Operations
    "atomic_write_bytes",
    "atomic_write_text",
    "ensure_directory",
    # Systemd
    "restart_managed_service",
    "install_units",
    "uninstall_units",
    # Self-update
    "SelfUpdater",
    "SelfUpdateResult",
    "SelfUpdateOutcome",
    "GitHubReleaseSource",
    "Release",
    # Executable archives
    "build_archive",
    "archive_version",
    "retarget_archive",
]
