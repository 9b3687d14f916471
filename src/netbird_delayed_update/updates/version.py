"""
Version ordering for the NetBird delayed auto-update.

Both the managed package's candidate versions and the release tags of this
tool are ordered with dpkg semantics (numeric-segment aware, epochs,
Debian revisions, "~" sorting before release), never lexicographically.
"""

from __future__ import annotations

import re

from debian.debian_support import Version

from netbird_delayed_update.errors import InvalidArgumentError

# Characters that never appear in a plain version token
_SUSPICIOUS_TAG_PATTERN = re.compile(r"[\s/\\]|\.\.|://")


def _parse(version: str) -> Version:
    """
    Parse a version string with dpkg rules.

    Raises:
        InvalidArgumentError: If the string is empty or not a valid version.
    """
    if not version:
        raise InvalidArgumentError(
            "Version string cannot be empty",
            details={"version": version},
        )
    try:
        return Version(version)
    except ValueError as e:
        raise InvalidArgumentError(
            f"Invalid version: {version}",
            details={"version": version, "error": str(e)},
        ) from e


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two versions with dpkg semantics.

    Args:
        v1: First version string.
        v2: Second version string.

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        InvalidArgumentError: If either version is invalid.

    Example:
        >>> compare_versions("0.9.0", "0.10.0")
        -1
        >>> compare_versions("1.2.1-1", "1.2.0-1")
        1
    """
    p1 = _parse(v1)
    p2 = _parse(v2)

    if p1 < p2:
        return -1
    if p1 > p2:
        return 1
    return 0


def version_gte(v1: str, v2: str) -> bool:
    """Return True if v1 >= v2 (dpkg --compare-versions v1 ge v2)."""
    return compare_versions(v1, v2) >= 0


def is_newer(remote: str, local: str) -> bool:
    """Return True if remote is strictly newer than local."""
    return compare_versions(remote, local) > 0


def normalize_release_tag(tag: str) -> str:
    """
    Strip one leading "v" / "V" from a release tag.

    Args:
        tag: Release tag (e.g., "v0.3.0").

    Returns:
        Version token (e.g., "0.3.0").
    """
    tag = tag.strip()
    if tag[:1] in ("v", "V"):
        return tag[1:]
    return tag


def validate_release_tag(tag: str | None) -> str:
    """
    Validate a release tag and return its normalized version token.

    A tag is rejected when it is empty, contains whitespace, a path separator,
    "..", or a URL scheme, when it does not start with a digit once the "v"
    prefix is removed, or when it is not a valid version.

    Args:
        tag: Raw tag string from the release metadata.

    Returns:
        Normalized version token.

    Raises:
        InvalidArgumentError: If the tag is implausible.
    """
    if not tag or not tag.strip():
        raise InvalidArgumentError(
            "Release tag is empty",
            details={"tag": tag},
        )

    if _SUSPICIOUS_TAG_PATTERN.search(tag):
        raise InvalidArgumentError(
            f"Release tag does not look like a version: {tag!r}",
            details={"tag": tag},
        )

    normalized = normalize_release_tag(tag)
    if not normalized[:1].isdigit():
        raise InvalidArgumentError(
            f"Release tag does not start with a version number: {tag!r}",
            details={"tag": tag},
        )

    _parse(normalized)
    return normalized
