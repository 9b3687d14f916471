"""
Executable archives of the delayed-update package.

The installed executable is a zipapp holding this package, with a shebang
naming the interpreter that provides the third-party dependencies. The
package code and its __version__ travel inside the archive, so replacing the
archive file replaces the version that runs on the next invocation.
"""

from __future__ import annotations

import io
import re
import shutil
import sys
import tempfile
import zipapp
import zipfile
import zipimport
from pathlib import Path

import netbird_delayed_update
from netbird_delayed_update.errors import InvalidArgumentError

PACKAGE_NAME = "netbird_delayed_update"
ARCHIVE_MAIN = "netbird_delayed_update.cli:main"
VERSION_MEMBER = f"{PACKAGE_NAME}/__init__.py"

_VERSION_PATTERN = re.compile(
    r"^__version__\s*=\s*[\"']([^\"']+)[\"']",
    re.MULTILINE,
)


def default_interpreter() -> str:
    """The interpreter running this process."""
    return sys.executable


def loaded_archive() -> Path | None:
    """Path of the archive this package was imported from, if any."""
    loader = getattr(netbird_delayed_update, "__loader__", None)
    if isinstance(loader, zipimport.zipimporter):
        return Path(loader.archive)
    return None


def retarget_archive(content: bytes, interpreter: str) -> bytes:
    """
    Rewrite the shebang of an archive.

    Args:
        content: Archive bytes, with or without a shebang line.
        interpreter: Interpreter for the new shebang.

    Returns:
        Archive bytes starting with `#!<interpreter>`.
    """
    out = io.BytesIO()
    zipapp.create_archive(io.BytesIO(content), out, interpreter=interpreter)
    return out.getvalue()


def build_archive(interpreter: str | None = None) -> bytes:
    """
    Build an executable archive of the running package.

    When the package already runs from an archive, that archive is copied
    with the new shebang instead of being rebuilt.

    Args:
        interpreter: Interpreter for the shebang. Defaults to the running one.

    Returns:
        Archive bytes.
    """
    interpreter = interpreter or default_interpreter()

    archive = loaded_archive()
    if archive is not None:
        return retarget_archive(archive.read_bytes(), interpreter)

    package_dir = Path(netbird_delayed_update.__file__).resolve().parent
    out = io.BytesIO()
    with tempfile.TemporaryDirectory() as staging:
        shutil.copytree(
            package_dir,
            Path(staging) / PACKAGE_NAME,
            ignore=shutil.ignore_patterns("__pycache__", "*.pyc"),
        )
        zipapp.create_archive(
            staging,
            out,
            interpreter=interpreter,
            main=ARCHIVE_MAIN,
            compressed=True,
        )
    return out.getvalue()


def archive_version(content: bytes) -> str:
    """
    Read the package version declared inside an archive.

    Args:
        content: Archive bytes.

    Returns:
        The archive's __version__.

    Raises:
        InvalidArgumentError: If the content is not an executable archive of
            this package or declares no version.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            archive.getinfo("__main__.py")
            source = archive.read(VERSION_MEMBER).decode("utf-8")
    except (zipfile.BadZipFile, KeyError, UnicodeDecodeError) as e:
        raise InvalidArgumentError(
            f"Not an executable archive of {PACKAGE_NAME}: {e}",
            details={"size": len(content)},
        ) from e

    found = _VERSION_PATTERN.search(source)
    if found is None:
        raise InvalidArgumentError(
            f"Archive does not declare {PACKAGE_NAME}.__version__",
            details={"member": VERSION_MEMBER},
        )
    return found.group(1)
