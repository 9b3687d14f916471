"""
Pytest configuration for the NetBird delayed auto-update tests.
"""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest

from netbird_delayed_update.config import AppConfig
from netbird_delayed_update.logging import ROOT_LOGGER_NAME

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


@pytest.fixture
def now() -> datetime:
    """A fixed reference time."""
    return datetime(2025, 1, 15, 4, 0, 0, tzinfo=UTC)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """AppConfig with every path under tmp_path and no jitter or self-update."""
    return AppConfig(
        rollout={"delay_days": 10, "max_random_delay_seconds": 0},
        paths={
            "state_dir": str(tmp_path / "state"),
            "lock_file": str(tmp_path / "run" / "netbird-delayed-update.lock"),
        },
        self_update={"enabled": False},
        scheduler={
            "unit_dir": str(tmp_path / "systemd"),
            "installed_executable": str(tmp_path / "sbin" / "netbird-delayed-update"),
        },
        logging={"log_to_file": False, "log_to_stdout": False},
    )


@pytest.fixture
def make_archive() -> Callable[..., bytes]:
    """Factory for minimal executable archives declaring a version."""

    def _make(version: str, interpreter: str | None = None) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("__main__.py", "import sys\nsys.exit(0)\n")
            archive.writestr(
                "netbird_delayed_update/__init__.py",
                f"\"\"\"Package.\"\"\"\n\n__version__ = \"{version}\"\n",
            )
        content = buffer.getvalue()
        if interpreter:
            content = f"#!{interpreter}\n".encode() + content
        return content

    return _make


@pytest.fixture(autouse=True)
def _reset_package_logger() -> None:
    """Undo setup_logging() between tests so caplog sees package records."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
