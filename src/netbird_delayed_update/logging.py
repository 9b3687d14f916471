"""
Logging setup for the NetBird delayed auto-update.

Features:
- Plain text or JSON-formatted log lines (UTC timestamps)
- Console output on stderr
- One log file per run in the log directory
- Retention cleanup of old per-run log files, once per run
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from netbird_delayed_update.config import AppConfig

ROOT_LOGGER_NAME = "netbird_delayed_update"

# Default log format for plain text output
DEFAULT_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "netbird-delayed-update-"
LOG_FILE_SUFFIX = ".log"

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
    "asctime",
}


class JSONFormatter(logging.Formatter):
    """
    A logging formatter that outputs log records as JSON objects.

    Each log record is formatted as a JSON object with consistent fields:
    - timestamp: ISO 8601 formatted timestamp in UTC
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - logger: Logger name
    - message: Log message
    - Additional fields from the record's extra dict
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class UTCFormatter(logging.Formatter):
    """Plain text formatter with UTC timestamps."""

    converter = time.gmtime


def _build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return UTCFormatter(DEFAULT_LOG_FORMAT, datefmt=DEFAULT_DATE_FORMAT)


def run_log_path(log_dir: Path, started_at: datetime) -> Path:
    """
    Build the per-run log file path.

    Args:
        log_dir: Directory holding the log files.
        started_at: Start time of the run.

    Returns:
        Path like <log_dir>/netbird-delayed-update-20250115-040000.log.
    """
    stamp = started_at.astimezone(UTC).strftime("%Y%m%d-%H%M%S")
    return log_dir / f"{LOG_FILE_PREFIX}{stamp}{LOG_FILE_SUFFIX}"


def cleanup_old_logs(
    log_dir: Path,
    retention_days: int,
    now: datetime | None = None,
) -> list[Path]:
    """
    Remove per-run log files older than the retention window.

    Only files matching the per-run naming pattern directly inside log_dir are
    considered. Files that cannot be removed are skipped.

    Args:
        log_dir: Directory holding the log files.
        retention_days: Retention window in days; 0 disables cleanup.
        now: Reference time (defaults to the current time).

    Returns:
        List of removed paths.
    """
    if retention_days <= 0 or not log_dir.is_dir():
        return []

    now = now or datetime.now(UTC)
    cutoff = (now - timedelta(days=retention_days)).timestamp()
    removed: list[Path] = []

    for path in log_dir.glob(f"{LOG_FILE_PREFIX}*{LOG_FILE_SUFFIX}"):
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed.append(path)
        except OSError:
            continue

    return removed


def setup_logging(
    config: AppConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = False,
    log_to_stdout: bool = True,
    started_at: datetime | None = None,
) -> logging.Logger:
    """
    Configure logging for a delayed-update run.

    Args:
        config: Optional AppConfig. If provided, overrides other parameters
            and enables the per-run log file and retention cleanup.
        level: Default log level if no config is provided.
        json_format: Whether to use JSON formatting.
        log_to_stdout: Whether to log to the console (stderr).
        started_at: Start time of the run, used for the log file name.

    Returns:
        The package root logger.

    Example:
        >>> from netbird_delayed_update.logging import setup_logging
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Run started", extra={"version": "0.3.0"})
    """
    log_file: Path | None = None
    retention_days = 0
    log_dir: Path | None = None

    if config is not None:
        level = config.logging.level
        json_format = config.logging.json_format
        log_to_stdout = config.logging.log_to_stdout
        retention_days = config.logging.retention_days
        if config.logging.log_to_file:
            log_dir = config.log_dir
            log_file = run_log_path(log_dir, started_at or datetime.now(UTC))

    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = _build_formatter(json_format)

    if log_to_stdout:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(log_level)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    file_error: OSError | None = None
    if log_file is not None and log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            file_error = e

    logger.propagate = False

    if file_error is not None:
        logger.warning(
            f"Cannot write log file '{log_file}', logging to console only.",
            extra={"error": str(file_error)},
        )
    elif log_dir is not None:
        removed = cleanup_old_logs(log_dir, retention_days)
        if removed:
            logger.debug(
                f"Removed {len(removed)} log file(s) older than {retention_days} day(s)."
            )

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: The name for the logger, typically __name__ of the calling module.
            The "netbird_delayed_update." prefix is added automatically if not
            present.

    Returns:
        A configured logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
