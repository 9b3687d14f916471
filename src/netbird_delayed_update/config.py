"""
Configuration management for the NetBird delayed auto-update.

This module implements the AppConfig Pydantic model and configuration loading.
The configuration is built once at startup and passed explicitly to every
component; all models are frozen.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/netbird-delayed-update/config.yml or --config path)
3. Environment variables (NETBIRD_DELAYED_UPDATE_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)
"""

from __future__ import annotations

import argparse
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from netbird_delayed_update import __version__

DEFAULT_CONFIG_PATH = Path("/etc/netbird-delayed-update/config.yml")
DEFAULT_ENV_PREFIX = "NETBIRD_DELAYED_UPDATE_"

DAILY_TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")

MODE_RUN = "run"
MODE_INSTALL = "install"
MODE_UNINSTALL = "uninstall"


class _FrozenModel(BaseModel):
    """Base model for immutable configuration sections."""

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Rollout Configuration
# =============================================================================


class RolloutConfig(_FrozenModel):
    """Delayed rollout settings for the managed package.

    Attributes:
        package_name: APT package whose upgrades are gated.
        companion_packages: Optional packages upgraded together with the
            primary one and dropped on the fallback attempt.
        delay_days: Minimum age in days of a candidate before it is installed.
        max_random_delay_seconds: Upper bound of the random jitter slept
            before the checks run.
        restart_service_name: systemd service restarted after an upgrade.
        command_timeout_seconds: Timeout for package manager commands.
    """

    package_name: str = Field(
        default="netbird",
        min_length=1,
        description="APT package whose upgrades are gated",
    )
    companion_packages: list[str] = Field(
        default_factory=lambda: ["netbird-ui"],
        description="Optional packages upgraded together with the primary package",
    )
    delay_days: int = Field(
        default=10,
        ge=0,
        description="Minimum age (in days) for a new candidate version",
    )
    max_random_delay_seconds: int = Field(
        default=3600,
        ge=0,
        description="Max random delay (seconds) before each run",
    )
    restart_service_name: str = Field(
        default="netbird",
        description="Service restarted after a successful upgrade",
    )
    command_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Timeout for apt/dpkg commands in seconds",
    )

    @field_validator("companion_packages", mode="before")
    @classmethod
    def split_companion_packages(cls, v: Any) -> Any:
        """Accept a single package name or a comma-separated string."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def packages(self) -> list[str]:
        """Full ordered package list: primary package first."""
        return [self.package_name, *self.companion_packages]


# =============================================================================
# Paths Configuration
# =============================================================================


class PathsConfig(_FrozenModel):
    """Host-local file locations.

    Attributes:
        state_dir: Directory holding the state file and per-run logs.
        state_file: Aging state file. Defaults to <state_dir>/state.json.
        lock_file: Well-known lock file guarding against concurrent runs.
    """

    state_dir: str = Field(
        default="/var/lib/netbird-delayed-update",
        description="Directory for state and log files",
    )
    state_file: str | None = Field(
        default=None,
        description="Aging state file (defaults to <state_dir>/state.json)",
    )
    lock_file: str = Field(
        default="/run/netbird-delayed-update.lock",
        description="Lock file for the single-run guard",
    )

    @property
    def state_file_path(self) -> Path:
        """Resolved state file path."""
        if self.state_file:
            return Path(self.state_file)
        return Path(self.state_dir) / "state.json"


# =============================================================================
# Self-update Configuration
# =============================================================================


class SelfUpdateConfig(_FrozenModel):
    """Self-update settings.

    Attributes:
        enabled: Whether the self-update check runs at all.
        repo: GitHub repository ("owner/name") publishing releases of this tool.
        asset_name: Name of the executable archive attached to each release.
        executable_path: File replaced on update. Defaults to the running
            executable.
        timeout_seconds: Timeout for each network request.
        api_url: GitHub API base URL.
    """

    enabled: bool = Field(
        default=True,
        description="Whether to check for a newer release of this tool",
    )
    repo: str = Field(
        default="NetHorror/netbird-delayed-auto-update-linux",
        description="GitHub repository publishing releases of this tool",
    )
    asset_name: str = Field(
        default="netbird-delayed-update.pyz",
        min_length=1,
        description="Name of the executable archive attached to each release",
    )
    executable_path: str | None = Field(
        default=None,
        description="File replaced on self-update (defaults to the running executable)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for each self-update network request",
    )
    api_url: str = Field(
        default="https://api.github.com",
        description="GitHub API base URL",
    )


# =============================================================================
# Scheduler Configuration
# =============================================================================


class SchedulerConfig(_FrozenModel):
    """systemd service + timer settings used by --install / --uninstall.

    Attributes:
        daily_time: Local time of the daily run (HH:MM, 24-hour).
        unit_dir: Directory for the unit files.
        service_name: Oneshot service unit name.
        timer_name: Timer unit name.
        installed_executable: Stable location the executable is copied to.
    """

    daily_time: str = Field(
        default="04:00",
        description="Daily time for the systemd timer (local time, HH:MM)",
    )
    unit_dir: str = Field(
        default="/etc/systemd/system",
        description="systemd unit directory",
    )
    service_name: str = Field(
        default="netbird-delayed-update.service",
        description="Service unit name",
    )
    timer_name: str = Field(
        default="netbird-delayed-update.timer",
        description="Timer unit name",
    )
    installed_executable: str = Field(
        default="/usr/local/sbin/netbird-delayed-update",
        description="Installed executable path referenced by the service unit",
    )

    @field_validator("daily_time")
    @classmethod
    def validate_daily_time(cls, v: str) -> str:
        """Validate the HH:MM format."""
        if not DAILY_TIME_PATTERN.match(v):
            raise ValueError(
                f"Invalid time format '{v}'. Use HH:MM (24-hour), e.g. 04:00."
            )
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(_FrozenModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to the console (stderr).
        json_format: Emit JSON lines instead of plain text.
        log_to_file: Write a per-run log file.
        log_dir: Directory for per-run log files (defaults to the state dir).
        retention_days: Keep per-run log files for N days (0 = no cleanup).
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to the console",
    )
    json_format: bool = Field(
        default=False,
        description="Use JSON formatted log lines",
    )
    log_to_file: bool = Field(
        default=True,
        description="Write a log file per run",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for per-run log files",
    )
    retention_days: int = Field(
        default=60,
        ge=0,
        description="Log retention period in days (0 = no cleanup)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(_FrozenModel):
    """
    Main application configuration model.

    Attributes:
        rollout: Delayed rollout settings.
        paths: State, log and lock file locations.
        self_update: Self-update settings.
        scheduler: systemd unit settings.
        logging: Logging configuration.
    """

    rollout: RolloutConfig = Field(
        default_factory=RolloutConfig,
        description="Delayed rollout settings",
    )
    paths: PathsConfig = Field(
        default_factory=PathsConfig,
        description="File locations",
    )
    self_update: SelfUpdateConfig = Field(
        default_factory=SelfUpdateConfig,
        description="Self-update settings",
    )
    scheduler: SchedulerConfig = Field(
        default_factory=SchedulerConfig,
        description="systemd service and timer settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @property
    def log_dir(self) -> Path:
        """Directory for per-run log files."""
        return Path(self.logging.log_dir or self.paths.state_dir)


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Dictionary with configuration values.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        OSError: If the config file cannot be read.
        yaml.YAMLError: If the YAML is invalid.
        ValueError: If the top level is not a mapping.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration file {config_path} must contain a mapping, "
            f"got {type(data).__name__}"
        )
    return data


def _parse_env_value(value: str) -> Any:
    """
    Parse an environment variable value to appropriate Python type.

    Integers are tried before booleans so that "0" and "1" stay numeric.

    Args:
        value: String value from environment variable.

    Returns:
        Parsed value (int, float, bool, list, or string).
    """
    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    if value.lower() in ("true", "yes", "on"):
        return True
    if value.lower() in ("false", "no", "off"):
        return False

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]

    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Environment variables are parsed with the following rules:
    - Prefix: NETBIRD_DELAYED_UPDATE_ (configurable)
    - Nested keys: Double underscore (__) separator
    - Example: NETBIRD_DELAYED_UPDATE_ROLLOUT__DELAY_DAYS=5

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        config_key = key[len(prefix) :].lower()
        parts = config_key.split("__")

        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        current[parts[-1]] = _parse_env_value(value)

    return result


def _non_negative_int(value: str) -> int:
    """argparse type for non-negative integers."""
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid integer value: {value!r}") from e
    if number < 0:
        raise argparse.ArgumentTypeError(f"value must be >= 0: {value!r}")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="netbird-delayed-update",
        description=(
            "NetBird delayed auto-update for Linux (APT + systemd). "
            "New candidate versions must stay in the repository for N days "
            "before they are installed."
        ),
    )

    modes = parser.add_mutually_exclusive_group()
    modes.add_argument(
        "--install",
        "-i",
        dest="mode",
        action="store_const",
        const=MODE_INSTALL,
        help="Install or update the systemd service + timer",
    )
    modes.add_argument(
        "--uninstall",
        "-u",
        dest="mode",
        action="store_const",
        const=MODE_UNINSTALL,
        help="Remove the systemd service + timer",
    )
    parser.set_defaults(mode=MODE_RUN)

    parser.add_argument(
        "--remove-state",
        action="store_true",
        help="With --uninstall, also remove the installed executable and state directory",
    )
    parser.add_argument(
        "--delay-days",
        type=_non_negative_int,
        help="Minimum age (in days) for a new candidate version",
    )
    parser.add_argument(
        "--max-random-delay-seconds",
        type=_non_negative_int,
        help="Max random delay (seconds) before each run",
    )
    parser.add_argument(
        "--log-retention-days",
        type=_non_negative_int,
        help="Keep per-run log files for N days (0 = no cleanup)",
    )
    parser.add_argument(
        "--daily-time",
        type=str,
        help='Daily time for the systemd timer (local time, "HH:MM"); used with --install',
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=__version__,
    )

    return parser


def parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Keys starting with an underscore are not configuration values: they carry
    the config file path, the run mode and the --remove-state flag.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parsed = build_arg_parser().parse_args(args)

    result: dict[str, Any] = {
        "_mode": parsed.mode,
        "_remove_state": parsed.remove_state,
    }

    if parsed.config:
        result["_config_path"] = parsed.config

    rollout: dict[str, Any] = {}
    if parsed.delay_days is not None:
        rollout["delay_days"] = parsed.delay_days
    if parsed.max_random_delay_seconds is not None:
        rollout["max_random_delay_seconds"] = parsed.max_random_delay_seconds
    if rollout:
        result["rollout"] = rollout

    logging_overrides: dict[str, Any] = {}
    if parsed.log_retention_days is not None:
        logging_overrides["retention_days"] = parsed.log_retention_days
    if parsed.log_level:
        logging_overrides["level"] = parsed.log_level
    if logging_overrides:
        result["logging"] = logging_overrides

    if parsed.daily_time:
        result["scheduler"] = {"daily_time": parsed.daily_time}

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Configuration is loaded from multiple sources in order:
    1. Built-in defaults (from AppConfig model)
    2. YAML config file (if specified or default exists)
    3. Environment variables (NETBIRD_DELAYED_UPDATE_* prefix)
    4. Command-line arguments

    Later sources override earlier ones.

    Args:
        config_path: Path to YAML configuration file. If None, uses the
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.
        cli_overrides: Already parsed command-line values (as returned by
            parse_cli_args); takes precedence over cli_args.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        OSError: If the config file cannot be read.
        yaml.YAMLError: If the config file is not valid YAML.
        ValueError: If the config file is not a mapping.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=["--delay-days", "3"])
        >>> config.rollout.delay_days
        3
    """
    config_dict: dict[str, Any] = {}

    if cli_overrides is None:
        cli_overrides = parse_cli_args(cli_args)
    cli_config = {k: v for k, v in cli_overrides.items() if not k.startswith("_")}

    if config_path is None:
        if "_config_path" in cli_overrides:
            config_path = Path(cli_overrides["_config_path"])
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        yaml_config = _load_yaml_config(config_path)
        config_dict = _deep_merge(config_dict, yaml_config)

    env_config = _load_env_config(env_prefix)
    config_dict = _deep_merge(config_dict, env_config)

    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
