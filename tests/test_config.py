"""
Tests for the configuration module.

This test module validates:
- Configuration defaults
- Configuration loading from YAML files
- Environment variable overrides
- CLI argument overrides and run modes
- Configuration precedence (defaults < YAML < env vars < CLI args)
- Pydantic model validation with invalid inputs
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any
from unittest import mock

import pytest
import yaml
from pydantic import ValidationError

from netbird_delayed_update.config import (
    MODE_INSTALL,
    MODE_RUN,
    MODE_UNINSTALL,
    AppConfig,
    LoggingConfig,
    PathsConfig,
    RolloutConfig,
    SchedulerConfig,
    _deep_merge,
    _load_env_config,
    _load_yaml_config,
    _parse_env_value,
    load_config,
    parse_cli_args,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def sample_yaml_config() -> dict[str, Any]:
    """Sample YAML configuration for testing."""
    return {
        "rollout": {
            "delay_days": 5,
            "companion_packages": [],
        },
        "paths": {
            "state_dir": "/tmp/netbird-state",
        },
        "logging": {
            "level": "debug",
            "retention_days": 14,
        },
    }


@pytest.fixture
def config_file(tmp_path: Path, sample_yaml_config: dict[str, Any]) -> Path:
    """Write the sample YAML configuration to a file."""
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(sample_yaml_config))
    return path


@pytest.fixture
def clean_env():
    """Run with no NETBIRD_DELAYED_UPDATE_* variables set."""
    env = {
        k: v for k, v in os.environ.items() if not k.startswith("NETBIRD_DELAYED_UPDATE_")
    }
    with mock.patch.dict(os.environ, env, clear=True):
        yield


# =============================================================================
# Defaults
# =============================================================================


class TestDefaults:
    """Tests for built-in defaults."""

    def test_rollout_defaults(self) -> None:
        """Test the rollout defaults."""
        config = RolloutConfig()
        assert config.package_name == "netbird"
        assert config.companion_packages == ["netbird-ui"]
        assert config.delay_days == 10
        assert config.max_random_delay_seconds == 3600
        assert config.packages == ["netbird", "netbird-ui"]

    def test_paths_defaults(self) -> None:
        """Test the state file is derived from the state dir."""
        config = PathsConfig()
        assert config.state_file_path == Path(
            "/var/lib/netbird-delayed-update/state.json"
        )
        assert config.lock_file == "/run/netbird-delayed-update.lock"

    def test_explicit_state_file(self) -> None:
        """Test an explicit state file wins over the derived one."""
        config = PathsConfig(state_file="/srv/state.json")
        assert config.state_file_path == Path("/srv/state.json")

    def test_log_dir_defaults_to_state_dir(self) -> None:
        """Test log files live in the state dir unless configured."""
        config = AppConfig(paths={"state_dir": "/srv/nb"})
        assert config.log_dir == Path("/srv/nb")

        config = AppConfig(paths={"state_dir": "/srv/nb"}, logging={"log_dir": "/logs"})
        assert config.log_dir == Path("/logs")

    def test_config_is_frozen(self) -> None:
        """Test configuration models are immutable."""
        config = AppConfig()
        with pytest.raises(ValidationError):
            config.rollout.delay_days = 3  # type: ignore[misc]


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    """Tests for model validation."""

    def test_negative_delay_days_rejected(self) -> None:
        """Test delay_days must be >= 0."""
        with pytest.raises(ValidationError):
            RolloutConfig(delay_days=-1)

    def test_zero_delay_days_allowed(self) -> None:
        """Test delay_days may be zero."""
        assert RolloutConfig(delay_days=0).delay_days == 0

    def test_negative_retention_rejected(self) -> None:
        """Test retention_days must be >= 0."""
        with pytest.raises(ValidationError):
            LoggingConfig(retention_days=-5)

    @pytest.mark.parametrize("value", ["04:00", "00:00", "23:59", "12:30"])
    def test_valid_daily_time(self, value: str) -> None:
        """Test valid HH:MM values."""
        assert SchedulerConfig(daily_time=value).daily_time == value

    @pytest.mark.parametrize("value", ["24:00", "4:00", "04:60", "0400", "noon", ""])
    def test_invalid_daily_time(self, value: str) -> None:
        """Test invalid HH:MM values are rejected."""
        with pytest.raises(ValidationError):
            SchedulerConfig(daily_time=value)

    def test_log_level_normalized(self) -> None:
        """Test log level is lower-cased and warn maps to warning."""
        assert LoggingConfig(level="DEBUG").level == "debug"
        assert LoggingConfig(level="warn").level == "warning"

    def test_invalid_log_level(self) -> None:
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            LoggingConfig(level="verbose")

    def test_companion_packages_from_string(self) -> None:
        """Test a comma-separated string is split into packages."""
        config = RolloutConfig(companion_packages="netbird-ui, netbird-extra")
        assert config.companion_packages == ["netbird-ui", "netbird-extra"]


# =============================================================================
# Helpers
# =============================================================================


class TestDeepMerge:
    """Tests for _deep_merge."""

    def test_nested_merge(self) -> None:
        """Test nested dictionaries are merged, not replaced."""
        base = {"rollout": {"delay_days": 10, "package_name": "netbird"}}
        override = {"rollout": {"delay_days": 3}}
        result = _deep_merge(base, override)
        assert result == {"rollout": {"delay_days": 3, "package_name": "netbird"}}
        assert base["rollout"]["delay_days"] == 10


class TestParseEnvValue:
    """Tests for _parse_env_value."""

    def test_integers_before_booleans(self) -> None:
        """Test "0" and "1" stay integers."""
        assert _parse_env_value("0") == 0
        assert _parse_env_value("1") == 1

    def test_booleans(self) -> None:
        """Test boolean words."""
        assert _parse_env_value("true") is True
        assert _parse_env_value("off") is False

    def test_float(self) -> None:
        """Test float values."""
        assert _parse_env_value("2.5") == 2.5

    def test_list(self) -> None:
        """Test comma-separated values become lists."""
        assert _parse_env_value("a,b") == ["a", "b"]

    def test_string(self) -> None:
        """Test plain strings are returned unchanged."""
        assert _parse_env_value("netbird") == "netbird"


class TestLoadYamlConfig:
    """Tests for _load_yaml_config."""

    def test_load(self, config_file: Path) -> None:
        """Test loading a YAML file."""
        assert _load_yaml_config(config_file)["rollout"]["delay_days"] == 5

    def test_empty_file(self, tmp_path: Path) -> None:
        """Test an empty file yields an empty dict."""
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert _load_yaml_config(path) == {}

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            _load_yaml_config(tmp_path / "missing.yml")

    @pytest.mark.parametrize("content", ["- a\n- b\n", "just a string\n", "42\n"])
    def test_non_mapping_top_level(self, tmp_path: Path, content: str) -> None:
        """Test a YAML document that is not a mapping raises ValueError."""
        path = tmp_path / "config.yml"
        path.write_text(content)
        with pytest.raises(ValueError, match="must contain a mapping"):
            _load_yaml_config(path)

    def test_directory(self, tmp_path: Path) -> None:
        """Test a directory path raises OSError."""
        with pytest.raises(OSError):
            _load_yaml_config(tmp_path)


class TestLoadEnvConfig:
    """Tests for _load_env_config."""

    def test_nested_keys(self, clean_env) -> None:
        """Test double underscores nest keys."""
        with mock.patch.dict(
            os.environ,
            {
                "NETBIRD_DELAYED_UPDATE_ROLLOUT__DELAY_DAYS": "7",
                "NETBIRD_DELAYED_UPDATE_SELF_UPDATE__ENABLED": "false",
            },
        ):
            result = _load_env_config()

        assert result == {
            "rollout": {"delay_days": 7},
            "self_update": {"enabled": False},
        }

    def test_other_variables_ignored(self, clean_env) -> None:
        """Test variables without the prefix are ignored."""
        with mock.patch.dict(os.environ, {"OTHER_ROLLOUT__DELAY_DAYS": "7"}):
            assert _load_env_config() == {}


# =============================================================================
# CLI Arguments
# =============================================================================


class TestParseCliArgs:
    """Tests for parse_cli_args."""

    def test_defaults_to_run_mode(self) -> None:
        """Test no arguments selects run mode."""
        result = parse_cli_args([])
        assert result["_mode"] == MODE_RUN
        assert result["_remove_state"] is False

    def test_install_mode(self) -> None:
        """Test --install and -i."""
        assert parse_cli_args(["--install"])["_mode"] == MODE_INSTALL
        assert parse_cli_args(["-i"])["_mode"] == MODE_INSTALL

    def test_uninstall_mode(self) -> None:
        """Test --uninstall with --remove-state."""
        result = parse_cli_args(["-u", "--remove-state"])
        assert result["_mode"] == MODE_UNINSTALL
        assert result["_remove_state"] is True

    def test_install_and_uninstall_conflict(self) -> None:
        """Test --install and --uninstall are mutually exclusive."""
        with pytest.raises(SystemExit):
            parse_cli_args(["--install", "--uninstall"])

    def test_rollout_overrides(self) -> None:
        """Test rollout options."""
        result = parse_cli_args(
            ["--delay-days", "3", "--max-random-delay-seconds", "0"]
        )
        assert result["rollout"] == {"delay_days": 3, "max_random_delay_seconds": 0}

    def test_logging_and_scheduler_overrides(self) -> None:
        """Test logging and scheduler options."""
        result = parse_cli_args(
            ["--log-retention-days", "0", "--log-level", "debug", "--daily-time", "03:30"]
        )
        assert result["logging"] == {"retention_days": 0, "level": "debug"}
        assert result["scheduler"] == {"daily_time": "03:30"}

    def test_config_path(self) -> None:
        """Test --config is carried separately."""
        result = parse_cli_args(["--config", "/etc/custom.yml"])
        assert result["_config_path"] == "/etc/custom.yml"

    @pytest.mark.parametrize("value", ["-1", "abc", "1.5"])
    def test_invalid_numbers_rejected(self, value: str) -> None:
        """Test numeric options reject negative and non-integer values."""
        with pytest.raises(SystemExit):
            parse_cli_args(["--delay-days", value])


# =============================================================================
# load_config
# =============================================================================


class TestLoadConfig:
    """Tests for load_config precedence."""

    def test_defaults(self, clean_env, tmp_path: Path) -> None:
        """Test defaults when no other source is given."""
        with mock.patch(
            "netbird_delayed_update.config.DEFAULT_CONFIG_PATH", tmp_path / "none.yml"
        ):
            config = load_config(cli_args=[])
        assert config.rollout.delay_days == 10

    def test_yaml_overrides_defaults(self, clean_env, config_file: Path) -> None:
        """Test YAML values override defaults."""
        config = load_config(config_path=config_file, cli_args=[])
        assert config.rollout.delay_days == 5
        assert config.rollout.packages == ["netbird"]
        assert config.logging.level == "debug"
        assert config.paths.state_file_path == Path("/tmp/netbird-state/state.json")

    def test_env_overrides_yaml(self, clean_env, config_file: Path) -> None:
        """Test environment variables override YAML values."""
        with mock.patch.dict(
            os.environ, {"NETBIRD_DELAYED_UPDATE_ROLLOUT__DELAY_DAYS": "7"}
        ):
            config = load_config(config_path=config_file, cli_args=[])
        assert config.rollout.delay_days == 7

    def test_cli_overrides_env(self, clean_env, config_file: Path) -> None:
        """Test command-line values override everything."""
        with mock.patch.dict(
            os.environ, {"NETBIRD_DELAYED_UPDATE_ROLLOUT__DELAY_DAYS": "7"}
        ):
            config = load_config(
                cli_args=["--config", str(config_file), "--delay-days", "2"]
            )
        assert config.rollout.delay_days == 2
        assert config.logging.retention_days == 14

    def test_cli_overrides_argument(self, clean_env, config_file: Path) -> None:
        """Test already parsed overrides are accepted."""
        overrides = parse_cli_args(["--config", str(config_file), "--delay-days", "1"])
        config = load_config(cli_overrides=overrides)
        assert config.rollout.delay_days == 1

    def test_missing_config_file(self, clean_env, tmp_path: Path) -> None:
        """Test an explicit missing config file raises."""
        with pytest.raises(FileNotFoundError):
            load_config(config_path=tmp_path / "missing.yml", cli_args=[])

    def test_invalid_values_raise_validation_error(
        self, clean_env, tmp_path: Path
    ) -> None:
        """Test invalid YAML values surface as ValidationError."""
        path = tmp_path / "bad.yml"
        path.write_text(yaml.safe_dump({"scheduler": {"daily_time": "25:00"}}))
        with pytest.raises(ValidationError):
            load_config(config_path=path, cli_args=[])
