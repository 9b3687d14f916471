"""
Tests for the command-line entry point.

Tests cover:
- Mode dispatch (run, --install, --uninstall [--remove-state])
- Exit codes for success, fatal errors and benign skips
- --help / --version and usage errors
- Configuration errors
"""

from __future__ import annotations

from pathlib import Path
from unittest import mock
from unittest.mock import AsyncMock

import pytest

from netbird_delayed_update import __version__
from netbird_delayed_update.cli import main
from netbird_delayed_update.config import AppConfig
from netbird_delayed_update.errors import FailedPreconditionError, UpgradeFailedError
from netbird_delayed_update.runner import RunReport

MODULE = "netbird_delayed_update.cli"


@pytest.fixture
def cli_env(app_config: AppConfig):
    """Patch configuration loading and logging setup."""
    with (
        mock.patch(f"{MODULE}.load_config", return_value=app_config) as load,
        mock.patch(f"{MODULE}.setup_logging") as setup,
    ):
        yield load, setup


def _patch_runner(report: RunReport):
    runner_class = mock.MagicMock()
    runner_class.return_value.run = AsyncMock(return_value=report)
    return mock.patch(f"{MODULE}.DelayedUpdateRunner", runner_class)


class TestRunMode:
    """Tests for the default run mode."""

    def test_success(self, cli_env, app_config: AppConfig) -> None:
        """Test a clean run exits 0."""
        with _patch_runner(RunReport()) as runner_class:
            assert main([]) == 0

        runner_class.assert_called_once_with(app_config)

    def test_locked_run_exits_zero(self, cli_env) -> None:
        """Test a run skipped for contention exits 0."""
        with _patch_runner(RunReport(locked=True)):
            assert main([]) == 0

    def test_fatal_error_exits_one(self, cli_env) -> None:
        """Test a recorded error exits 1."""
        with _patch_runner(RunReport(error=UpgradeFailedError("apt-get failed"))):
            assert main([]) == 1

    def test_overrides_passed_to_config(self, cli_env) -> None:
        """Test parsed arguments reach load_config."""
        load, setup = cli_env
        with _patch_runner(RunReport()):
            main(["--delay-days", "3", "--log-level", "debug"])

        overrides = load.call_args.kwargs["cli_overrides"]
        assert overrides["rollout"] == {"delay_days": 3}
        assert overrides["logging"] == {"level": "debug"}
        setup.assert_called_once()


class TestInstallModes:
    """Tests for --install and --uninstall."""

    def test_install(
        self, cli_env, app_config: AppConfig, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test --install installs the units with an archive of the running package."""
        service = Path("/etc/systemd/system/netbird-delayed-update.service")
        timer = Path("/etc/systemd/system/netbird-delayed-update.timer")
        install = AsyncMock(return_value=(service, timer))

        with (
            mock.patch(f"{MODULE}.install_units", install),
            mock.patch(f"{MODULE}.build_archive", return_value=b"archive"),
        ):
            assert main(["--install"]) == 0

        install.assert_awaited_once_with(app_config, b"archive")
        out = capsys.readouterr().out
        assert str(service) in out
        assert "systemctl list-timers" in out

    def test_install_failure_exits_one(self, cli_env) -> None:
        """Test an UpdaterError during install exits 1."""
        install = AsyncMock(side_effect=FailedPreconditionError("enable failed"))
        with (
            mock.patch(f"{MODULE}.install_units", install),
            mock.patch(f"{MODULE}.build_archive", return_value=b"archive"),
        ):
            assert main(["-i"]) == 1

    def test_archive_build_failure_exits_one(self, cli_env) -> None:
        """Test an archive that cannot be built exits 1 without installing."""
        install = AsyncMock()
        with (
            mock.patch(f"{MODULE}.install_units", install),
            mock.patch(f"{MODULE}.build_archive", side_effect=OSError("disk full")),
        ):
            assert main(["--install"]) == 1

        install.assert_not_called()

    @pytest.mark.parametrize(
        ("argv", "remove_state"),
        [(["--uninstall"], False), (["-u", "--remove-state"], True)],
    )
    def test_uninstall(
        self, cli_env, app_config: AppConfig, argv: list[str], remove_state: bool
    ) -> None:
        """Test --uninstall passes the --remove-state flag."""
        uninstall = AsyncMock()
        with mock.patch(f"{MODULE}.uninstall_units", uninstall):
            assert main(argv) == 0

        uninstall.assert_awaited_once_with(app_config, remove_state=remove_state)

    def test_remove_state_without_uninstall_warns(
        self, cli_env, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test --remove-state alone is ignored with a warning."""
        with _patch_runner(RunReport()):
            assert main(["--remove-state"]) == 0

        assert "--remove-state has no effect" in caplog.text

    def test_install_and_uninstall_are_exclusive(self) -> None:
        """Test the two modes cannot be combined."""
        assert main(["--install", "--uninstall"]) == 1


class TestArgumentHandling:
    """Tests for argument and configuration errors."""

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test --version prints the version and exits 0."""
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test --help exits 0."""
        assert main(["--help"]) == 0
        assert "--delay-days" in capsys.readouterr().out

    @pytest.mark.parametrize(
        "argv",
        [["--bogus"], ["--delay-days", "-1"], ["--delay-days", "ten"]],
    )
    def test_usage_errors(self, argv: list[str]) -> None:
        """Test usage errors exit 1."""
        assert main(argv) == 1

    def test_missing_config_file(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test a missing --config file exits 1."""
        assert main(["--config", str(tmp_path / "missing.yml")]) == 1
        assert "Invalid configuration" in capsys.readouterr().err

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Test malformed YAML exits 1."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("rollout: [unclosed\n")
        assert main(["--config", str(config_file)]) == 1

    def test_non_mapping_yaml(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test a YAML list at the top level exits 1 with a message."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("- rollout\n- paths\n")
        assert main(["--config", str(config_file)]) == 1
        assert "must contain a mapping" in capsys.readouterr().err

    def test_unreadable_config(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test a config path that cannot be read exits 1 with a message."""
        assert main(["--config", str(tmp_path)]) == 1
        assert "Invalid configuration" in capsys.readouterr().err

    def test_invalid_values(self, tmp_path: Path) -> None:
        """Test values failing validation exit 1."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("rollout:\n  delay_days: -5\n")
        assert main(["--config", str(config_file)]) == 1
