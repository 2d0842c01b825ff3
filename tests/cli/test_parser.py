"""
Tests for CLI argument parser.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from releasekit.cli.parser import EXIT_CONFIG_ERROR, EXIT_INTERRUPTED, CLI


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_creation(self):
        """Test CLI can be created."""
        cli = CLI()
        assert cli is not None
        assert cli.parser is not None

    def test_no_command_shows_help(self, capsys):
        """Test that running without command shows help."""
        cli = CLI()
        result = cli.run([])

        assert result == 1
        captured = capsys.readouterr()
        assert "usage:" in captured.out.lower() or "usage:" in captured.err.lower()

    def test_version_flag(self, capsys):
        """Test --version flag."""
        cli = CLI()

        with pytest.raises(SystemExit) as exc_info:
            cli.run(["--version"])

        assert exc_info.value.code == 0
        captured = capsys.readouterr()
        assert "ReleaseKit" in captured.out

    def test_global_options(self):
        """Test global options are parsed before the command."""
        cli = CLI()
        args = cli.parse_args(
            ["-v", "--config", "ci/release.yaml", "--project-root", "src", "targets"]
        )

        assert args.verbose is True
        assert args.config == Path("ci/release.yaml")
        assert args.project_root == Path("src")
        assert args.command == "targets"


class TestRunCommand:
    """Test run command parsing."""

    def test_run_defaults(self):
        """Test run without options."""
        args = CLI().parse_args(["run"])

        assert args.command == "run"
        assert args.target is None
        assert args.concurrency is None
        assert args.timeout is None
        assert args.output_dir is None
        assert args.cache_dir is None
        assert args.all_hosts is False

    def test_run_all_options(self):
        """Test run with all options."""
        args = CLI().parse_args(
            [
                "run",
                "--target",
                "x86_64-pc-windows-msvc",
                "--target",
                "arm-unknown-linux-gnueabihf",
                "-j",
                "4",
                "--timeout",
                "900",
                "--output-dir",
                "out",
                "--cache-dir",
                "/tmp/cache",
                "--all-hosts",
            ]
        )

        assert args.target == ["x86_64-pc-windows-msvc", "arm-unknown-linux-gnueabihf"]
        assert args.concurrency == 4
        assert args.timeout == 900.0
        assert args.output_dir == Path("out")
        assert args.cache_dir == Path("/tmp/cache")
        assert args.all_hosts is True

    def test_invalid_concurrency_type(self):
        """Test a non-numeric concurrency is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            CLI().parse_args(["run", "-j", "many"])

        assert exc_info.value.code == 2


class TestOtherCommands:
    """Test parsing of the remaining commands."""

    def test_targets_known(self):
        """Test targets --known."""
        args = CLI().parse_args(["targets", "--known"])

        assert args.command == "targets"
        assert args.known is True

    def test_verify_requires_target(self):
        """Test verify requires --target."""
        with pytest.raises(SystemExit):
            CLI().parse_args(["verify", "parity.exe"])

    def test_verify(self):
        """Test verify arguments."""
        args = CLI().parse_args(["verify", "parity.exe", "--target", "x86_64-pc"])

        assert args.binary == Path("parity.exe")
        assert args.target == "x86_64-pc"

    def test_cleanup_defaults(self):
        """Test cleanup defaults."""
        args = CLI().parse_args(["cleanup"])

        assert args.max_lock_age == 24.0
        assert args.toolchains is False
        assert args.cache_dir is None


class TestDispatch:
    """Test command dispatch and exit codes."""

    def test_missing_config_is_config_error(self, tmp_path):
        """Test a missing configuration exits with the config error code."""
        result = CLI().run(["--project-root", str(tmp_path), "targets"])

        assert result == EXIT_CONFIG_ERROR

    def test_explicit_missing_config(self, tmp_path):
        """Test an explicit --config that does not exist."""
        result = CLI().run(["--config", str(tmp_path / "nope.yaml"), "run"])

        assert result == EXIT_CONFIG_ERROR

    def test_dispatch_returns_command_exit_code(self):
        """Test the command's return value becomes the exit code."""
        with patch("releasekit.cli.commands.targets.run", return_value=3) as run:
            result = CLI().run(["targets"])

        assert result == 3
        run.assert_called_once()

    def test_keyboard_interrupt(self):
        """Test KeyboardInterrupt exits with 130."""
        with patch(
            "releasekit.cli.commands.targets.run", side_effect=KeyboardInterrupt
        ):
            result = CLI().run(["targets"])

        assert result == EXIT_INTERRUPTED

    def test_unexpected_error(self):
        """Test an unexpected error exits with 1."""
        with patch(
            "releasekit.cli.commands.targets.run", side_effect=RuntimeError("boom")
        ):
            result = CLI().run(["-q", "targets"])

        assert result == 1
