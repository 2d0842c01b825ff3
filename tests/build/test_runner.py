"""
Unit tests for the build runner.
"""

import sys
import time
from pathlib import Path

import pytest

from releasekit.build.runner import BuildRunner, scoped_build_config
from releasekit.config.parser import BuildConfig
from releasekit.core.cache_store import ToolchainKey
from releasekit.core.exceptions import BuildError, BuildTimeoutError, CancelledError
from releasekit.cross.targets import TargetSpec
from releasekit.toolchain.provisioner import ToolchainHandle
from tests.fixtures.binaries import BINARIES

NATIVE = "x86_64-unknown-linux-gnu"
ARM = "arm-unknown-linux-gnueabihf"


def make_spec(triple=NATIVE, binary="elf-x86_64", **env):
    if binary:
        env.setdefault("FAKE_BINARY_HEX", BINARIES[binary].hex())
    return TargetSpec.for_triple(triple, host_platform="linux-x64", env=env)


def make_handle(tmp_path, spec):
    key = ToolchainKey("stable", spec.target_triple)
    return ToolchainHandle(
        key=key,
        strategy="rustup",
        root=tmp_path,
        env=(("FAKE_TOOLCHAIN", key.id),),
    )


class Collector:
    """Output callback remembering every line."""

    def __init__(self):
        self.lines = []

    def __call__(self, triple, line):
        self.lines.append((triple, line))

    def text(self, triple):
        return [line for t, line in self.lines if t == triple]


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def runner(fake_build_config, fake_project, output_dir, tracker, collector):
    return BuildRunner(
        fake_build_config,
        "parity",
        fake_project,
        output_dir / "logs",
        tracker=tracker,
        output_callback=collector,
    )


class TestScopedBuildConfig:
    """Tests for scoped_build_config."""

    def test_cross_target_linker(self):
        """Test a cross entry gets a linker table and linker variables."""
        spec = make_spec(ARM)

        with scoped_build_config(spec) as (config_path, env):
            content = config_path.read_text()
            assert '[target."arm-unknown-linux-gnueabihf"]' in content
            assert 'linker = "arm-linux-gnueabihf-gcc"' in content

        assert not config_path.exists()
        assert env["CC"] == "arm-linux-gnueabihf-gcc"
        assert env["CC_arm_unknown_linux_gnueabihf"] == "arm-linux-gnueabihf-gcc"
        assert env["CXX"] == "arm-linux-gnueabihf-g++"
        linker_var = "CARGO_TARGET_ARM_UNKNOWN_LINUX_GNUEABIHF_LINKER"
        assert env[linker_var] == "arm-linux-gnueabihf-gcc"
        assert env["RELEASEKIT_BUILD_CONFIG"] == str(config_path)

    def test_native_target_has_no_linker(self):
        """Test a native entry gets an empty configuration."""
        spec = make_spec(NATIVE)

        with scoped_build_config(spec) as (config_path, env):
            assert config_path.read_text().strip() == ""

        assert not any(name.startswith("CARGO_TARGET_") for name in env)
        assert env["CC"] == "gcc"

    def test_removed_on_error(self):
        """Test the configuration is removed when the body raises."""
        with pytest.raises(RuntimeError):
            with scoped_build_config(make_spec(ARM)) as (config_path, _):
                raise RuntimeError("boom")

        assert not config_path.parent.exists()


class TestBuildRunner:
    """Tests for BuildRunner.run."""

    def test_successful_build(self, runner, fake_project, tmp_path, collector):
        """Test a successful build returns the binary and its log."""
        spec = make_spec()

        result = runner.run(make_handle(tmp_path, spec), spec)

        assert result.exit_code == 0
        assert result.target == NATIVE
        assert result.binary_path == fake_project / "out" / NATIVE / "parity"
        assert result.binary_path.read_bytes() == BINARIES["elf-x86_64"]
        assert result.log_path.name == f"{NATIVE}.log"
        assert "line 2" in result.log_path.read_text()
        assert f"env FAKE_TOOLCHAIN=stable-{NATIVE}" in collector.text(NATIVE)

    def test_windows_binary_suffix(self, runner, fake_project, tmp_path):
        """Test the {exe} placeholder expands for Windows targets."""
        spec = TargetSpec.for_triple(
            "x86_64-pc-windows-msvc",
            host_platform="windows-x64",
            env={"FAKE_BINARY_HEX": BINARIES["pe-x86_64"].hex()},
        )

        result = runner.run(make_handle(tmp_path, spec), spec)

        assert result.binary_path.name == "parity.exe"

    def test_linker_visible_to_build_only(self, runner, tmp_path, collector):
        """Test the build sees the linker override and the config is removed."""
        spec = make_spec(ARM, binary="elf-arm-hard")

        runner.run(make_handle(tmp_path, spec), spec)

        lines = collector.text(ARM)
        assert (
            'config: [target."arm-unknown-linux-gnueabihf"] | '
            'linker = "arm-linux-gnueabihf-gcc"'
        ) in lines
        assert (
            "env CARGO_TARGET_ARM_UNKNOWN_LINUX_GNUEABIHF_LINKER="
            "arm-linux-gnueabihf-gcc"
        ) in lines
        config_path = Path(lines[0].split(": ", 1)[1])
        assert not config_path.exists()

    def test_nonzero_exit(self, runner, tmp_path):
        """Test a failing build raises BuildError with the output tail."""
        spec = make_spec(FAKE_EXIT="2")

        with pytest.raises(BuildError) as exc_info:
            runner.run(make_handle(tmp_path, spec), spec)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.output_tail[-1] == "error: linking failed"
        assert "exit code 2" in str(exc_info.value)

    def test_missing_binary(self, runner, tmp_path):
        """Test a build that writes no binary fails."""
        spec = make_spec(binary=None)

        with pytest.raises(BuildError, match="produced no binary"):
            runner.run(make_handle(tmp_path, spec), spec)

    def test_output_tail_is_bounded(
        self, fake_build_config, fake_project, output_dir, tmp_path
    ):
        """Test only the last lines are kept while the log has everything."""
        runner = BuildRunner(
            fake_build_config,
            "parity",
            fake_project,
            output_dir / "logs",
            output_callback=lambda triple, line: None,
            tail_lines=10,
        )
        spec = make_spec(FAKE_LINES="500", FAKE_EXIT="1")

        with pytest.raises(BuildError) as exc_info:
            runner.run(make_handle(tmp_path, spec), spec)

        tail = exc_info.value.output_tail
        assert len(tail) == 10
        assert tail[-2] == "line 499"
        log = runner.log_path(spec).read_text()
        assert "line 0\n" in log
        assert "line 499\n" in log

    @pytest.mark.slow
    def test_timeout(self, fake_build_config, fake_project, output_dir, tmp_path):
        """Test a build exceeding the timeout is terminated."""
        runner = BuildRunner(
            fake_build_config,
            "parity",
            fake_project,
            output_dir / "logs",
            output_callback=lambda triple, line: None,
            timeout=1,
        )
        spec = make_spec(FAKE_SLEEP="30")

        start = time.monotonic()
        with pytest.raises(BuildTimeoutError) as exc_info:
            runner.run(make_handle(tmp_path, spec), spec)

        assert time.monotonic() - start < 20
        assert exc_info.value.timeout == 1
        assert "line 2" in exc_info.value.output_tail

    def test_cancelled_before_start(self, runner, tracker, tmp_path):
        """Test a cancelled tracker refuses to start the build."""
        spec = make_spec()
        tracker.cancel()

        with pytest.raises(CancelledError):
            runner.run(make_handle(tmp_path, spec), spec)

    def test_missing_build_tool(self, fake_project, output_dir, tmp_path):
        """Test a build command that cannot start raises BuildError."""
        runner = BuildRunner(
            BuildConfig(command=["releasekit-no-such-cargo"], binary="out/x"),
            "parity",
            fake_project,
            output_dir / "logs",
        )
        spec = make_spec()

        with pytest.raises(BuildError, match="Failed to start"):
            runner.run(make_handle(tmp_path, spec), spec)

    def test_unknown_placeholder(self, fake_project, output_dir, tmp_path):
        """Test an unknown template placeholder is reported."""
        runner = BuildRunner(
            BuildConfig(command=["{compiler}"], binary="out/x"),
            "parity",
            fake_project,
            output_dir / "logs",
        )
        spec = make_spec()

        with pytest.raises(BuildError, match="Unknown placeholder"):
            runner.run(make_handle(tmp_path, spec), spec)


class TestTestCommand:
    """Tests for the pre-build test command."""

    def make_runner(self, fake_build_config, fake_project, output_dir):
        config = BuildConfig(
            command=fake_build_config.command,
            binary=fake_build_config.binary,
            test_command=[sys.executable, str(fake_project / "test.py")],
        )
        return BuildRunner(
            config,
            "parity",
            fake_project,
            output_dir / "logs",
            output_callback=lambda triple, line: None,
        )

    def test_tests_run_before_build(
        self, fake_build_config, fake_project, output_dir, tmp_path
    ):
        """Test passing tests are followed by the build, both in one log."""
        runner = self.make_runner(fake_build_config, fake_project, output_dir)
        spec = make_spec()

        result = runner.run(make_handle(tmp_path, spec), spec)

        log = result.log_path.read_text()
        assert log.index("running tests") < log.index("line 0")

    def test_failing_tests_skip_build(
        self, fake_build_config, fake_project, output_dir, tmp_path
    ):
        """Test failing tests fail the entry without building."""
        runner = self.make_runner(fake_build_config, fake_project, output_dir)
        spec = make_spec(FAKE_TEST_EXIT="3")

        with pytest.raises(BuildError, match="Tests for") as exc_info:
            runner.run(make_handle(tmp_path, spec), spec)

        assert exc_info.value.exit_code == 3
        assert not runner.binary_path(spec).exists()
