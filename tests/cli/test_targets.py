"""
Tests for targets command.
"""

from releasekit.cli.parser import CLI


class TestTargetsCommand:
    """Test targets command functionality."""

    def test_known_targets(self, capsys):
        """Test --known lists the built-in triples without a config."""
        result = CLI().run(["targets", "--known"])

        assert result == 0
        out = capsys.readouterr().out
        assert "FLOAT ABI" in out
        assert "x86_64-pc-windows-msvc" in out
        arm_line = next(
            line for line in out.splitlines() if line.startswith("arm-unknown")
        )
        assert "hard" in arm_line
        assert "linux-arm" in arm_line

    def test_configured_matrix(self, tmp_path, capsys):
        """Test the configured matrix is listed with its settings."""
        (tmp_path / "releasekit.yaml").write_text(
            """
version: 1
project: parity
targets:
  - triple: x86_64-pc-windows-msvc
    installer:
      script: installer.nsi
  - triple: arm-unknown-linux-gnueabihf
    host: linux-x64
    strip: true
"""
        )

        result = CLI().run(["--project-root", str(tmp_path), "targets"])

        assert result == 0
        lines = capsys.readouterr().out.splitlines()
        windows = next(line for line in lines if line.startswith("x86_64-pc"))
        arm = next(line for line in lines if line.startswith("arm-unknown"))
        assert "installer" in windows
        assert "arm-linux-gnueabihf-gcc" in arm
        assert arm.endswith("yes")
