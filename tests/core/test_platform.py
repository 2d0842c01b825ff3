"""
Unit tests for host platform detection.
"""

from unittest.mock import patch

import pytest

from releasekit.core.platform import (
    PlatformInfo,
    clear_platform_cache,
    default_concurrency,
    detect_platform,
)


@pytest.mark.parametrize(
    "system,machine,expected",
    [
        ("Linux", "x86_64", "linux-x64"),
        ("Windows", "AMD64", "windows-x64"),
        ("Darwin", "arm64", "macos-arm64"),
        ("Linux", "aarch64", "linux-arm64"),
        ("Linux", "armv7l", "linux-arm"),
        ("Linux", "i686", "linux-x86"),
    ],
)
def test_detect_platform(system, machine, expected):
    """Test OS and architecture normalization."""
    clear_platform_cache()
    with patch("platform.system", return_value=system), patch(
        "platform.machine", return_value=machine
    ):
        assert detect_platform().platform_string() == expected


def test_unsupported_os():
    """Test unknown operating systems are rejected."""
    clear_platform_cache()
    with patch("platform.system", return_value="Plan9"):
        with pytest.raises(RuntimeError, match="Unsupported operating system"):
            detect_platform()


def test_platform_info_str():
    """Test string form."""
    assert str(PlatformInfo("linux", "x64")) == "linux-x64"


def test_default_concurrency():
    """Test concurrency defaults to at least one task."""
    assert default_concurrency() >= 1
    with patch("os.cpu_count", return_value=None):
        assert default_concurrency() == 1
