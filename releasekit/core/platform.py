"""
Host detection.

Matrix entries name the host they must be built on as ``<os>-<arch>``
('windows-x64' for an MSVC build, 'linux-x64' for the ARM cross build), and
``releasekit run`` compares that against detect_platform().
"""

import functools
import os
import platform
from dataclasses import dataclass

_OS_NAMES = {"windows": "windows", "linux": "linux", "darwin": "macos"}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
}


@dataclass(frozen=True)
class PlatformInfo:
    """An ``os`` ('windows', 'linux', 'macos') and an ``arch`` ('x64', ...)."""

    os: str
    arch: str

    def platform_string(self) -> str:
        """
        Example:
            >>> PlatformInfo('macos', 'arm64').platform_string()
            'macos-arm64'
        """
        return f"{self.os}-{self.arch}"

    def __str__(self) -> str:
        return self.platform_string()


@functools.lru_cache(maxsize=1)
def detect_platform() -> PlatformInfo:
    """
    Describe the machine ReleaseKit runs on. Computed once per process.

    Raises:
        RuntimeError: The operating system is not Windows, Linux or macOS
    """
    system = platform.system().lower()
    if system not in _OS_NAMES:
        raise RuntimeError(f"Unsupported operating system: {system}")

    machine = platform.machine().lower()
    arch = _ARCH_ALIASES.get(machine)
    if arch is None:
        # armv6l, armv7l, ...
        arch = "arm" if machine.startswith("arm") else machine

    return PlatformInfo(os=_OS_NAMES[system], arch=arch)


def default_concurrency() -> int:
    return os.cpu_count() or 1


def clear_platform_cache():
    detect_platform.cache_clear()
