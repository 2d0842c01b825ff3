"""
Directory layout for ReleaseKit.

Global Cache (~/.releasekit/ or %USERPROFILE%\\.releasekit\\):
    - toolchains/     : Provisioned toolchains, one directory per cache key
    - downloads/      : Downloaded archives and installer assets
    - lock/           : Per-key advisory lock files

Output Directory (default <project-root>/dist/):
    - <project>-<triple>.<ext> : Published artifacts
    - logs/                    : Full build output per target
    - .staging/                : Artifacts not yet published
    - release-manifest.json    : Summary of the last run
"""

import os
from pathlib import Path
from typing import Dict, Optional


class DirectoryError(Exception):
    """Base exception for directory-related errors."""

    pass


def get_global_cache_dir() -> Path:
    """
    Get the platform-specific global cache directory path.

    The RELEASEKIT_CACHE_DIR environment variable takes precedence.

    Returns:
        Path: The global cache directory path.
            - Windows: %USERPROFILE%\\.releasekit
            - Linux/macOS: ~/.releasekit/
    """
    override = os.environ.get("RELEASEKIT_CACHE_DIR")
    if override:
        return Path(override).expanduser()

    if os.name == "nt":
        user_profile = os.environ.get("USERPROFILE")
        if not user_profile:
            raise DirectoryError(
                "USERPROFILE environment variable is not set. "
                "Cannot determine global cache directory."
            )
        return Path(user_profile) / ".releasekit"
    else:
        return Path.home() / ".releasekit"


def ensure_cache_structure(cache_dir: Optional[Path] = None) -> Dict[str, Path]:
    """
    Create the cache directory structure if it does not exist.

    Args:
        cache_dir: Cache root (default: global cache dir)

    Returns:
        Mapping of subdirectory name to path
    """
    root = Path(cache_dir) if cache_dir else get_global_cache_dir()
    layout = {
        "root": root,
        "toolchains": root / "toolchains",
        "downloads": root / "downloads",
        "lock": root / "lock",
    }
    try:
        for path in layout.values():
            path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryError(f"Failed to create cache directory {root}: {e}") from e
    return layout


def ensure_output_structure(output_dir: Path) -> Dict[str, Path]:
    """
    Create the output directory structure.

    Args:
        output_dir: Directory receiving published artifacts

    Returns:
        Mapping of subdirectory name to path
    """
    output_dir = Path(output_dir)
    layout = {
        "root": output_dir,
        "logs": output_dir / "logs",
        "staging": output_dir / ".staging",
    }
    try:
        for path in layout.values():
            path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryError(
            f"Failed to create output directory {output_dir}: {e}"
        ) from e
    return layout
