"""
Core functionality for ReleaseKit.

This package contains the foundational modules that other components depend on.
"""

from .directory import (
    get_global_cache_dir,
    ensure_cache_structure,
    ensure_output_structure,
    DirectoryError,
)

from .locking import (
    LockManager,
    try_lock,
    LockTimeout,
)

from .platform import (
    PlatformInfo,
    detect_platform,
    default_concurrency,
)

from .cache_store import (
    CacheStore,
    ToolchainKey,
)

from .process import ProcessTracker

from .exceptions import (
    ReleaseKitError,
    ConfigError,
    UnknownTargetError,
    StageError,
    ProvisionError,
    BuildError,
    BuildTimeoutError,
    ArchitectureMismatchError,
    PackagingError,
    CancelledError,
    CacheError,
    CacheLockTimeout,
)

__all__ = [
    "get_global_cache_dir",
    "ensure_cache_structure",
    "ensure_output_structure",
    "DirectoryError",
    "LockManager",
    "try_lock",
    "LockTimeout",
    "PlatformInfo",
    "detect_platform",
    "default_concurrency",
    "CacheStore",
    "ToolchainKey",
    "ProcessTracker",
    "ReleaseKitError",
    "ConfigError",
    "UnknownTargetError",
    "StageError",
    "ProvisionError",
    "BuildError",
    "BuildTimeoutError",
    "ArchitectureMismatchError",
    "PackagingError",
    "CancelledError",
    "CacheError",
    "CacheLockTimeout",
]
