"""
Per-key file locks for the shared toolchain cache.

Each cache key gets its own lock file under ``<cache>/lock``, so entries for
different targets provision in parallel while two entries (or two ReleaseKit
processes) asking for the same key take turns. Every acquisition opens a new
``filelock.FileLock``, which makes the locks exclusive between threads of one
run as well as between processes.

Usage:
    manager = LockManager(cache_dir / "lock")
    with manager.toolchain_lock("stable-arm-unknown-linux-gnueabihf"):
        install()
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout as LockTimeout

from releasekit.core.directory import get_global_cache_dir
from releasekit.core.exceptions import CacheLockTimeout

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = str.maketrans({"/": "-", "\\": "-", ":": "-"})


def sanitize_lock_name(name: str) -> str:
    """Map a cache key id onto a string usable as a single path component."""
    return name.translate(_UNSAFE_CHARS)


class LockManager:
    """
    Hands out toolchain locks stored in one directory.

    Attributes:
        lock_dir: Where the ``*.lock`` files live
    """

    def __init__(self, lock_dir: Optional[Path] = None):
        self.lock_dir = Path(lock_dir or get_global_cache_dir() / "lock")
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def lock_path(self, key_id: str) -> Path:
        return self.lock_dir / f"toolchain-{sanitize_lock_name(key_id)}.lock"

    def download_lock_path(self, file_name: str) -> Path:
        return self.lock_dir / f"download-{sanitize_lock_name(file_name)}.lock"

    @contextmanager
    def toolchain_lock(self, key_id: str, timeout: float = 600):
        """
        Hold the lock for key_id for the duration of the block.

        The generous default covers large archive downloads by another holder.

        Raises:
            CacheLockTimeout: The lock stayed busy for timeout seconds
        """
        with self._hold(self.lock_path(key_id), f"Toolchain {key_id}", timeout):
            yield

    @contextmanager
    def download_lock(self, file_name: str, timeout: float = 600):
        """
        Hold the lock for one file in the shared downloads directory.

        Toolchains for different keys may fetch the same archive; this keeps
        them from writing it at the same time.
        """
        path = self.download_lock_path(file_name)
        with self._hold(path, f"Download {file_name}", timeout):
            yield

    @contextmanager
    def _hold(self, path: Path, what: str, timeout: float):
        try:
            with FileLock(path, timeout=timeout):
                logger.debug(f"Holding {path.name}")
                yield
        except LockTimeout as e:
            message = (
                f"{what} is still locked after {timeout}s; "
                "another run may be installing it"
            )
            logger.error(message)
            raise CacheLockTimeout(message) from e
        logger.debug(f"Released {path.name}")

    def cleanup_stale_locks(self, max_age_hours: float = 24) -> int:
        """
        Delete lock files untouched for more than max_age_hours.

        Returns:
            How many files were deleted
        """
        if not self.lock_dir.exists():
            return 0

        cutoff = time.time() - max_age_hours * 3600
        removed = 0
        for path in self.lock_dir.glob("*.lock"):
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info(f"Deleted stale lock {path}")
            except OSError as e:
                logger.debug(f"Left {path} in place: {e}")
        return removed


@contextmanager
def try_lock(lock_path: Path, timeout: float = 0):
    """
    Attempt to take lock_path, yielding whether it succeeded.

    Cleanup uses this to skip toolchains another run is installing instead of
    waiting for them.
    """
    lock = FileLock(lock_path)
    try:
        lock.acquire(timeout=timeout)
    except LockTimeout:
        logger.debug(f"{lock_path} is busy")
        yield False
        return

    try:
        yield True
    finally:
        lock.release()


__all__ = [
    "LockManager",
    "try_lock",
    "sanitize_lock_name",
    "LockTimeout",
]
