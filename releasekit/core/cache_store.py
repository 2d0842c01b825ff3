"""
Shared toolchain cache store.

The cache is an explicit value handed to the toolchain provisioner instead of
ambient global state. Each provisioned toolchain lives in its own directory
keyed by (toolchain version, target triple) and is described by a
``toolchain.json`` manifest. A toolchain counts as present only once its
manifest exists, and manifests are written atomically, so a crashed or
cancelled provisioning never looks complete.
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from releasekit.core.directory import ensure_cache_structure, get_global_cache_dir
from releasekit.core.exceptions import CacheError
from releasekit.core.filesystem import atomic_write, safe_rmtree
from releasekit.core.locking import LockManager, sanitize_lock_name

logger = logging.getLogger(__name__)

MANIFEST_NAME = "toolchain.json"
MANIFEST_VERSION = 1


@dataclass(frozen=True)
class ToolchainKey:
    """Cache key of one toolchain installation."""

    version: str
    triple: str

    @property
    def id(self) -> str:
        """Identifier used for directory and lock names."""
        return f"{self.version}-{self.triple}"

    def __str__(self) -> str:
        return self.id


class CacheStore:
    """
    Directory-backed toolchain cache with per-key advisory locking.

    Example:
        >>> store = CacheStore(Path("~/.releasekit").expanduser())
        >>> key = ToolchainKey("stable", "arm-unknown-linux-gnueabihf")
        >>> with store.lock(key):
        ...     if store.lookup(key) is None:
        ...         store.record(key, {"strategy": "rustup"})
    """

    def __init__(self, root: Optional[Path] = None, lock_timeout: float = 600):
        """
        Initialize cache store.

        Args:
            root: Cache root directory (default: global cache dir)
            lock_timeout: Seconds to wait for a per-key lock
        """
        self.root = Path(root) if root else get_global_cache_dir()
        layout = ensure_cache_structure(self.root)
        self.toolchains_dir = layout["toolchains"]
        self.downloads_dir = layout["downloads"]
        self.lock_manager = LockManager(layout["lock"])
        self.lock_timeout = lock_timeout

        logger.debug(f"Initialized cache store at {self.root}")

    def entry_dir(self, key: ToolchainKey) -> Path:
        """Directory holding the toolchain for key."""
        return self.toolchains_dir / sanitize_lock_name(key.id)

    def manifest_path(self, key: ToolchainKey) -> Path:
        return self.entry_dir(key) / MANIFEST_NAME

    @contextmanager
    def lock(self, key: ToolchainKey):
        """Hold the advisory lock for key."""
        with self.lock_manager.toolchain_lock(key.id, timeout=self.lock_timeout):
            yield

    @contextmanager
    def download_lock(self, file_name: str):
        """Hold the lock for downloads_dir / file_name."""
        with self.lock_manager.download_lock(file_name, timeout=self.lock_timeout):
            yield

    def lookup(self, key: ToolchainKey) -> Optional[Dict[str, Any]]:
        """
        Load the manifest recorded for key.

        Returns:
            Manifest dictionary, or None if the toolchain is not cached
        """
        path = self.manifest_path(key)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable cache manifest {path}: {e}")
            return None

        if data.get("version") != MANIFEST_VERSION or data.get("key") != key.id:
            logger.warning(f"Ignoring cache manifest with unexpected format: {path}")
            return None

        return data

    def record(self, key: ToolchainKey, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Atomically record a provisioned toolchain.

        Args:
            key: Cache key
            manifest: Strategy-specific description of the installation

        Returns:
            The manifest as stored
        """
        data = dict(manifest)
        data.update(
            {
                "version": MANIFEST_VERSION,
                "key": key.id,
                "toolchain_version": key.version,
                "triple": key.triple,
                "recorded_at": datetime.now(timezone.utc).isoformat(),
            }
        )

        try:
            atomic_write(
                self.manifest_path(key), json.dumps(data, indent=2, sort_keys=True)
            )
        except OSError as e:
            raise CacheError(f"Failed to record toolchain {key}: {e}") from e

        logger.debug(f"Recorded toolchain {key} in cache")
        return data

    def remove(self, key: ToolchainKey):
        """Delete a cached toolchain (caller should hold the key lock)."""
        safe_rmtree(self.entry_dir(key), require_prefix=self.toolchains_dir)
        logger.info(f"Removed cached toolchain: {key}")

    def entries(self) -> List[Dict[str, Any]]:
        """All readable manifests in the cache, sorted by key."""
        manifests = []
        for path in sorted(self.toolchains_dir.glob(f"*/{MANIFEST_NAME}")):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    manifests.append(json.load(f))
            except (json.JSONDecodeError, OSError) as e:
                logger.debug(f"Skipping unreadable manifest {path}: {e}")
        return manifests
