"""
Cleanup command implementation.

Removes stale lock files from the toolchain cache and, on request, the
cached toolchains themselves. Toolchains that another process is
provisioning right now are skipped.
"""

import logging

from releasekit.core.cache_store import CacheStore, ToolchainKey
from releasekit.core.filesystem import directory_size
from releasekit.core.locking import try_lock

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the cleanup command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    store = CacheStore(args.cache_dir)

    removed_locks = store.lock_manager.cleanup_stale_locks(args.max_lock_age)
    print(f"Removed {removed_locks} stale lock file(s) from {store.root}")

    if args.toolchains:
        removed = 0
        freed = 0
        for manifest in store.entries():
            key = ToolchainKey(manifest["toolchain_version"], manifest["triple"])
            with try_lock(store.lock_manager.lock_path(key.id)) as acquired:
                if not acquired:
                    logger.warning(f"Skipping {key}: in use by another process")
                    continue
                freed += directory_size(store.entry_dir(key))
                store.remove(key)
                removed += 1
        print(
            f"Removed {removed} cached toolchain(s), "
            f"freed {freed / (1024 * 1024):.1f} MB"
        )

    return 0
