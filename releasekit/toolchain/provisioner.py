"""
Toolchain provisioning.

The provisioner turns a matrix entry into a ToolchainHandle:
1. Derive the cache key (toolchain version, target triple)
2. Return the cached handle if the toolchain is already recorded
3. Otherwise take the per-key lock and check again
4. Run the entry's provisioning strategy, retrying transient failures
   with exponential backoff
5. Record the manifest in the cache store
"""

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from releasekit.core.cache_store import CacheStore, ToolchainKey
from releasekit.core.exceptions import CacheError, ProvisionError
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import TargetSpec
from releasekit.toolchain.strategies import ProvisioningStrategy, create_strategies

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolchainHandle:
    """
    A provisioned toolchain, ready to build one target.

    Two handles for the same cache key compare equal whether or not the
    second one came from the cache.
    """

    key: ToolchainKey
    strategy: str
    root: Path
    bin_dir: Optional[Path] = None
    env: Tuple[Tuple[str, str], ...] = ()
    tool_versions: Tuple[Tuple[str, str], ...] = ()
    was_cached: bool = field(default=False, compare=False)

    @classmethod
    def from_manifest(
        cls, key: ToolchainKey, manifest: Mapping[str, Any], was_cached: bool
    ) -> "ToolchainHandle":
        bin_dir = manifest.get("bin_dir")
        return cls(
            key=key,
            strategy=manifest["strategy"],
            root=Path(manifest["root"]),
            bin_dir=Path(bin_dir) if bin_dir else None,
            env=tuple(sorted((manifest.get("env") or {}).items())),
            tool_versions=tuple(sorted((manifest.get("tool_versions") or {}).items())),
            was_cached=was_cached,
        )

    def environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """
        Environment for processes using this toolchain.

        Args:
            base: Base environment (default: current process environment)

        Returns:
            Copy of base with the toolchain variables applied and its bin
            directory prepended to PATH
        """
        env = dict(os.environ if base is None else base)
        env.update(dict(self.env))
        if self.bin_dir is not None:
            path = env.get("PATH", "")
            env["PATH"] = (
                f"{self.bin_dir}{os.pathsep}{path}" if path else str(self.bin_dir)
            )
        return env


class ToolchainProvisioner:
    """
    Idempotent, cached toolchain acquisition.

    Example:
        >>> provisioner = ToolchainProvisioner(CacheStore(tmp_path))
        >>> handle = provisioner.ensure(spec)
        >>> provisioner.ensure(spec) == handle  # no second download
        True
    """

    def __init__(
        self,
        store: CacheStore,
        tracker: Optional[ProcessTracker] = None,
        strategies: Optional[Mapping[str, ProvisioningStrategy]] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize provisioner.

        Args:
            store: Cache store shared by all entries of a run
            tracker: Process tracker used for installer commands
            strategies: Strategy instances by name (default: all built-ins)
            max_attempts: Attempts per toolchain before the error surfaces
            backoff_seconds: Base delay, doubled after every failed attempt
            sleep: Sleep function used for backoff
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.store = store
        self.tracker = tracker or ProcessTracker()
        self.strategies = dict(strategies or create_strategies(self.tracker))
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def key_for(self, spec: TargetSpec) -> ToolchainKey:
        """Cache key of the toolchain an entry needs."""
        return ToolchainKey(spec.resolved_toolchain.version, spec.target.triple)

    def ensure(self, spec: TargetSpec) -> ToolchainHandle:
        """
        Make sure the toolchain for spec is installed.

        Args:
            spec: Matrix entry

        Returns:
            ToolchainHandle for the entry's cache key

        Raises:
            ProvisionError: If provisioning fails after all attempts
            CancelledError: If the run was cancelled
        """
        key = self.key_for(spec)

        manifest = self.store.lookup(key)
        if manifest is not None:
            logger.debug(f"Toolchain {key} already cached")
            return ToolchainHandle.from_manifest(key, manifest, was_cached=True)

        strategy = self.strategies.get(spec.resolved_toolchain.strategy)
        if strategy is None:
            raise ProvisionError(
                f"No provisioning strategy named "
                f"'{spec.resolved_toolchain.strategy}' for {key}",
                retriable=False,
            )

        try:
            with self.store.lock(key):
                # Another entry or process may have finished while we waited
                manifest = self.store.lookup(key)
                if manifest is not None:
                    logger.info(f"Toolchain {key} provisioned by another task")
                    return ToolchainHandle.from_manifest(key, manifest, was_cached=True)

                manifest = self._provision_with_retry(strategy, key, spec)
                manifest = self.store.record(key, manifest)
        except CacheError as e:
            raise ProvisionError(f"Toolchain cache unavailable for {key}: {e}") from e

        logger.info(f"Provisioned toolchain {key} using {strategy.name}")
        return ToolchainHandle.from_manifest(key, manifest, was_cached=False)

    def _provision_with_retry(
        self, strategy: ProvisioningStrategy, key: ToolchainKey, spec: TargetSpec
    ) -> Dict[str, Any]:
        for attempt in range(1, self.max_attempts + 1):
            self.tracker.check_cancelled()
            try:
                return strategy.provision(key, spec, self.store)
            except ProvisionError as e:
                if not e.retriable or attempt == self.max_attempts:
                    if attempt > 1:
                        raise ProvisionError(
                            f"{e} (after {attempt} attempts)", retriable=False
                        ) from e
                    raise

                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    f"Provisioning {key} failed (attempt {attempt}/"
                    f"{self.max_attempts}): {e}. Retrying in {delay:g}s..."
                )
                self.sleep(delay)

        raise ProvisionError(f"Provisioning {key} made no attempts")
