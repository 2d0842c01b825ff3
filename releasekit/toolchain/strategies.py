"""
Toolchain provisioning strategies.

A strategy knows how to materialize the toolchain of one target into the
cache and returns a manifest describing the result. Strategies never touch
the cache manifest themselves; the provisioner records what they return.

- ``rustup``: install a rustup channel plus the target's standard library
- ``download``: fetch a checksummed archive (or installer) into the cache
- ``system``: use compilers already installed on PATH
"""

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from releasekit.core.cache_store import CacheStore, ToolchainKey
from releasekit.core.download import DownloadError, download_file
from releasekit.core.exceptions import ProvisionError
from releasekit.core.filesystem import (
    ArchiveExtractionError,
    extract_archive,
    is_archive,
    safe_rmtree,
)
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import TargetSpec

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 60


class ProvisioningStrategy(ABC):
    """
    Abstract base class for provisioning strategies.

    Attributes:
        name: Strategy name used in configuration files
        tracker: Process tracker used for every external command
    """

    name: str = ""

    def __init__(
        self, tracker: Optional[ProcessTracker] = None, timeout: float = 1800
    ):
        self.tracker = tracker or ProcessTracker()
        self.timeout = timeout

    @abstractmethod
    def provision(
        self, key: ToolchainKey, spec: TargetSpec, store: CacheStore
    ) -> Dict[str, Any]:
        """
        Install the toolchain for key.

        Args:
            key: Cache key being provisioned
            spec: Target entry requesting the toolchain
            store: Cache store receiving the installation

        Returns:
            Manifest with 'root', 'bin_dir', 'env' and 'tool_versions'

        Raises:
            ProvisionError: If installation fails
        """
        pass

    def _run(
        self, cmd: List[str], env: Optional[Mapping[str, str]] = None, timeout=None
    ):
        """Run an installer command, converting failures into ProvisionError."""
        try:
            result = self.tracker.run(cmd, env=env, timeout=timeout or self.timeout)
        except FileNotFoundError as e:
            raise ProvisionError(
                f"Command not found: {cmd[0]}", retriable=False
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ProvisionError(f"Command timed out: {' '.join(cmd)}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip().splitlines()
            detail = stderr[-1] if stderr else f"exit code {result.returncode}"
            raise ProvisionError(f"{' '.join(cmd)} failed: {detail}")
        return result

    def _probe(self, cmd: List[str], env: Optional[Mapping[str, str]] = None) -> str:
        """
        Check that a tool executes and return its version line.

        Raises:
            ProvisionError: If the tool cannot run (not retriable)
        """
        try:
            result = self.tracker.run(cmd, env=env, timeout=PROBE_TIMEOUT)
        except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired) as e:
            raise ProvisionError(
                f"Tool is not executable: {cmd[0]}: {e}", retriable=False
            ) from e

        if result.returncode != 0:
            raise ProvisionError(
                f"{' '.join(cmd)} exited with code {result.returncode}", retriable=False
            )

        output = (result.stdout or result.stderr or "").strip()
        return output.splitlines()[0] if output else ""


class RustupStrategy(ProvisioningStrategy):
    """Install a rustup channel and add the target's standard library."""

    name = "rustup"

    def provision(self, key, spec, store):
        rustup = shutil.which("rustup")
        if rustup is None:
            raise ProvisionError(
                "rustup is not installed or not on PATH", retriable=False
            )

        channel = key.version
        logger.info(f"Installing Rust {channel} for {key.triple} with rustup")
        self._run([rustup, "toolchain", "install", channel, "--profile", "minimal"])
        self._run([rustup, "target", "add", "--toolchain", channel, key.triple])

        env = {"RUSTUP_TOOLCHAIN": channel}
        probe_env = _merged_env(env)
        tool_versions = {
            "rustc": self._probe(["rustc", "-V"], probe_env),
            "cargo": self._probe(["cargo", "-V"], probe_env),
        }

        root = store.entry_dir(key)
        root.mkdir(parents=True, exist_ok=True)
        return {
            "strategy": self.name,
            "root": str(root),
            "bin_dir": None,
            "env": env,
            "tool_versions": tool_versions,
        }


class DownloadStrategy(ProvisioningStrategy):
    """Download a checksummed toolchain archive or installer into the cache."""

    name = "download"

    def provision(self, key, spec, store):
        toolchain = spec.resolved_toolchain
        file_name = toolchain.url.rstrip("/").split("/")[-1]
        download_path = store.downloads_dir / file_name

        entry_dir = store.entry_dir(key)
        install_dir = entry_dir / "toolchain"
        if install_dir.exists():
            safe_rmtree(install_dir, require_prefix=store.toolchains_dir)
        entry_dir.mkdir(parents=True, exist_ok=True)

        # Other keys may share the archive; hold it until it has been unpacked
        with store.download_lock(file_name):
            try:
                download_file(
                    toolchain.url,
                    download_path,
                    expected_sha256=toolchain.sha256,
                    max_retries=1,
                )
            except DownloadError as e:
                raise ProvisionError(
                    f"Failed to download toolchain for {key}: {e}"
                ) from e

            if is_archive(download_path):
                self._extract(download_path, entry_dir, install_dir, store)
            elif toolchain.install_args:
                args = [a.format(dest=install_dir) for a in toolchain.install_args]
                logger.info(f"Running installer {file_name}")
                self._run([str(download_path), *args])
            else:
                raise ProvisionError(
                    f"{file_name} is not an archive and no install_args are "
                    "configured",
                    retriable=False,
                )

        bin_dir = install_dir / toolchain.bin_subdir
        tool_versions = {}
        rustc = bin_dir / f"rustc{spec.target.exe_suffix}"
        if rustc.exists():
            tool_versions["rustc"] = self._probe([str(rustc), "-V"])

        return {
            "strategy": self.name,
            "root": str(install_dir),
            "bin_dir": str(bin_dir),
            "env": {},
            "tool_versions": tool_versions,
            "source_url": toolchain.url,
            "sha256": toolchain.sha256,
        }

    def _extract(self, archive: Path, entry_dir: Path, install_dir: Path, store):
        temp_dir = entry_dir / ".extract"
        try:
            extract_archive(archive, temp_dir)
            items = list(temp_dir.iterdir())
            # Archives usually wrap everything in a single top-level directory
            root = items[0] if len(items) == 1 and items[0].is_dir() else temp_dir
            root.rename(install_dir)
        except (ArchiveExtractionError, OSError) as e:
            raise ProvisionError(f"Failed to extract {archive.name}: {e}") from e
        finally:
            if temp_dir.exists():
                safe_rmtree(temp_dir, require_prefix=store.toolchains_dir)


class SystemStrategy(ProvisioningStrategy):
    """Use compilers that are already installed on PATH."""

    name = "system"

    def provision(self, key, spec, store):
        compiler = shutil.which(spec.compiler_binary)
        if compiler is None:
            raise ProvisionError(
                f"Compiler {spec.compiler_binary} for {key.triple} not found on PATH",
                retriable=False,
            )

        tool_versions = {spec.compiler_binary: self._probe([compiler, "--version"])}
        if spec.linker_override and shutil.which(spec.linker_override) is None:
            raise ProvisionError(
                f"Linker {spec.linker_override} for {key.triple} not found on PATH",
                retriable=False,
            )

        bin_dir = Path(compiler).parent
        return {
            "strategy": self.name,
            "root": str(bin_dir.parent),
            "bin_dir": str(bin_dir),
            "env": {},
            "tool_versions": tool_versions,
        }


def _merged_env(extra: Mapping[str, str]) -> Dict[str, str]:
    env = dict(os.environ)
    env.update(extra)
    return env


STRATEGIES = {
    RustupStrategy.name: RustupStrategy,
    DownloadStrategy.name: DownloadStrategy,
    SystemStrategy.name: SystemStrategy,
}


def create_strategies(
    tracker: Optional[ProcessTracker] = None,
) -> Dict[str, ProvisioningStrategy]:
    """Instantiate every registered strategy sharing one process tracker."""
    tracker = tracker or ProcessTracker()
    return {name: cls(tracker) for name, cls in STRATEGIES.items()}
