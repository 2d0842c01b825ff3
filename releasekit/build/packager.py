"""
Artifact packaging.

The packager turns a verified binary into a distributable artifact inside a
staging directory: it copies the binary (the build output itself is never
modified), strips the copy when requested, and either renames it to the
final artifact name or feeds it to the installer generator. Staged artifacts
are moved to the output directory by publish() or deleted by discard().
"""

import dataclasses
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from releasekit.core.download import DownloadError, download_file
from releasekit.core.exceptions import PackagingError
from releasekit.core.filesystem import compute_file_hash, is_relative_to, safe_rmtree
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import InstallerSpec, TargetSpec

logger = logging.getLogger(__name__)


class ArtifactKind(Enum):
    """Kind of distributable artifact."""

    RAW_BINARY = "raw-binary"
    INSTALLER = "installer"


@dataclass(frozen=True)
class Artifact:
    """
    A packaged artifact. Never mutated; publish() returns a new instance.

    Attributes:
        path: Artifact file
        kind: Raw binary or installer
        size_bytes: File size
        sha256: File checksum
        name: Human readable label
        target: Target triple the artifact was built for
    """

    path: Path
    kind: ArtifactKind
    size_bytes: int
    sha256: str
    name: str
    target: str

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "file": self.path.name,
            "kind": self.kind.value,
            "size_bytes": self.size_bytes,
            "sha256": self.sha256,
            "name": self.name,
            "target": self.target,
        }


class Packager:
    """
    Packages verified binaries into staged artifacts.

    Example:
        >>> packager = Packager("parity", project_root, output / ".staging")
        >>> artifact = packager.package(result.binary_path, spec)
        >>> packager.publish(artifact, output).path.name
        'parity-arm-unknown-linux-gnueabihf.bin'
    """

    def __init__(
        self,
        project: str,
        project_root: Path,
        staging_dir: Path,
        tracker: Optional[ProcessTracker] = None,
        download_timeout: int = 30,
    ):
        """
        Initialize packager.

        Args:
            project: Project name, the first part of every artifact name
            project_root: Directory installer scripts are resolved against
            staging_dir: Directory artifacts are assembled in
            tracker: Process tracker for strip and installer commands
            download_timeout: Timeout for installer asset downloads
        """
        self.project = project
        self.project_root = Path(project_root)
        self.staging_dir = Path(staging_dir)
        self.tracker = tracker or ProcessTracker()
        self.download_timeout = download_timeout

    def entry_staging_dir(self, spec: TargetSpec) -> Path:
        return self.staging_dir / spec.target_triple

    def package(self, binary_path: Path, spec: TargetSpec) -> Artifact:
        """
        Package one verified binary.

        Args:
            binary_path: Verified build output
            spec: Matrix entry

        Returns:
            Staged Artifact

        Raises:
            PackagingError: If copying, stripping or installer generation fails
        """
        binary_path = Path(binary_path)
        staging = self.entry_staging_dir(spec)
        if staging.exists():
            safe_rmtree(staging, require_prefix=self.staging_dir)

        try:
            staging.mkdir(parents=True)
            work_copy = staging / binary_path.name
            shutil.copy2(binary_path, work_copy)
        except OSError as e:
            raise PackagingError(f"Failed to stage {binary_path}: {e}") from e

        if spec.strip:
            self._strip(work_copy, spec)

        final = staging / spec.artifact_filename(self.project)
        if spec.installer is not None:
            kind = ArtifactKind.INSTALLER
            self._build_installer(work_copy, final, spec.installer, spec)
        else:
            kind = ArtifactKind.RAW_BINARY
            try:
                work_copy.replace(final)
            except OSError as e:
                raise PackagingError(f"Failed to rename {work_copy}: {e}") from e

        artifact = Artifact(
            path=final,
            kind=kind,
            size_bytes=final.stat().st_size,
            sha256=compute_file_hash(final),
            name=spec.artifact_name or f"{self.project} ({spec.target_triple})",
            target=spec.target_triple,
        )
        logger.info(
            f"Packaged {artifact.kind.value} for {spec.target_triple}: "
            f"{final.name} ({artifact.size_bytes} bytes)"
        )
        return artifact

    def _strip(self, path: Path, spec: TargetSpec):
        tool = spec.resolved_strip_tool
        if not tool:
            raise PackagingError(f"No strip tool known for {spec.target_triple}")

        logger.debug(f"Stripping {path} with {tool}")
        self._run_tool([tool, str(path)], cwd=path.parent, what="strip")

    def _build_installer(
        self, binary: Path, outfile: Path, installer: InstallerSpec, spec: TargetSpec
    ):
        script = self.project_root / installer.script
        if not script.is_file():
            raise PackagingError(f"Installer script not found: {script}")

        for asset in installer.assets:
            destination = script.parent / asset.path
            if not is_relative_to(destination.resolve(), script.parent.resolve()):
                raise PackagingError(
                    f"Installer asset path {asset.path!r} is outside {script.parent}"
                )
            try:
                download_file(
                    asset.url,
                    destination,
                    expected_sha256=asset.sha256,
                    timeout=self.download_timeout,
                )
            except DownloadError as e:
                raise PackagingError(
                    f"Failed to fetch installer asset {asset.url}: {e}"
                ) from e

        cmd = [
            installer.tool,
            f"/DBINARY={binary}",
            f"/DOUTFILE={outfile}",
            f"/DTARGET={spec.target_triple}",
        ]
        cmd += [f"/D{name}={value}" for name, value in installer.defines]
        cmd.append(str(script))

        self._run_tool(cmd, cwd=script.parent, what="installer generation")

        if not outfile.is_file():
            raise PackagingError(
                f"{installer.tool} finished but did not write {outfile.name}"
            )

    def _run_tool(self, cmd: List[str], cwd: Path, what: str):
        try:
            result = self.tracker.run(cmd, cwd=str(cwd))
        except OSError as e:
            raise PackagingError(f"{what} failed: cannot run {cmd[0]}: {e}") from e

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip().splitlines()
            tail = "\n".join(output[-20:])
            raise PackagingError(
                f"{what} failed ({cmd[0]} exited with {result.returncode})"
                + (f":\n{tail}" if tail else "")
            )

    def publish(self, artifact: Artifact, dest_dir: Path) -> Artifact:
        """
        Move a staged artifact into the output directory.

        Returns:
            New Artifact pointing at the published file
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        destination = dest_dir / artifact.path.name
        try:
            shutil.move(str(artifact.path), str(destination))
        except OSError as e:
            raise PackagingError(f"Failed to publish {artifact.path}: {e}") from e

        self._remove_staging(artifact.path.parent)
        logger.info(f"Published {destination}")
        return dataclasses.replace(artifact, path=destination)

    def discard(self, artifact: Artifact):
        """Delete a staged artifact."""
        artifact.path.unlink(missing_ok=True)
        self._remove_staging(artifact.path.parent)
        logger.debug(f"Discarded {artifact.path}")

    def discard_entry(self, spec: TargetSpec):
        """Delete whatever the entry left in the staging area."""
        self._remove_staging(self.entry_staging_dir(spec))

    def _remove_staging(self, path: Path):
        if path.exists() and path.parent == self.staging_dir:
            safe_rmtree(path, require_prefix=self.staging_dir)


__all__ = ["Artifact", "ArtifactKind", "Packager"]
