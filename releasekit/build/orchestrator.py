"""
Release orchestration.

The orchestrator drives every matrix entry through the same state machine:

    Pending -> Provisioning -> Building -> Verifying -> Packaging -> Done

and from any of the intermediate states to Failed.

Stages of one entry run strictly in order and the first failure moves the
entry to Failed. Entries are independent: they run concurrently on a thread
pool and a failing entry never stops its siblings. An artifact is published
in the same step as the Done transition, so a cancelled run never leaves a
published artifact for an entry that is not Done.
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from releasekit.build.packager import Artifact, Packager
from releasekit.build.runner import BuildResult, BuildRunner
from releasekit.build.verifier import ArtifactVerifier, VerificationResult
from releasekit.core.exceptions import (
    ArchitectureMismatchError,
    CancelledError,
    StageError,
)
from releasekit.core.filesystem import FilesystemError, atomic_write
from releasekit.core.platform import default_concurrency
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import TargetMatrix, TargetSpec
from releasekit.toolchain.provisioner import ToolchainHandle, ToolchainProvisioner

logger = logging.getLogger(__name__)

MANIFEST_NAME = "release-manifest.json"


class EntryState(Enum):
    """Lifecycle state of one matrix entry."""

    PENDING = "pending"
    PROVISIONING = "provisioning"
    BUILDING = "building"
    VERIFYING = "verifying"
    PACKAGING = "packaging"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (EntryState.DONE, EntryState.FAILED)


# Allowed transitions; any non-terminal state may also move to FAILED
_NEXT_STATE = {
    EntryState.PENDING: EntryState.PROVISIONING,
    EntryState.PROVISIONING: EntryState.BUILDING,
    EntryState.BUILDING: EntryState.VERIFYING,
    EntryState.VERIFYING: EntryState.PACKAGING,
    EntryState.PACKAGING: EntryState.DONE,
}


@dataclass
class EntryReport:
    """Progress and outcome of one matrix entry."""

    spec: TargetSpec
    state: EntryState = EntryState.PENDING
    failed_stage: Optional[EntryState] = None
    reason: Optional[str] = None
    error: Optional[BaseException] = field(default=None, repr=False)
    handle: Optional[ToolchainHandle] = None
    build: Optional[BuildResult] = None
    verification: Optional[VerificationResult] = None
    artifact: Optional[Artifact] = None
    history: List[EntryState] = field(default_factory=lambda: [EntryState.PENDING])
    duration_ms: int = 0

    @property
    def triple(self) -> str:
        return self.spec.target_triple

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancelledError)

    def advance(self, state: EntryState):
        """
        Move to the next state.

        Raises:
            RuntimeError: If state is not the successor of the current state
        """
        if _NEXT_STATE.get(self.state) is not state:
            raise RuntimeError(
                f"{self.triple}: invalid transition {self.state.value} -> "
                f"{state.value}"
            )
        self.state = state
        self.history.append(state)

    def fail(self, error: BaseException, reason: Optional[str] = None):
        """Move to FAILED, remembering the stage that failed."""
        if self.state.terminal:
            raise RuntimeError(f"{self.triple}: already {self.state.value}")
        self.failed_stage = self.state
        self.state = EntryState.FAILED
        self.history.append(EntryState.FAILED)
        self.error = error
        self.reason = reason or str(error)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "target": self.triple,
            "host": self.spec.host_platform,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
        }
        if self.state is EntryState.FAILED:
            data["failed_stage"] = self.failed_stage.value
            data["reason"] = self.reason
        if self.handle is not None:
            data["toolchain"] = {
                "key": self.handle.key.id,
                "strategy": self.handle.strategy,
                "tool_versions": dict(self.handle.tool_versions),
            }
        if self.verification is not None:
            data["verification"] = {
                "format": self.verification.binary_format,
                "detected": self.verification.detected_architecture,
                "expected": self.verification.expected_architecture,
                "matched": self.verification.matched,
            }
        if self.build is not None and self.build.log_path is not None:
            data["log"] = str(self.build.log_path)
        if self.artifact is not None:
            data["artifact"] = self.artifact.to_dict()
        return data


@dataclass
class RunReport:
    """Aggregated outcome of a release run, sorted by target triple."""

    entries: List[EntryReport]
    cancelled: bool = False
    duration_ms: int = 0

    def __post_init__(self):
        self.entries = sorted(self.entries, key=lambda e: e.triple)

    @property
    def failed(self) -> List[EntryReport]:
        return [e for e in self.entries if e.state is EntryState.FAILED]

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def success(self) -> bool:
        return all(e.state is EntryState.DONE for e in self.entries)

    @property
    def exit_code(self) -> int:
        """Number of failed entries; 0 when every entry is Done."""
        return self.failed_count

    @property
    def artifacts(self) -> List[Artifact]:
        return [e.artifact for e in self.entries if e.artifact is not None]

    def entry(self, triple: str) -> EntryReport:
        for entry in self.entries:
            if entry.triple == triple:
                return entry
        raise KeyError(triple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": 1,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "success": self.success,
            "cancelled": self.cancelled,
            "failed": self.failed_count,
            "duration_ms": self.duration_ms,
            "entries": [e.to_dict() for e in self.entries],
        }

    def write_manifest(self, output_dir: Path) -> Path:
        """Write release-manifest.json into output_dir."""
        path = Path(output_dir) / MANIFEST_NAME
        atomic_write(path, json.dumps(self.to_dict(), indent=2) + "\n")
        return path


class Orchestrator:
    """
    Runs the build matrix.

    Example:
        >>> orchestrator = Orchestrator(
        ...     matrix, provisioner, runner, ArtifactVerifier(), packager, "dist"
        ... )
        >>> report = orchestrator.run()
        >>> report.exit_code
        0
    """

    def __init__(
        self,
        matrix: TargetMatrix,
        provisioner: ToolchainProvisioner,
        runner: BuildRunner,
        verifier: ArtifactVerifier,
        packager: Packager,
        output_dir: Path,
        concurrency: Optional[int] = None,
        tracker: Optional[ProcessTracker] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            matrix: Entries to build
            provisioner: Toolchain provisioner
            runner: Build runner
            verifier: Binary verifier
            packager: Artifact packager
            output_dir: Directory receiving published artifacts
            concurrency: Maximum entries in flight (default: CPU count)
            tracker: Process tracker cancelled by cancel() (default: the
                runner's tracker)
        """
        if concurrency is not None and concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.matrix = matrix
        self.provisioner = provisioner
        self.runner = runner
        self.verifier = verifier
        self.packager = packager
        self.output_dir = Path(output_dir)
        self.concurrency = concurrency or default_concurrency()
        self.tracker = tracker or runner.tracker
        self._lock = threading.Lock()
        self._cancel_requested = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    def cancel(self):
        """
        Cancel the run.

        In-flight child processes are terminated, entries that are not Done
        end up Failed(cancelled) and nothing further is published.
        """
        with self._lock:
            if self._cancel_requested.is_set():
                return
            self._cancel_requested.set()
        logger.warning("Cancellation requested")
        self.tracker.cancel()

    def run(self) -> RunReport:
        """
        Build every entry of the matrix.

        Returns:
            RunReport with one entry per matrix entry, sorted by triple
        """
        entries = [EntryReport(spec) for spec in self.matrix]
        workers = min(self.concurrency, len(entries))
        start = time.monotonic()

        logger.info(
            f"Building {len(entries)} target(s) with concurrency {workers}: "
            f"{', '.join(e.triple for e in entries)}"
        )

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="releasekit"
        ) as executor:
            futures = [executor.submit(self._run_entry, entry) for entry in entries]
            for future in futures:
                future.result()

        report = RunReport(
            entries,
            cancelled=self.cancelled,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        for entry in report.entries:
            if entry.state is EntryState.DONE:
                logger.info(f"{entry.triple}: done ({entry.artifact.path.name})")
            else:
                logger.error(
                    f"{entry.triple}: failed at {entry.failed_stage.value}: "
                    f"{entry.reason}"
                )
        return report

    def _run_entry(self, entry: EntryReport):
        spec = entry.spec
        staged: Optional[Artifact] = None
        start = time.monotonic()

        try:
            self._enter(entry, EntryState.PROVISIONING)
            entry.handle = self.provisioner.ensure(spec)

            self._enter(entry, EntryState.BUILDING)
            entry.build = self.runner.run(entry.handle, spec)

            self._enter(entry, EntryState.VERIFYING)
            entry.verification = self.verifier.verify(entry.build.binary_path, spec)
            if not entry.verification.matched:
                raise ArchitectureMismatchError(
                    entry.build.binary_path,
                    entry.verification.detected_architecture,
                    entry.verification.expected_architecture,
                )

            self._enter(entry, EntryState.PACKAGING)
            staged = self.packager.package(entry.build.binary_path, spec)

            with self._lock:
                self._check_cancelled()
                entry.artifact = self.packager.publish(staged, self.output_dir)
                staged = None
                entry.advance(EntryState.DONE)

        except CancelledError as e:
            logger.info(f"{entry.triple}: cancelled during {entry.state.value}")
            entry.fail(e, "cancelled")
        except StageError as e:
            logger.error(f"{entry.triple}: {entry.state.value} failed: {e}")
            entry.fail(e)
        except Exception as e:
            logger.exception(
                f"{entry.triple}: unexpected error during {entry.state.value}"
            )
            entry.fail(e, f"unexpected error: {e}")
        finally:
            entry.duration_ms = int((time.monotonic() - start) * 1000)
            if entry.state is not EntryState.DONE:
                self._discard(entry, staged)

    def _enter(self, entry: EntryReport, state: EntryState):
        with self._lock:
            self._check_cancelled()
            entry.advance(state)
        logger.debug(f"{entry.triple}: {state.value}")

    def _check_cancelled(self):
        if self._cancel_requested.is_set() or self.tracker.cancelled:
            raise CancelledError()

    def _discard(self, entry: EntryReport, staged: Optional[Artifact]):
        try:
            if staged is not None:
                self.packager.discard(staged)
            else:
                self.packager.discard_entry(entry.spec)
        except (OSError, FilesystemError) as e:
            logger.warning(f"{entry.triple}: could not clean staging area: {e}")


__all__ = [
    "EntryReport",
    "EntryState",
    "Orchestrator",
    "RunReport",
    "MANIFEST_NAME",
]
