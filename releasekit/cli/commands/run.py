"""
Run command implementation.

Builds, verifies and packages every selected target of the matrix and
writes the release manifest. The exit code is the number of failed targets.
"""

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Optional

from releasekit.build.orchestrator import EntryState, Orchestrator, RunReport
from releasekit.build.packager import Packager
from releasekit.build.runner import BuildRunner
from releasekit.build.verifier import ArtifactVerifier
from releasekit.cli.utils import format_table, load_release_config, print_box
from releasekit.config.parser import ReleaseConfig
from releasekit.core.cache_store import CacheStore
from releasekit.core.directory import ensure_output_structure
from releasekit.core.exceptions import ConfigError
from releasekit.core.platform import detect_platform
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import TargetMatrix
from releasekit.toolchain.provisioner import ToolchainProvisioner

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the release command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Number of failed targets (0 for success)

    Raises:
        ConfigError: If the configuration or the selection is invalid
    """
    config = load_release_config(args)
    matrix = select_matrix(config.matrix, args.target, args.all_hosts)
    orchestrator = create_orchestrator(
        config,
        matrix,
        concurrency=args.concurrency,
        timeout=args.timeout,
        output_dir=args.output_dir,
        cache_dir=args.cache_dir,
    )

    with cancel_on_signals(orchestrator):
        report = orchestrator.run()

    manifest = report.write_manifest(orchestrator.output_dir)
    print_report(report)
    logger.info(f"Release manifest: {manifest}")
    return report.exit_code


def select_matrix(
    matrix: TargetMatrix, targets=None, all_hosts: bool = False
) -> TargetMatrix:
    """
    Narrow the matrix to what this invocation builds.

    Explicit --target selections win; otherwise only the entries declared for
    the current host are built unless all_hosts is set.
    """
    if targets:
        return matrix.select(targets)
    if all_hosts:
        return matrix

    host = detect_platform().platform_string()
    entries = matrix.for_host(host)
    if not entries:
        raise ConfigError(
            f"No targets are declared for host {host}. "
            "Use --target or --all-hosts to build them anyway."
        )
    skipped = len(matrix) - len(entries)
    if skipped:
        logger.info(f"Skipping {skipped} target(s) declared for other hosts")
    return TargetMatrix(entries, matrix.known_strategies)


def create_orchestrator(
    config: ReleaseConfig,
    matrix: TargetMatrix,
    concurrency: Optional[int] = None,
    timeout: Optional[float] = None,
    output_dir=None,
    cache_dir=None,
) -> Orchestrator:
    """Wire the pipeline components for one run. CLI values override config."""
    options = config.options
    concurrency = concurrency if concurrency is not None else options.concurrency
    if concurrency is not None and concurrency < 1:
        raise ConfigError("--concurrency must be at least 1")

    timeout = timeout if timeout is not None else options.timeout
    if timeout is not None and timeout <= 0:
        raise ConfigError("--timeout must be positive")

    output_dir = (output_dir or options.output_dir).resolve()
    layout = ensure_output_structure(output_dir)

    tracker = ProcessTracker()
    store = CacheStore(cache_dir or options.cache_dir)
    provisioner = ToolchainProvisioner(
        store, tracker, max_attempts=options.max_attempts
    )
    runner = BuildRunner(
        config.build,
        config.project,
        config.project_root,
        layout["logs"],
        tracker,
        timeout=timeout,
    )
    packager = Packager(
        config.project, config.project_root, layout["staging"], tracker
    )
    return Orchestrator(
        matrix,
        provisioner,
        runner,
        ArtifactVerifier(),
        packager,
        output_dir,
        concurrency=concurrency,
        tracker=tracker,
    )


@contextmanager
def cancel_on_signals(orchestrator: Orchestrator):
    """Cancel the orchestrator on SIGINT/SIGTERM while the body runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}, cancelling run")
        threading.Thread(
            target=orchestrator.cancel, name="releasekit-cancel", daemon=True
        ).start()

    signals = [signal.SIGINT, signal.SIGTERM]
    previous = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def print_report(report: RunReport):
    """Print the per-target status table."""
    rows = []
    for entry in report.entries:
        if entry.state is EntryState.DONE:
            rows.append([entry.triple, "done", entry.artifact.path.name])
        else:
            rows.append(
                [entry.triple, f"failed ({entry.failed_stage.value})", entry.reason]
            )

    print_box(
        "Release {}: {} of {} target(s) done".format(
            "succeeded" if report.success else "failed",
            len(report.entries) - report.failed_count,
            len(report.entries),
        )
    )
    print(format_table(["TARGET", "STATUS", "ARTIFACT / REASON"], rows))
