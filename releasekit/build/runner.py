"""
Build execution for one matrix entry.

The runner invokes the project's build command with the provisioned
toolchain on PATH and the entry's linker override applied through a scoped
configuration that only the build process sees. Output is streamed line by
line: the full text goes to the entry's log file, only a bounded tail is
kept in memory for error reports.
"""

import json
import logging
import re
import subprocess
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from releasekit.config.parser import BuildConfig
from releasekit.core.exceptions import BuildError, BuildTimeoutError, CancelledError
from releasekit.core.filesystem import temporary_directory
from releasekit.core.process import ProcessTracker
from releasekit.cross.targets import TargetSpec
from releasekit.toolchain.provisioner import ToolchainHandle

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class BuildResult:
    """Outcome of a successful build."""

    target: str
    exit_code: int
    binary_path: Path
    duration_ms: int
    log_path: Optional[Path] = None


def _env_triple(triple: str) -> str:
    return re.sub(r"[^A-Za-z0-9]", "_", triple)


@contextmanager
def scoped_build_config(
    spec: TargetSpec,
) -> Iterator[Tuple[Path, Dict[str, str]]]:
    """
    Write the per-build configuration into a temporary directory.

    The directory holds a config.toml with a [target.<triple>] table setting
    the linker override (empty when the entry has none). It is removed when
    the context exits, whether the build succeeded or not.

    Yields:
        (config_path, env) where env holds the compiler and linker variables
        for the build process
    """
    triple = spec.target.triple
    env = {"CC": spec.compiler_binary}
    env[f"CC_{_env_triple(triple)}"] = spec.compiler_binary
    if spec.cxx_compiler:
        env["CXX"] = spec.cxx_compiler
        env[f"CXX_{_env_triple(triple)}"] = spec.cxx_compiler

    lines = []
    if spec.linker_override:
        lines.append(f'[target."{triple}"]')
        lines.append(f"linker = {json.dumps(spec.linker_override)}")
        linker_var = f"CARGO_TARGET_{_env_triple(triple).upper()}_LINKER"
        env[linker_var] = spec.linker_override

    with temporary_directory(prefix="releasekit-build-") as scratch:
        config_path = scratch / "config.toml"
        config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        env["RELEASEKIT_BUILD_CONFIG"] = str(config_path)
        logger.debug(f"Scoped build config for {triple}: {config_path}")
        yield config_path, env


class BuildRunner:
    """
    Runs the project build for one toolchain/target pair.

    Example:
        >>> runner = BuildRunner(config.build, "parity", root, logs_dir)
        >>> result = runner.run(handle, spec)
        >>> result.binary_path
        PosixPath('.../target/x86_64-unknown-linux-gnu/release/parity')
    """

    def __init__(
        self,
        build_config: BuildConfig,
        project: str,
        project_root: Path,
        log_dir: Path,
        tracker: Optional[ProcessTracker] = None,
        output_callback: Optional[OutputCallback] = None,
        timeout: Optional[float] = None,
        tail_lines: int = 200,
    ):
        """
        Initialize runner.

        Args:
            build_config: Build command and binary location templates
            project: Project name (used in templates)
            project_root: Directory the build runs in
            log_dir: Directory receiving one <triple>.log per entry
            tracker: Process tracker used for cancellation
            output_callback: Called with (triple, line) for every output line;
                defaults to logging each line
            timeout: Per-entry timeout in seconds (None: no timeout)
            tail_lines: Output lines kept in memory for error reports
        """
        self.build_config = build_config
        self.project = project
        self.project_root = Path(project_root)
        self.log_dir = Path(log_dir)
        self.tracker = tracker or ProcessTracker()
        self.output_callback = output_callback
        self.timeout = timeout
        self.tail_lines = tail_lines

    def log_path(self, spec: TargetSpec) -> Path:
        return self.log_dir / f"{spec.target_triple}.log"

    def binary_path(self, spec: TargetSpec) -> Path:
        """Expected location of the built binary."""
        relative = self._expand(self.build_config.binary, spec)
        path = Path(relative)
        return path if path.is_absolute() else self.project_root / path

    def run(self, handle: ToolchainHandle, spec: TargetSpec) -> BuildResult:
        """
        Build one target.

        Args:
            handle: Provisioned toolchain for the target
            spec: Matrix entry

        Returns:
            BuildResult of the successful build

        Raises:
            BuildError: Non-zero exit, missing binary or timeout
            CancelledError: If the run was cancelled
        """
        triple = spec.target_triple
        log_path = self.log_path(spec)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout if self.timeout else None
        start = time.monotonic()

        with scoped_build_config(spec) as (config_path, scoped_env):
            env = handle.environment()
            env.update(self.build_config.env)
            env.update(spec.env)
            env.update(scoped_env)

            with open(log_path, "w", encoding="utf-8") as log_file:
                if self.build_config.test_command:
                    test_cmd = [
                        self._expand(a, spec, config_path)
                        for a in self.build_config.test_command
                    ]
                    exit_code, tail = self._stream(
                        test_cmd, env, triple, log_file, deadline
                    )
                    if exit_code != 0:
                        raise BuildError(
                            f"Tests for {triple} failed with exit code {exit_code}",
                            exit_code=exit_code,
                            output_tail=tail,
                        )

                cmd = [
                    self._expand(a, spec, config_path)
                    for a in self.build_config.command
                ]
                exit_code, tail = self._stream(cmd, env, triple, log_file, deadline)

        duration_ms = int((time.monotonic() - start) * 1000)

        if exit_code != 0:
            raise BuildError(
                f"Build for {triple} failed with exit code {exit_code} "
                f"(log: {log_path})",
                exit_code=exit_code,
                output_tail=tail,
            )

        binary = self.binary_path(spec)
        if not binary.is_file():
            raise BuildError(
                f"Build for {triple} succeeded but produced no binary at {binary}",
                exit_code=exit_code,
                output_tail=tail,
            )

        logger.info(f"Built {triple} in {duration_ms / 1000:.1f}s: {binary}")
        return BuildResult(
            target=triple,
            exit_code=exit_code,
            binary_path=binary,
            duration_ms=duration_ms,
            log_path=log_path,
        )

    def _stream(
        self,
        cmd: List[str],
        env: Dict[str, str],
        triple: str,
        log_file,
        deadline: Optional[float],
    ) -> Tuple[int, List[str]]:
        """Run cmd, forwarding output. Returns (exit_code, output tail)."""
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise BuildTimeoutError(triple, self.timeout)

        log_file.write(f"$ {' '.join(cmd)}\n")
        log_file.flush()

        try:
            proc = self.tracker.spawn(
                cmd,
                cwd=str(self.project_root),
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise BuildError(f"Failed to start build command {cmd[0]}: {e}") from e

        tail = deque(maxlen=self.tail_lines)
        timed_out = threading.Event()
        timer = None
        if remaining is not None:

            def on_timeout():
                timed_out.set()
                logger.warning(f"[{triple}] timeout reached, terminating build")
                self.tracker.terminate(proc)

            timer = threading.Timer(remaining, on_timeout)
            timer.daemon = True
            timer.start()

        try:
            for raw in proc.stdout:
                line = raw.rstrip("\r\n")
                log_file.write(line + "\n")
                tail.append(line)
                self._emit(triple, line)
            exit_code = proc.wait()
        finally:
            if timer is not None:
                timer.cancel()
            proc.stdout.close()
            self.tracker.release(proc)
            log_file.flush()

        if timed_out.is_set():
            raise BuildTimeoutError(triple, self.timeout, output_tail=list(tail))
        if self.tracker.cancelled:
            raise CancelledError()

        return exit_code, list(tail)

    def _emit(self, triple: str, line: str):
        if self.output_callback is not None:
            self.output_callback(triple, line)
        else:
            logger.info(f"[{triple}] {line}")

    def _expand(
        self, template: str, spec: TargetSpec, config_path: Optional[Path] = None
    ) -> str:
        values = {
            "triple": spec.target.triple,
            "project": self.project,
            "exe": spec.target.exe_suffix,
            "config": str(config_path) if config_path else "",
            "root": str(self.project_root),
        }
        try:
            return template.format(**values)
        except (KeyError, IndexError) as e:
            raise BuildError(f"Unknown placeholder in '{template}': {e}") from e


__all__ = ["BuildResult", "BuildRunner", "scoped_build_config"]
