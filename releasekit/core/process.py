"""
Child process tracking for cancellable runs.

Every external command a release run invokes (toolchain installers, the
project build, strip, the installer generator) is started through a
ProcessTracker. Cancelling the tracker terminates all in-flight children,
including their process groups on POSIX, and refuses to start new ones.
"""

import logging
import os
import signal
import subprocess
import threading
from typing import Dict, List, Mapping, Optional, Set

from releasekit.core.exceptions import CancelledError

logger = logging.getLogger(__name__)

IS_WINDOWS = os.name == "nt"


class ProcessTracker:
    """
    Registry of running child processes with cooperative cancellation.

    Example:
        >>> tracker = ProcessTracker()
        >>> result = tracker.run(["rustc", "-V"])
        >>> # from another thread:
        >>> tracker.cancel()
    """

    def __init__(self, grace_period: float = 5.0):
        """
        Initialize tracker.

        Args:
            grace_period: Seconds to wait after terminate before killing
        """
        self.grace_period = grace_period
        self._lock = threading.Lock()
        self._processes: Set[subprocess.Popen] = set()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check_cancelled(self):
        """Raise CancelledError if cancellation was requested."""
        if self._cancelled.is_set():
            raise CancelledError()

    def spawn(self, cmd: List[str], **popen_kwargs) -> subprocess.Popen:
        """
        Start a child process and register it.

        Raises:
            CancelledError: If the tracker was already cancelled
            OSError: If the executable cannot be started
        """
        if not IS_WINDOWS:
            popen_kwargs.setdefault("start_new_session", True)

        with self._lock:
            self.check_cancelled()
            logger.debug(f"Starting: {' '.join(str(c) for c in cmd)}")
            proc = subprocess.Popen([str(c) for c in cmd], **popen_kwargs)
            self._processes.add(proc)
        return proc

    def release(self, proc: subprocess.Popen):
        """Forget a finished process."""
        with self._lock:
            self._processes.discard(proc)

    def run(
        self,
        cmd: List[str],
        cwd=None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a short command to completion, capturing its output.

        Raises:
            CancelledError: If cancelled before or while running
            subprocess.TimeoutExpired: If the command exceeds timeout
        """
        proc = self.spawn(
            cmd,
            cwd=cwd,
            env=dict(env) if env is not None else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._terminate(proc, force=True)
            proc.communicate()
            raise
        finally:
            self.release(proc)

        self.check_cancelled()
        return subprocess.CompletedProcess(proc.args, proc.returncode, stdout, stderr)

    def cancel(self):
        """Refuse new processes and terminate all running ones."""
        self._cancelled.set()
        with self._lock:
            running = list(self._processes)

        if running:
            logger.warning(f"Terminating {len(running)} running process(es)")

        for proc in running:
            self._terminate(proc)

        for proc in running:
            try:
                proc.wait(timeout=self.grace_period)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {proc.pid} ignored terminate, killing")
                self._terminate(proc, force=True)

    def terminate(self, proc: subprocess.Popen):
        """Terminate one process, killing it if it outlives the grace period."""
        self._terminate(proc)
        try:
            proc.wait(timeout=self.grace_period)
        except subprocess.TimeoutExpired:
            self._terminate(proc, force=True)

    def _terminate(self, proc: subprocess.Popen, force: bool = False):
        if proc.poll() is not None:
            return
        try:
            if IS_WINDOWS and force:
                proc.kill()
            elif IS_WINDOWS:
                proc.terminate()
            else:
                os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
        except (ProcessLookupError, PermissionError) as e:
            logger.debug(f"Could not signal process {proc.pid}: {e}")

    def running(self) -> Dict[int, List[str]]:
        """Snapshot of running processes by pid."""
        with self._lock:
            return {p.pid: list(p.args) for p in self._processes if p.poll() is None}
