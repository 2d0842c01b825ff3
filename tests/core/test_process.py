"""
Unit tests for child process tracking and cancellation.
"""

import subprocess
import sys
import threading
import time

import pytest

from releasekit.core.exceptions import CancelledError
from releasekit.core.process import ProcessTracker

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]


class TestProcessTracker:
    """Tests for ProcessTracker."""

    def test_run_captures_output(self, tracker):
        """Test run returns the completed process."""
        result = tracker.run([sys.executable, "-c", "print('hello')"])

        assert result.returncode == 0
        assert result.stdout.strip() == "hello"
        assert tracker.running() == {}

    def test_run_nonzero_exit(self, tracker):
        """Test a failing command is returned, not raised."""
        result = tracker.run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert result.returncode == 3

    def test_run_timeout_kills(self, tracker):
        """Test a timeout kills the child and re-raises."""
        start = time.monotonic()

        with pytest.raises(subprocess.TimeoutExpired):
            tracker.run(SLEEPER, timeout=0.5)

        assert time.monotonic() - start < 30
        assert tracker.running() == {}

    def test_missing_executable(self, tracker):
        """Test a missing executable raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            tracker.run(["releasekit-no-such-tool"])

    def test_cancel_terminates_running(self, tracker):
        """Test cancel terminates in-flight processes."""
        proc = tracker.spawn(SLEEPER)
        assert proc.pid in tracker.running()

        tracker.cancel()

        assert proc.wait(timeout=10) is not None
        assert tracker.cancelled

    def test_cancel_from_other_thread_interrupts_run(self, tracker):
        """Test run raises CancelledError when cancelled while waiting."""
        timer = threading.Timer(0.5, tracker.cancel)
        timer.start()
        try:
            with pytest.raises(CancelledError):
                tracker.run(SLEEPER)
        finally:
            timer.cancel()

    def test_spawn_after_cancel_refused(self, tracker):
        """Test no process starts after cancellation."""
        tracker.cancel()

        with pytest.raises(CancelledError):
            tracker.spawn(SLEEPER)

    def test_terminate_single_process(self, tracker):
        """Test terminate stops one process without cancelling the tracker."""
        proc = tracker.spawn(SLEEPER)

        tracker.terminate(proc)

        assert proc.poll() is not None
        assert not tracker.cancelled
        tracker.release(proc)
