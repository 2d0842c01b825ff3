"""Fake provisioning strategies.

They return manifests like the real strategies do without running any
installer, and count their calls so tests can assert idempotency.
"""

import threading

import pytest

from releasekit.core.exceptions import ProvisionError
from releasekit.toolchain.strategies import ProvisioningStrategy


class FakeStrategy(ProvisioningStrategy):
    """
    Strategy that "installs" a toolchain by creating its cache directory.

    Args:
        failures: Number of leading calls that raise ProvisionError
        retriable: Whether those failures are retriable
        delay_event: If given, provision waits for it before returning
    """

    name = "rustup"

    def __init__(self, failures=0, retriable=True, delay_event=None):
        super().__init__()
        self.failures = failures
        self.retriable = retriable
        self.delay_event = delay_event
        self.calls = []
        self._lock = threading.Lock()

    @property
    def call_count(self):
        return len(self.calls)

    def provision(self, key, spec, store):
        with self._lock:
            self.calls.append(key)
            attempt = len(self.calls)

        if self.delay_event is not None:
            self.delay_event.wait(timeout=10)

        if attempt <= self.failures:
            raise ProvisionError(
                f"simulated failure {attempt} for {key}", retriable=self.retriable
            )

        root = store.entry_dir(key)
        root.mkdir(parents=True, exist_ok=True)
        return {
            "strategy": self.name,
            "root": str(root),
            "bin_dir": None,
            "env": {"FAKE_TOOLCHAIN": key.id},
            "tool_versions": {"rustc": f"rustc {key.version} (fake)"},
        }


@pytest.fixture
def fake_strategy():
    """A FakeStrategy that always succeeds."""
    return FakeStrategy()
