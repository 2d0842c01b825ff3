"""
Shared pytest setup for ReleaseKit tests.
"""

from pathlib import Path

import pytest

# Fixture functions become visible to every test module through these imports
# ruff: noqa: F401
from tests.fixtures.projects import fake_build_config, fake_project
from tests.fixtures.toolchains import fake_strategy


def pytest_addoption(parser):
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="also run tests that install real toolchains or use the network",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--integration"):
        return
    skip = pytest.mark.skip(reason="pass --integration to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: needs real toolchains or network (--integration)"
    )
    config.addinivalue_line("markers", "unit: fast tests of a single function")
    config.addinivalue_line(
        "markers", "slow: waits on real timeouts (deselect with '-m \"not slow\"')"
    )


# ============================================================================
# Shared Test Fixtures
# ============================================================================


@pytest.fixture
def cache_dir(tmp_path, monkeypatch) -> Path:
    """Toolchain cache under tmp_path, exported as RELEASEKIT_CACHE_DIR."""
    cache = tmp_path / "cache"
    monkeypatch.setenv("RELEASEKIT_CACHE_DIR", str(cache))
    return cache


@pytest.fixture
def cache_store(cache_dir):
    from releasekit.core.cache_store import CacheStore

    return CacheStore(cache_dir, lock_timeout=30)


@pytest.fixture
def output_dir(tmp_path) -> Path:
    """Release output directory with its logs/ and .staging/ children."""
    from releasekit.core.directory import ensure_output_structure

    return ensure_output_structure(tmp_path / "dist")["root"]


@pytest.fixture
def tracker():
    from releasekit.core.process import ProcessTracker

    return ProcessTracker(grace_period=2.0)


@pytest.fixture
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point HOME at an empty directory and drop any cache override."""
    home = tmp_path / "home"
    home.mkdir()
    for name in ("HOME", "USERPROFILE"):
        monkeypatch.setenv(name, str(home))
    monkeypatch.delenv("RELEASEKIT_CACHE_DIR", raising=False)
    return home


@pytest.fixture(autouse=True)
def reset_caches():
    """Forget the detected host so tests can patch platform.system()."""
    from releasekit.core import platform

    platform.clear_platform_cache()
    yield
    platform.clear_platform_cache()
