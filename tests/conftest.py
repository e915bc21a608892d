"""Shared pytest configuration and fixtures for the logcapture test suite."""

import asyncio
import shutil
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )
    config.addinivalue_line(
        "markers", "needs_tail: mark test as requiring the tail executable"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests that spawn tail when it is not installed."""
    if shutil.which("tail"):
        return

    skip_tail = pytest.mark.skip(reason="tail executable not found")
    for item in items:
        if "needs_tail" in item.keywords:
            item.add_marker(skip_tail)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def append_line():
    """Append text to a log file the way a device process would."""

    def _append(path: Path, *lines: str) -> None:
        with open(path, "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    return _append


@pytest.fixture
def wait_until():
    """Poll ``predicate`` on the running loop until it holds or times out."""

    async def _wait(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() >= deadline:
                return False
            await asyncio.sleep(interval)
        return True

    return _wait
