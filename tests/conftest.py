"""
Natty Test Configuration
========================

[QA] Central pytest configuration with fixtures for all test types:
- Unit tests: Isolated, no subprocesses
- Integration tests: Real natty sessions against scripted fake engines

[FIXTURES]
- fake_engine: Write a Python script that plays the natty engine
- natty_config: Session config with short grace periods
- outbound: Collector for messages Natty sends to the peer

Usage:
    pytest tests/unit/          # Fast unit tests
    pytest tests/integration/   # Fake engine sessions
"""

import sys
import asyncio
import tempfile
import shutil
import logging
import textwrap
from pathlib import Path
from typing import Callable, Generator, List

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (subprocesses, slower)")
    config.addinivalue_line("markers", "slow: Slow tests (skip with -m 'not slow')")


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on their path."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


# ============================================================================
# Logging Configuration
# ============================================================================

@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)


# ============================================================================
# Temporary Directory Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    temp_path = Path(tempfile.mkdtemp(prefix="natty_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


# ============================================================================
# Natty Fixtures
# ============================================================================

FAKE_ENGINE_PRELUDE = """\
import json
import os
import sys
import time

ARGS = sys.argv[1:]


def emit(line):
    sys.stdout.write(line + "\\n")
    sys.stdout.flush()


def emit_result(proto="udp", local="10.0.0.1:5000", remote="203.0.113.9:6000"):
    emit(json.dumps({"5-tuple": True, "proto": proto, "local": local, "remote": remote}))


def debug(line):
    sys.stderr.write(line + "\\n")
    sys.stderr.flush()

"""


@pytest.fixture(scope="function")
def fake_engine(temp_dir: Path) -> Callable[[str], "EngineBinary"]:
    """
    Factory for scripted natty engines.

    [USAGE]
        binary = fake_engine('''
            emit("candidate:1 1 UDP")
            emit_result()
        ''')
        natty = Natty(send, binary=binary)
    """
    from core.nat import EngineBinary

    counter = {"n": 0}

    def _create(body: str) -> EngineBinary:
        counter["n"] += 1
        path = temp_dir / f"fake_natty_{counter['n']}.py"
        path.write_text(FAKE_ENGINE_PRELUDE + textwrap.dedent(body))
        return EngineBinary.from_path(path, interpreter=sys.executable)

    return _create


@pytest.fixture(scope="function")
def natty_config():
    """Config with short grace periods so failing tests do not stall."""
    from config import NattyConfig

    return NattyConfig(drain_timeout=2.0, shutdown_timeout=2.0)


class Outbound:
    """Collects messages that Natty sends to the remote peer."""

    def __init__(self):
        self.messages: List[bytes] = []

    def __call__(self, msg: bytes) -> None:
        self.messages.append(msg)


@pytest.fixture(scope="function")
def outbound() -> Outbound:
    return Outbound()


@pytest.fixture(scope="function")
def async_timeout():
    """Default timeout for async operations in tests."""
    return 10.0


@pytest.fixture(scope="function")
def run_with_timeout(async_timeout: float):
    """Guard a coroutine so a hanging session fails the test instead of the run."""
    async def _run(coro):
        return await asyncio.wait_for(coro, timeout=async_timeout)
    return _run
