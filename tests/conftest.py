from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Generator, Iterator
from pathlib import Path

import pytest

# Register fixture plugins from tests/fixtures/
pytest_plugins = [
    "tests.fixtures.config",
    "tests.fixtures.svn",
]


@pytest.fixture(autouse=True)
def configure_test_logging() -> Generator[None, None, None]:
    """Configure structlog for test environment.

    This fixture runs automatically for all tests to ensure logging
    is properly configured to output to stderr (not stdout) and
    suppress verbose log output during tests.
    """
    from lodestar.logging import configure_logging

    configure_logging(level=logging.WARNING)
    yield


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files.

    Also saves and restores the current working directory to prevent
    tests that use os.chdir() from affecting other tests.
    """
    original_cwd = os.getcwd()
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
    os.chdir(original_cwd)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Remove all LODESTAR_ environment variables for clean testing."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("LODESTAR_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)
