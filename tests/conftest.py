"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for cloud_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from cloud_mock import MockCloud  # noqa: E402

from streamplane.config import Config  # noqa: E402


@pytest.fixture
def config() -> Config:
    """Config with short waits so retry and polling paths finish quickly."""
    return Config(
        create_timeout_seconds=5,
        update_timeout_seconds=5,
        delete_timeout_seconds=5,
        read_timeout_seconds=1,
        poll_interval_seconds=0.01,
        retry_delay_seconds=0.01,
        retry_backoff=1.0,
        max_retry_delay_seconds=0.01,
        acl_verify_timeout_seconds=2,
    )


@pytest.fixture
def cloud() -> MockCloud:
    """Empty in-memory cloud."""
    return MockCloud()
