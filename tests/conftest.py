"""
Pytest configuration and shared fixtures for lockguard tests.

This file contains:
- An in-process Redis (fakeredis with Lua support) shared per test
- A recording store wrapper for counting and failing store calls
- Test hooks and configuration
"""

import sys
from pathlib import Path
from typing import Dict, List, Optional

import fakeredis
import pytest
from fakeredis import aioredis as fake_aioredis

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lockguard.store import RedisLockStore  # noqa: E402


class RecordingStore:
    """Wraps a LockStore, records every call and optionally fails some of them."""

    def __init__(self, inner):
        self.inner = inner
        self.calls: Dict[str, List[tuple]] = {
            "set_if_absent": [],
            "extend": [],
            "compare_and_delete": [],
        }
        self.fail_set: Optional[BaseException] = None
        self.fail_extend: Optional[BaseException] = None
        self.fail_release: Optional[BaseException] = None

    async def set_if_absent(self, key, value, ttl):
        self.calls["set_if_absent"].append((key, value, ttl))
        if self.fail_set is not None:
            raise self.fail_set
        return await self.inner.set_if_absent(key, value, ttl)

    async def extend(self, key, ttl):
        self.calls["extend"].append((key, ttl))
        if self.fail_extend is not None:
            raise self.fail_extend
        return await self.inner.extend(key, ttl)

    async def compare_and_delete(self, key, expected):
        self.calls["compare_and_delete"].append((key, expected))
        if self.fail_release is not None:
            raise self.fail_release
        return await self.inner.compare_and_delete(key, expected)


@pytest.fixture
def fake_server():
    """A fresh fakeredis server; clients built on it share data."""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_server):
    return fake_aioredis.FakeRedis(server=fake_server)


@pytest.fixture
def lock_store(redis_client):
    return RedisLockStore(redis_client)


@pytest.fixture
def recording_store(lock_store):
    return RecordingStore(lock_store)


@pytest.fixture
def lock_key():
    return "orders:settlement"


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_report_header(config):
    """Add custom header to pytest report."""
    return [
        "lockguard Test Suite",
        f"Project Root: {project_root}",
    ]
