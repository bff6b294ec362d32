"""
Pytest configuration for GroundControl tests.

This module provides:
1. Async test support without pytest-asyncio
2. Common fixtures (config, store, wired services, a controllable clock)
3. Test session configuration
"""

import asyncio
import functools
from datetime import datetime, timedelta, timezone

import pytest

from groundcontrol.config import GroundControlConfig
from groundcontrol.services import build_services


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def config(tmp_path) -> GroundControlConfig:
    """In-memory store, notification log under tmp_path."""
    return GroundControlConfig(notification_log_dir=str(tmp_path / "notifications"))


@pytest.fixture
def persistent_config(tmp_path) -> GroundControlConfig:
    return GroundControlConfig(
        data_file=str(tmp_path / "data" / "groundcontrol.json"),
        notification_log_dir=str(tmp_path / "notifications"),
    )


@pytest.fixture
def services(config):
    return build_services(config)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def engine(services):
    return services.tasks


@pytest.fixture
def clock():
    return FakeClock()


def orders(engine, status):
    """(title, order) pairs of a column, in order."""
    return [(t.title, t.order) for t in engine.tasks_by_status(status)]


def actions(services, task_id):
    """Activity actions for a task, oldest first."""
    return [a.action for a in reversed(services.activity.activity_for_task(task_id))]


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
