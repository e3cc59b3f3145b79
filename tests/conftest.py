"""Shared fixtures for the job engine test suite."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from jobengine.backend.factory import get_backend
from jobengine.config import QueueConfig
from jobengine.lib.utils import utcnow
from jobengine.services.job_management.registry import JobRegistry


class FakeClock:
    """Manually advanced clock; starts slightly ahead so fresh rows are due."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or utcnow() + timedelta(seconds=1)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, ms: float = 0) -> None:
        self.now += timedelta(seconds=seconds, milliseconds=ms)


@pytest.fixture
def backend():
    """Fresh in-memory SQLite job store."""
    return get_backend("sqlite://")


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def queue_config() -> QueueConfig:
    return QueueConfig(
        max_concurrent_jobs=4,
        poll_interval_ms=10,
        batch_size=10,
        default_max_retries=3,
        default_timeout_ms=300000,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
