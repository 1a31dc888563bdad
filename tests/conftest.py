"""Shared fixtures for ratelimit_shaper tests."""

from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from ratelimit_shaper.observability import MetricsCollector

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    """Collector on a private registry so tests never share Prometheus state."""
    return MetricsCollector(registry=CollectorRegistry())
