# =============================================================================
# ISSUE TRIAGE MONITOR - SHARED TEST FIXTURES
# =============================================================================
"""Shared fixtures: a controllable clock, a collector and channel doubles."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from monitoring.alerts import AlertingEngine, AlertThresholds
from monitoring.metrics import MetricsCollector


# Fixed instant well inside an hour bucket: 2024-01-01T00:10:00Z
BASE_TIME = 1704067800.0


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, now: float = BASE_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collector(clock):
    return MetricsCollector({"retention_days": 30}, clock=clock)


def make_channel(name: str = "webhook", result=True, side_effect=None):
    """A notification channel double with an AsyncMock send()."""
    channel = MagicMock()
    channel.name = name
    channel.enabled = True
    channel.accepts.return_value = True
    channel.send = AsyncMock(return_value=result, side_effect=side_effect)
    return channel


@pytest.fixture
def channel():
    return make_channel()


@pytest.fixture
def engine(clock, channel):
    return AlertingEngine(AlertThresholds(), channels=[channel], clock=clock)
