"""
Pytest configuration and shared fixtures for PulseMax tests.
"""
import math
from datetime import datetime, timedelta, timezone

import pytest

from pulsemax.core.domain.series import MetricSeries

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for the alert engine."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_series():
    """Build an hourly MetricSeries from a list of values."""
    def _make(values, name="session_volume", start=START, step=timedelta(hours=1)):
        return MetricSeries.from_pairs(
            name, [(start + i * step, float(v)) for i, v in enumerate(values)]
        )
    return _make


@pytest.fixture
def daily_pattern():
    """30 days of hourly demand peaking at 18:00 every day."""
    return [
        100 + 50 * math.cos(2 * math.pi * ((hour % 24) - 18) / 24)
        for hour in range(720)
    ]
