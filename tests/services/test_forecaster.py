"""
Tests for the Forecaster service.
"""
import math
from datetime import timedelta

import pytest

from pulsemax.core.domain.errors import InsufficientDataError, InvalidInputError
from pulsemax.core.domain.settings import ForecasterSettings
from pulsemax.core.services.forecaster import Forecaster


@pytest.fixture
def forecaster():
    return Forecaster()


@pytest.fixture
def noisy_pattern():
    return [
        100 + 30 * math.sin(2 * math.pi * i / 24) + ((i * 37) % 11 - 5)
        for i in range(240)
    ]


def test_forecast_length_and_timestamps(forecaster, make_series, daily_pattern):
    series = make_series(daily_pattern)
    forecasts = forecaster.forecast(series, horizon_steps=24)

    assert len(forecasts) == 24
    last = series.points[-1].timestamp
    for h, point in enumerate(forecasts, start=1):
        assert point.timestamp == last + timedelta(hours=h)


def test_forecast_requires_minimum_history(forecaster, make_series):
    with pytest.raises(InsufficientDataError) as exc:
        forecaster.forecast(make_series([10] * 23), horizon_steps=1)
    assert exc.value.required == 24
    assert exc.value.available == 23


def test_forecast_rejects_empty_horizon(forecaster, make_series):
    with pytest.raises(InvalidInputError):
        forecaster.forecast(make_series([10] * 48), horizon_steps=0)


def test_forecast_point_invariants(forecaster, make_series, noisy_pattern):
    forecasts = forecaster.forecast(make_series(noisy_pattern), horizon_steps=48)

    for point in forecasts:
        assert point.predicted >= 0
        assert point.lower_bound <= point.predicted <= point.upper_bound
        assert 0.4 <= point.confidence <= 0.95
        assert point.risk_tier is None


def test_confidence_does_not_increase_with_horizon(forecaster, make_series, noisy_pattern):
    forecasts = forecaster.forecast(make_series(noisy_pattern), horizon_steps=72)
    confidences = [p.confidence for p in forecasts]
    assert all(a >= b for a, b in zip(confidences, confidences[1:]))


def test_noisy_history_has_an_interval(forecaster, make_series, noisy_pattern):
    forecasts = forecaster.forecast(make_series(noisy_pattern), horizon_steps=24)
    assert all(p.upper_bound > p.lower_bound for p in forecasts)


def test_flat_series_forecasts_flat(forecaster, make_series):
    forecasts = forecaster.forecast(make_series([50] * 48), horizon_steps=5)
    assert [p.predicted for p in forecasts] == [50.0] * 5


def test_short_history_falls_back_to_trend(forecaster, make_series):
    series = make_series([10 + 2 * t for t in range(30)])
    forecasts = forecaster.forecast(series, horizon_steps=3)
    assert [p.predicted for p in forecasts] == [70.0, 72.0, 74.0]


def test_forecast_never_negative(forecaster, make_series):
    series = make_series([100 - 4 * t for t in range(25)])
    forecasts = forecaster.forecast(series, horizon_steps=10)
    assert all(p.predicted >= 0 for p in forecasts)
    assert all(p.lower_bound >= 0 for p in forecasts)


def test_daily_peak_scenario(forecaster, make_series, daily_pattern):
    """A month of data peaking at 18:00 forecasts the next peak near 18:00."""
    forecasts = forecaster.forecast(make_series(daily_pattern), horizon_steps=24)

    peak = max(forecasts, key=lambda p: p.predicted)
    assert peak.timestamp.hour in {17, 18, 19}

    average_confidence = sum(p.confidence for p in forecasts) / len(forecasts)
    assert 0.7 <= average_confidence <= 0.9


def test_detect_seasonal_period(forecaster):
    assert forecaster.detect_seasonal_period(168) == 24
    assert forecaster.detect_seasonal_period(1000) == 24
    assert forecaster.detect_seasonal_period(30) == 15
    assert forecaster.detect_seasonal_period(100) == 24


def test_forecast_with_capacity_sets_tier(forecaster, make_series):
    series = make_series([50] * 48)

    forecasts = forecaster.forecast(series, horizon_steps=3, capacity=40)

    assert all(p.risk_tier == "high" for p in forecasts)


def test_forecast_capacity_too_short(forecaster, make_series):
    with pytest.raises(InvalidInputError):
        forecaster.forecast(make_series([50] * 48), horizon_steps=3, capacity=[40, 40])


def test_forecast_supply_demand(forecaster, make_series):
    demand = make_series([200] * 48, name="sessions")
    supply = make_series([100] * 48, name="tutors")

    demand_forecast, supply_forecast = forecaster.forecast_supply_demand(demand, supply, 6)

    assert len(demand_forecast) == len(supply_forecast) == 6
    assert all(p.risk_tier == "critical" for p in demand_forecast)
    assert all(p.risk_tier is None for p in supply_forecast)


@pytest.mark.parametrize("demand,supply,tier", [
    (3, 0, "low"),
    (10, 0, "critical"),
    (16, 10, "critical"),
    (15, 10, "high"),
    (13, 10, "high"),
    (10, 10, "medium"),
    (8, 10, "low"),
])
def test_imbalance_tier(forecaster, demand, supply, tier):
    assert forecaster.imbalance_tier(demand, supply) == tier


def test_detect_anomalies(forecaster, make_series):
    series = make_series([10] * 30 + [100])

    anomalies = forecaster.detect_anomalies(series)

    assert len(anomalies) == 1
    assert anomalies[0].value == 100
    assert anomalies[0].timestamp == series.points[-1].timestamp
    assert anomalies[0].z_score > 2.5


def test_detect_anomalies_flat_and_empty(forecaster, make_series):
    assert forecaster.detect_anomalies(make_series([7] * 10)) == []
    assert forecaster.detect_anomalies(make_series([])) == []


def test_accuracy(forecaster):
    result = forecaster.accuracy([100, 200], [110, 180])
    assert result.mape == 10.0
    assert result.rmse == 15.81


def test_accuracy_skips_zero_actuals(forecaster):
    result = forecaster.accuracy([0, 100], [5, 110])
    assert result.mape == 10.0


def test_accuracy_rejects_bad_input(forecaster):
    with pytest.raises(InvalidInputError):
        forecaster.accuracy([1, 2], [1])
    with pytest.raises(InvalidInputError):
        forecaster.accuracy([], [])


def test_custom_settings_minimum(make_series):
    forecaster = Forecaster(ForecasterSettings(min_observations=10))
    with pytest.raises(InsufficientDataError):
        forecaster.forecast(make_series([1] * 9), horizon_steps=1)
    assert len(forecaster.forecast(make_series([1] * 10), horizon_steps=1)) == 1
