"""
Forecaster Service - Seasonal exponential smoothing over hourly metrics.

Turns a history of hourly values into a multi-step forecast:
1. Detect the seasonal period
2. Decompose into level, trend and seasonal offsets (Holt-Winters)
3. Project each step and attach confidence and bounds
4. Optionally rate each step against a capacity (supply) forecast
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from pulsemax.core.domain.errors import InsufficientDataError, InvalidInputError
from pulsemax.core.domain.series import (
    AnomalyPoint,
    ForecastAccuracy,
    ForecastPoint,
    MetricSeries,
    RiskTier,
)
from pulsemax.core.domain.settings import ForecasterSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Components:
    level: float
    trend: float
    seasonal: np.ndarray  # indexed by h % period
    period: int
    residual_variance: float
    seasonal_fit: bool


class Forecaster:
    """
    Stateless forecasting engine. Safe to share between threads and tasks.
    """

    def __init__(self, settings: ForecasterSettings | None = None):
        self.settings = settings or ForecasterSettings()

    def forecast(
        self,
        series: MetricSeries,
        horizon_steps: int,
        capacity: float | Sequence[float] | None = None,
    ) -> list[ForecastPoint]:
        """
        Forecast the next `horizon_steps` values of a series.

        Args:
            series: History, at least `min_observations` points
            horizon_steps: Number of steps to project
            capacity: Optional supply per step (scalar or one value per step).
                When given, each point carries an imbalance risk tier.

        Returns:
            One ForecastPoint per step, in order
        """
        if horizon_steps < 1:
            raise InvalidInputError(f"horizon_steps must be >= 1, got {horizon_steps}")

        n = len(series)
        if n < self.settings.min_observations:
            raise InsufficientDataError(self.settings.min_observations, n)

        capacities = self._expand_capacity(capacity, horizon_steps)

        values = series.values
        period = self.detect_seasonal_period(n)
        components = self._decompose(values, period)
        variance_penalty = self._variance_penalty(values, components.residual_variance)

        logger.debug(
            f"Forecasting '{series.name}': n={n} period={period} "
            f"seasonal={components.seasonal_fit} level={components.level:.2f} "
            f"trend={components.trend:.4f}"
        )

        last_timestamp = series.points[-1].timestamp
        step = series.step
        forecasts = []

        for h in range(1, horizon_steps + 1):
            predicted = max(
                0.0,
                components.level + h * components.trend + components.seasonal[h % period],
            )
            confidence = self._confidence(n, h, variance_penalty)
            lower, upper = self._interval(
                predicted,
                components.residual_variance * (1 + h / period),
                confidence,
            )
            tier = None
            if capacities is not None:
                tier = self.imbalance_tier(predicted, capacities[h - 1])

            forecasts.append(ForecastPoint(
                timestamp=last_timestamp + h * step,
                predicted=round(predicted, 2),
                lower_bound=round(lower, 2),
                upper_bound=round(upper, 2),
                confidence=round(confidence, 2),
                risk_tier=tier,
            ))

        return forecasts

    def forecast_supply_demand(
        self,
        demand: MetricSeries,
        supply: MetricSeries,
        horizon_steps: int,
    ) -> tuple[list[ForecastPoint], list[ForecastPoint]]:
        """
        Forecast demand with the supply forecast as per-step capacity.

        Returns:
            (demand forecast with imbalance tiers, supply forecast)
        """
        supply_forecast = self.forecast(supply, horizon_steps)
        demand_forecast = self.forecast(
            demand,
            horizon_steps,
            capacity=[p.predicted for p in supply_forecast],
        )
        return demand_forecast, supply_forecast

    def detect_seasonal_period(self, n: int) -> int:
        """Daily period once a week of data exists, otherwise at most half the data."""
        period = self.settings.seasonal_period
        if n >= self.settings.week_length:
            return period
        return max(1, min(period, n // 2))

    def imbalance_tier(self, demand: float, supply: float) -> RiskTier:
        """Tier of a demand/supply ratio. Low volume is never a risk."""
        s = self.settings
        if demand < s.minimum_volume:
            return "low"
        if supply <= 0:
            return "critical"

        ratio = demand / supply
        if ratio > s.imbalance_critical_ratio:
            return "critical"
        if ratio > s.imbalance_high_ratio:
            return "high"
        if ratio > s.imbalance_medium_ratio:
            return "medium"
        return "low"

    def detect_anomalies(
        self,
        series: MetricSeries,
        threshold_std_devs: float = 2.5,
    ) -> list[AnomalyPoint]:
        """
        Flag observations whose z-score against the series exceeds the threshold.

        Order-preserving. A flat series has no anomalies.
        """
        if len(series) == 0:
            return []

        values = series.values
        mean = float(values.mean())
        std = float(values.std())
        if std == 0:
            return []

        anomalies = []
        for point in series.points:
            z_score = abs(point.value - mean) / std
            if z_score > threshold_std_devs:
                anomalies.append(AnomalyPoint(point.timestamp, point.value, z_score))
        return anomalies

    def accuracy(
        self,
        actual: Sequence[float],
        predicted: Sequence[float],
    ) -> ForecastAccuracy:
        """
        MAPE and RMSE of a forecast against observed values.

        MAPE skips points where the actual value is zero.
        """
        if len(actual) != len(predicted) or len(actual) == 0:
            raise InvalidInputError("Arrays must have the same non-zero length")

        actual_arr = np.asarray(actual, dtype=float)
        predicted_arr = np.asarray(predicted, dtype=float)
        if not (np.isfinite(actual_arr).all() and np.isfinite(predicted_arr).all()):
            raise InvalidInputError("Arrays must contain only finite numbers")

        nonzero = actual_arr != 0
        if nonzero.any():
            ape = np.abs((actual_arr[nonzero] - predicted_arr[nonzero]) / actual_arr[nonzero])
            mape = float(ape.mean() * 100)
        else:
            mape = 0.0

        rmse = float(np.sqrt(np.mean((actual_arr - predicted_arr) ** 2)))

        return ForecastAccuracy(mape=round(mape, 2), rmse=round(rmse, 2))

    # --- Decomposition ---

    def _decompose(self, values: np.ndarray, period: int) -> _Components:
        if len(values) < 2 * self.settings.seasonal_period or period < 2:
            return self._trend_and_level(values, period)
        return self._holt_winters(values, period)

    def _holt_winters(self, values: np.ndarray, period: int) -> _Components:
        """Additive triple exponential smoothing."""
        s = self.settings
        n = len(values)

        first_avg = values[:period].mean()
        second_avg = values[period:2 * period].mean()
        trend = (second_avg - first_avg) / period
        # First-cycle mean sits mid-cycle; move it to the end of the cycle
        level = first_avg + trend * (period - 1) / 2

        cycles = n // period
        table = values[:cycles * period].reshape(cycles, period)
        seasonal = (table - table.mean(axis=1, keepdims=True)).mean(axis=0)

        residuals = np.empty(n - period)
        for t in range(period, n):
            y = values[t]
            phase = t % period
            residuals[t - period] = y - (level + trend + seasonal[phase])

            new_level = s.alpha * (y - seasonal[phase]) + (1 - s.alpha) * (level + trend)
            trend = s.beta * (new_level - level) + (1 - s.beta) * trend
            seasonal[phase] = s.gamma * (y - new_level) + (1 - s.gamma) * seasonal[phase]
            level = new_level

        # Offsets sum to zero; the level carries the long-run mean
        offset = seasonal.mean()
        seasonal = seasonal - offset
        level += offset

        # aligned[h % period] is the phase of forecast step h
        aligned = np.array([seasonal[(n - 1 + k) % period] for k in range(period)])

        return _Components(
            level=float(level),
            trend=float(trend),
            seasonal=aligned,
            period=period,
            residual_variance=float(residuals.var()),
            seasonal_fit=True,
        )

    def _trend_and_level(self, values: np.ndarray, period: int) -> _Components:
        """Fallback without seasonality: least-squares line through the history."""
        x = np.arange(len(values), dtype=float)
        slope, intercept = np.polyfit(x, values, 1)
        fitted = intercept + slope * x

        return _Components(
            level=float(fitted[-1]),
            trend=float(slope),
            seasonal=np.zeros(max(period, 1)),
            period=max(period, 1),
            residual_variance=float((values - fitted).var()),
            seasonal_fit=False,
        )

    # --- Confidence ---

    def _variance_penalty(self, values: np.ndarray, residual_variance: float) -> float:
        s = self.settings
        mean = float(values.mean())
        if mean == 0:
            return 0.0 if residual_variance == 0 else s.max_variance_penalty
        relative = residual_variance / (mean * mean)
        return min(s.max_variance_penalty, s.variance_penalty_scale * relative)

    def _confidence(self, n: int, h: int, variance_penalty: float) -> float:
        s = self.settings
        data_quality = min(1.0, n / s.week_length)
        horizon_factor = max(0.0, 1 - h / s.horizon_decay_steps)
        confidence = s.base_confidence * data_quality * horizon_factor - variance_penalty
        return min(s.base_confidence, max(s.min_confidence, confidence))

    def _interval(
        self,
        predicted: float,
        variance: float,
        confidence: float,
    ) -> tuple[float, float]:
        z_score = self.settings.interval_z_scale * confidence
        margin = z_score * math.sqrt(max(variance, 0.0))
        return max(0.0, predicted - margin), predicted + margin

    def _expand_capacity(
        self,
        capacity: float | Sequence[float] | None,
        horizon_steps: int,
    ) -> list[float] | None:
        if capacity is None:
            return None
        if isinstance(capacity, (int, float)):
            return [float(capacity)] * horizon_steps

        capacities = [float(c) for c in capacity]
        if len(capacities) < horizon_steps:
            raise InvalidInputError(
                f"Capacity has {len(capacities)} values for {horizon_steps} steps"
            )
        return capacities
