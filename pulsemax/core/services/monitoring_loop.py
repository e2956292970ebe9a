"""
Monitoring Loop Service - One forecast-and-alert pass for a monitor.

This service orchestrates the fetch-check-forecast-alert cycle:
1. Fetch demand (and optional supply) history from the metric source
2. Check the latest observation for anomalies
3. Forecast the horizon, with supply as capacity
4. Raise alerts for anomalies and the earliest capacity shortfall
"""

import logging
import math
from datetime import datetime, timedelta, timezone

from pulsemax.core.domain.alert import SEVERITY_PRIORITY, Alert
from pulsemax.core.domain.errors import InsufficientDataError
from pulsemax.core.domain.monitor import Monitor, MonitorResult
from pulsemax.core.domain.series import ForecastPoint, MetricSeries
from pulsemax.core.ports.metric_source import MetricSource
from pulsemax.core.services.alert_engine import AlertEngine
from pulsemax.core.services.anomaly import AnomalyDetector
from pulsemax.core.services.forecaster import Forecaster

logger = logging.getLogger(__name__)

# Imbalance tiers that raise a capacity alert, with their alert type
CAPACITY_ALERT_TYPES = {
    "critical": "critical_imbalance",
    "high": "supply_shortage",
}


class MonitoringLoop:
    """
    Core service that executes a single monitoring iteration for a monitor.
    """

    def __init__(
        self,
        source: MetricSource,
        forecaster: Forecaster,
        detector: AnomalyDetector,
        engine: AlertEngine,
    ):
        """
        Initialize the monitoring loop.

        Args:
            source: Port to read metric history
            forecaster: Forecasting engine
            detector: Latest-observation anomaly checks
            engine: Where alerts are raised
        """
        self.source = source
        self.forecaster = forecaster
        self.detector = detector
        self.engine = engine

    async def run_monitor(self, monitor: Monitor, now: datetime | None = None) -> MonitorResult:
        """
        Execute the monitor logic.

        Args:
            monitor: Monitor configuration
            now: Current timestamp (default: utcnow)
        """
        now = now or datetime.now(timezone.utc)
        result = MonitorResult(monitor_name=monitor.name)

        # 1. Fetch history
        start_time = now - timedelta(seconds=self._parse_duration(monitor.context_window))
        logger.info(f"Fetching data for '{monitor.name}' start={start_time} end={now}")
        demand = await self.source.fetch_series(monitor.query, start_time, now, monitor.step)

        if len(demand) == 0:
            logger.warning(f"No data found for monitor '{monitor.name}'")
            return result

        supply = None
        if monitor.supply_query:
            supply = await self.source.fetch_series(monitor.supply_query, start_time, now, monitor.step)
            if len(supply) == 0:
                logger.warning(f"No supply data for monitor '{monitor.name}'; forecasting without capacity")
                supply = None
            elif len(supply) < self.forecaster.settings.min_observations:
                logger.warning(
                    f"Supply history for '{monitor.name}' too short ({len(supply)} points); "
                    f"forecasting without capacity"
                )
                supply = None

        # 2. Anomaly check on the latest observation
        await self._check_anomaly(monitor, demand, result)

        # 3. Forecast
        try:
            if supply is not None:
                forecasts, supply_forecast = self.forecaster.forecast_supply_demand(
                    demand, supply, monitor.horizon_steps
                )
            else:
                forecasts = self.forecaster.forecast(demand, monitor.horizon_steps)
                supply_forecast = []
        except InsufficientDataError as e:
            logger.warning(f"Skipping forecast for '{monitor.name}': {e}")
            return result

        result.forecasts = forecasts
        logger.info(f"Forecast {len(forecasts)} steps for '{monitor.name}'")

        # 4. Capacity alert for the earliest shortfall
        if supply_forecast:
            alert = await self._raise_capacity_alert(monitor, forecasts, supply_forecast, now)
            if alert is not None:
                result.alerts.append(alert)

        return result

    async def _check_anomaly(
        self,
        monitor: Monitor,
        demand: MetricSeries,
        result: MonitorResult,
    ) -> None:
        check = monitor.anomaly
        anomaly = self.detector.check_latest(demand, check.technique, check.threshold)
        result.anomaly = anomaly
        if not anomaly.is_anomaly:
            return

        severity = self.detector.severity_for(anomaly)
        if SEVERITY_PRIORITY[severity] > SEVERITY_PRIORITY[check.min_severity]:
            logger.info(
                f"Anomaly in '{monitor.name}' below alerting severity "
                f"({severity} < {check.min_severity})"
            )
            return

        expected = anomaly.expected if anomaly.expected is not None else 0.0
        anomaly_type = "Spike" if anomaly.value > expected else "Drop"
        alert = await self.engine.create_anomaly_alert(
            anomaly_type=anomaly_type,
            severity=severity,
            current_value=anomaly.value,
            expected_value=expected,
            metric=monitor.name,
            metadata={"method": anomaly.method, "score": round(anomaly.score, 3)},
        )
        result.alerts.append(alert)

    async def _raise_capacity_alert(
        self,
        monitor: Monitor,
        forecasts: list[ForecastPoint],
        supply_forecast: list[ForecastPoint],
        now: datetime,
    ) -> Alert | None:
        for point, supply in zip(forecasts, supply_forecast):
            if point.risk_tier not in CAPACITY_ALERT_TYPES:
                continue

            alert_type = CAPACITY_ALERT_TYPES[point.risk_tier]
            hours_until = self._hours_until(point.timestamp, now)
            when = "within the hour" if hours_until < 1 else f"in {hours_until} hour{'s' if hours_until > 1 else ''}"
            shortage = max(0, math.ceil(point.predicted - supply.predicted))

            if alert_type == "critical_imbalance":
                message = (
                    f"CRITICAL: Expected {point.predicted:.0f} sessions but only "
                    f"{supply.predicted:.0f} tutors available {when}. "
                    f"Urgently activate {shortage} additional tutors."
                )
            else:
                message = (
                    f"Supply shortage predicted: {point.predicted:.0f} sessions expected vs "
                    f"{supply.predicted:.0f} tutors {when}. Schedule {shortage} more tutors."
                )

            return await self.engine.create_alert(
                "performance",
                point.risk_tier,
                f"Capacity risk for {monitor.name}",
                message,
                "forecaster",
                {
                    "alert_type": alert_type,
                    "monitor": monitor.name,
                    "forecast_time": point.timestamp.isoformat(),
                    "predicted_demand": point.predicted,
                    "predicted_supply": supply.predicted,
                    "hours_until": hours_until,
                },
                self.engine.channels_for_severity(point.risk_tier),
            )
        return None

    @staticmethod
    def _hours_until(timestamp: datetime, now: datetime) -> int:
        # Metric sources may hand back naive UTC timestamps
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return max(0, round((timestamp - now).total_seconds() / 3600))

    def _parse_duration(self, duration_str: str) -> int:
        """Parse Prometheus-style duration string to seconds."""
        unit = duration_str[-1]
        value = int(duration_str[:-1])
        if unit == "s":
            return value
        if unit == "m":
            return value * 60
        if unit == "h":
            return value * 3600
        if unit == "d":
            return value * 86400
        return value
