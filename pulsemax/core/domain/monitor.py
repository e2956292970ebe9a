"""
Monitor Domain Model - Configuration of a forecast-and-alert check.

Uses Pydantic for validation, so monitors can be loaded from YAML.
"""

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from pulsemax.core.domain.alert import Alert
from pulsemax.core.domain.series import AnomalyResult, ForecastPoint


class AnomalyCheckConfig(BaseModel):
    """Configuration for the latest-observation anomaly check."""

    technique: Literal["z_score", "mad", "iqr", "moving_average", "ensemble"] = "ensemble"
    threshold: float | None = None  # None = detector default
    min_severity: Literal["low", "medium", "high", "critical"] = "medium"


class Monitor(BaseModel):
    """
    Complete monitor configuration.
    """

    # --- Identity ---
    name: str
    query: str  # Demand metric
    description: str = ""
    enabled: bool = True

    # --- Capacity ---
    supply_query: str | None = None

    # --- Data Source ---
    step: str = "1h"
    context_window: str = "30d"

    # --- Forecast ---
    horizon_steps: int = Field(default=24, ge=1)

    # --- Anomaly Detection ---
    anomaly: AnomalyCheckConfig = Field(default_factory=AnomalyCheckConfig)


@dataclass
class MonitorResult:
    """Result of a monitor execution."""

    monitor_name: str
    forecasts: list[ForecastPoint] = field(default_factory=list)
    anomaly: AnomalyResult | None = None
    alerts: list[Alert] = field(default_factory=list)
