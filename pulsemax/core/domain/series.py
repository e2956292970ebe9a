"""
Series Domain Models - Data structures for metric history, forecasts and anomalies.
"""

import logging
import math
import numbers
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

import numpy as np
import pandas as pd

from pulsemax.core.domain.errors import InvalidInputError

logger = logging.getLogger(__name__)

RiskTier = Literal["low", "medium", "high", "critical"]


@dataclass(frozen=True)
class SeriesPoint:
    """A single observation of a metric."""

    timestamp: datetime
    value: float


@dataclass(frozen=True)
class MetricSeries:
    """
    Ordered history of one named metric.

    Timestamps must be strictly increasing and values finite. The series is
    owned by the caller; nothing in the core mutates it.
    """

    name: str
    points: tuple[SeriesPoint, ...] = field(default_factory=tuple)

    def __post_init__(self):
        points = tuple(self.points)

        previous = None
        for point in points:
            if not isinstance(point.value, numbers.Real) or isinstance(point.value, (bool, np.bool_)):
                raise InvalidInputError(
                    f"Series '{self.name}' has a non-numeric value at {point.timestamp}"
                )
            if not math.isfinite(point.value):
                raise InvalidInputError(
                    f"Series '{self.name}' has a non-finite value at {point.timestamp}"
                )
            if previous is not None and point.timestamp <= previous:
                raise InvalidInputError(
                    f"Series '{self.name}' timestamps must be strictly increasing "
                    f"({point.timestamp} follows {previous})"
                )
            previous = point.timestamp

        object.__setattr__(
            self, "points", tuple(SeriesPoint(p.timestamp, float(p.value)) for p in points)
        )

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def from_pairs(
        cls,
        name: str,
        pairs: "list[tuple[datetime, float]]",
    ) -> "MetricSeries":
        return cls(name=name, points=tuple(SeriesPoint(ts, float(v)) for ts, v in pairs))

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, name: str | None = None) -> "MetricSeries":
        """
        Build a series from a metric-source frame.

        Args:
            df: DataFrame with columns ['ds', 'y'] and optionally 'unique_id'
            name: Series name (defaults to the first unique_id)
        """
        if not {"ds", "y"}.issubset(df.columns):
            raise InvalidInputError("DataFrame must contain columns: {'ds', 'y'}")

        if name is None:
            name = str(df["unique_id"].iloc[0]) if "unique_id" in df.columns and not df.empty else "metric"

        frame = df[["ds", "y"]].sort_values("ds")
        missing = int(frame["y"].isna().sum())
        if missing:
            logger.warning(f"Dropping {missing} empty samples from series '{name}'")
            frame = frame.dropna(subset=["y"])

        points = tuple(
            SeriesPoint(pd.Timestamp(ts).to_pydatetime(), float(y))
            for ts, y in zip(frame["ds"], frame["y"])
        )
        return cls(name=name, points=points)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            "unique_id": self.name,
            "ds": [p.timestamp for p in self.points],
            "y": [p.value for p in self.points],
        })

    @property
    def timestamps(self) -> list[datetime]:
        return [p.timestamp for p in self.points]

    @property
    def values(self) -> np.ndarray:
        return np.array([p.value for p in self.points], dtype=float)

    @property
    def step(self) -> timedelta:
        """Sampling interval, taken from the last two observations (default: 1h)."""
        if len(self.points) < 2:
            return timedelta(hours=1)
        return self.points[-1].timestamp - self.points[-2].timestamp


@dataclass(frozen=True)
class ForecastPoint:
    """A single forecast step with uncertainty bounds."""

    timestamp: datetime
    predicted: float
    lower_bound: float
    upper_bound: float
    confidence: float
    risk_tier: RiskTier | None = None


@dataclass(frozen=True)
class AnomalyPoint:
    """An observation flagged as anomalous."""

    timestamp: datetime
    value: float
    z_score: float


@dataclass(frozen=True)
class ForecastAccuracy:
    """Forecast error metrics."""

    mape: float
    rmse: float


@dataclass(frozen=True)
class AnomalyResult:
    """Outcome of a single-observation anomaly check."""

    is_anomaly: bool
    score: float  # 0.0 = normal, 1.0 = highly anomalous
    method: str
    value: float
    expected: float | None = None
    threshold: float | None = None
    z_score: float | None = None
    deviation: float | None = None
