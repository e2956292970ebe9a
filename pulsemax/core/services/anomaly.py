"""
Anomaly Detector - Statistical checks of a single observation against history.

Every method returns an AnomalyResult with a 0-1 score. Too little history or
a history with no spread never produces an anomaly.
"""

from typing import Sequence

import numpy as np

from pulsemax.core.domain.alert import Severity
from pulsemax.core.domain.errors import InvalidInputError
from pulsemax.core.domain.series import AnomalyResult, MetricSeries


MAD_CONSISTENCY = 0.6745


class AnomalyDetector:
    """Stateless collection of detection methods."""

    def z_score(
        self,
        history: Sequence[float],
        value: float,
        threshold: float = 3.0,
    ) -> AnomalyResult:
        """Distance from the mean in standard deviations."""
        data = np.asarray(history, dtype=float)
        if len(data) < 2:
            return AnomalyResult(False, 0.0, "z-score", value)

        mean = float(data.mean())
        std = float(data.std())
        if std == 0:
            return AnomalyResult(False, 0.0, "z-score", value, expected=mean)

        z = abs(value - mean) / std
        return AnomalyResult(
            is_anomaly=z > threshold,
            score=min(1.0, z / (threshold * 2)),
            method="z-score",
            value=value,
            expected=mean,
            threshold=threshold,
            z_score=z,
            deviation=std,
        )

    def mad(
        self,
        history: Sequence[float],
        value: float,
        threshold: float = 3.5,
    ) -> AnomalyResult:
        """Modified z-score on the median absolute deviation; robust to outliers."""
        data = np.asarray(history, dtype=float)
        if len(data) < 2:
            return AnomalyResult(False, 0.0, "mad", value)

        median = float(np.median(data))
        mad = float(np.median(np.abs(data - median)))
        if mad == 0:
            return AnomalyResult(False, 0.0, "mad", value, expected=median)

        modified_z = MAD_CONSISTENCY * abs(value - median) / mad
        return AnomalyResult(
            is_anomaly=modified_z > threshold,
            score=min(1.0, modified_z / (threshold * 2)),
            method="mad",
            value=value,
            expected=median,
            threshold=threshold,
            z_score=modified_z,
        )

    def iqr(
        self,
        history: Sequence[float],
        value: float,
        multiplier: float = 1.5,
    ) -> AnomalyResult:
        """Outside [Q1 - k*IQR, Q3 + k*IQR]."""
        data = np.sort(np.asarray(history, dtype=float))
        if len(data) < 4:
            return AnomalyResult(False, 0.0, "iqr", value)

        q1 = float(data[int(len(data) * 0.25)])
        q3 = float(data[int(len(data) * 0.75)])
        spread = q3 - q1
        lower = q1 - multiplier * spread
        upper = q3 + multiplier * spread

        score = 0.0
        if spread > 0:
            if value < lower:
                score = min(1.0, (lower - value) / (spread * multiplier))
            elif value > upper:
                score = min(1.0, (value - upper) / (spread * multiplier))

        return AnomalyResult(
            is_anomaly=value < lower or value > upper,
            score=score,
            method="iqr",
            value=value,
            expected=(q1 + q3) / 2,
            threshold=multiplier,
        )

    def moving_average(
        self,
        series: MetricSeries,
        window: int = 7,
        threshold: float = 2.0,
    ) -> AnomalyResult:
        """Latest value against the mean of the preceding window."""
        values = series.values
        if len(values) < window + 1:
            latest = float(values[-1]) if len(values) else 0.0
            return AnomalyResult(False, 0.0, "moving-average", latest)

        current = float(values[-1])
        recent = values[-window - 1:-1]
        moving_avg = float(recent.mean())
        std = float(recent.std())
        if std == 0:
            return AnomalyResult(False, 0.0, "moving-average", current, expected=moving_avg)

        z = abs(current - moving_avg) / std
        return AnomalyResult(
            is_anomaly=z > threshold,
            score=min(1.0, z / (threshold * 2)),
            method="moving-average",
            value=current,
            expected=moving_avg,
            threshold=threshold,
            z_score=z,
            deviation=std,
        )

    def volatility(
        self,
        series: MetricSeries,
        window: int = 7,
        threshold: float = 2.0,
    ) -> AnomalyResult:
        """Spread of the latest window against the spread of the two before it."""
        values = series.values
        if len(values) < window * 2:
            return AnomalyResult(False, 0.0, "volatility", 0.0)

        recent_std = float(values[-window:].std())
        baseline_std = float(values[-window * 3:-window].std())
        if baseline_std == 0:
            return AnomalyResult(False, 0.0, "volatility", recent_std)

        ratio = recent_std / baseline_std
        return AnomalyResult(
            is_anomaly=ratio > threshold,
            score=min(1.0, max(0.0, (ratio - 1) / threshold)),
            method="volatility",
            value=recent_std,
            expected=baseline_std,
            threshold=threshold,
        )

    def ensemble(
        self,
        history: Sequence[float],
        value: float,
        z_threshold: float = 3.0,
        mad_threshold: float = 3.5,
        iqr_multiplier: float = 1.5,
        min_agreement: int = 2,
    ) -> AnomalyResult:
        """Anomalous when at least `min_agreement` of z-score, MAD and IQR agree."""
        results = [
            self.z_score(history, value, z_threshold),
            self.mad(history, value, mad_threshold),
            self.iqr(history, value, iqr_multiplier),
        ]
        votes = sum(1 for r in results if r.is_anomaly)
        expected = next((r.expected for r in results if r.expected is not None), None)

        return AnomalyResult(
            is_anomaly=votes >= min_agreement,
            score=sum(r.score for r in results) / len(results),
            method="ensemble",
            value=value,
            expected=expected,
            threshold=float(min_agreement),
        )

    def check_latest(
        self,
        series: MetricSeries,
        technique: str = "ensemble",
        threshold: float | None = None,
    ) -> AnomalyResult:
        """
        Check the last observation of a series against everything before it.

        Args:
            series: History ending with the observation to check
            technique: z_score | mad | iqr | moving_average | ensemble
            threshold: Method threshold (None = method default)
        """
        if len(series) == 0:
            return AnomalyResult(False, 0.0, technique, 0.0)

        values = series.values
        history, latest = values[:-1], float(values[-1])
        kwargs = {} if threshold is None else {"threshold": threshold}

        if technique == "z_score":
            return self.z_score(history, latest, **kwargs)
        if technique == "mad":
            return self.mad(history, latest, **kwargs)
        if technique == "iqr":
            multiplier = {} if threshold is None else {"multiplier": threshold}
            return self.iqr(history, latest, **multiplier)
        if technique == "moving_average":
            return self.moving_average(series, **kwargs)
        if technique == "ensemble":
            return self.ensemble(history, latest)
        raise InvalidInputError(f"Unknown anomaly technique '{technique}'")

    @staticmethod
    def severity_for(result: AnomalyResult) -> Severity:
        """Map an anomaly score onto an alert severity."""
        if result.score >= 0.75:
            return "critical"
        if result.score >= 0.5:
            return "high"
        if result.score >= 0.25:
            return "medium"
        return "low"
