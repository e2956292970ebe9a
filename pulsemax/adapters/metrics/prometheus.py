"""
Prometheus Metric Source - Reads monitor history over the HTTP range-query API.

Works against any Prometheus-compatible backend (VictoriaMetrics, Thanos,
Mimir, Cortex). Monitors expect one aggregated series per query; when a
query matches several, the lexically first series id wins and the rest are
reported in the log.
"""

import logging
import re
from datetime import datetime, timezone

import httpx
import numpy as np
import pandas as pd
from pydantic import PrivateAttr

from pulsemax.core.domain.errors import InvalidInputError
from pulsemax.core.domain.series import MetricSeries
from pulsemax.core.ports.metric_source import MetricSource

logger = logging.getLogger(__name__)

FRAME_COLUMNS = ["unique_id", "ds", "y"]

# Prometheus duration, e.g. 30s, 5m, 1h, 1d (compound forms like 1h30m allowed)
STEP_PATTERN = re.compile(r"^(\d+(ms|s|m|h|d|w|y))+$")


def series_id(labels: dict[str, str]) -> str:
    """`name{label="value",...}` with labels sorted, or just the name."""
    labels = dict(labels)
    name = labels.pop("__name__", "metric")
    if not labels:
        return name
    rendered = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{rendered}}}"


class PrometheusMetricSource(MetricSource):
    """
    Read-only metric source for monitors.

    Timestamps come back tz-aware in UTC, samples sorted by time, and
    non-numeric samples (NaN, +Inf from recording rules) are dropped.
    """
    read_url: str
    timeout: float = 30.0
    headers: dict[str, str] = {}

    _client: httpx.AsyncClient | None = PrivateAttr(default=None)

    def model_post_init(self, __context):
        self.read_url = self.read_url.rstrip("/")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        return self._client

    async def query_range(
        self,
        query: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> pd.DataFrame:
        """
        Run a range query.

        Raises:
            InvalidInputError: malformed step or start after end
            RuntimeError: the backend reported a failed query
        """
        if not STEP_PATTERN.match(step):
            raise InvalidInputError(f"Invalid step '{step}', expected a duration like 5m or 1h")
        if self._to_unix(start) > self._to_unix(end):
            raise InvalidInputError(f"Range start {start.isoformat()} is after end {end.isoformat()}")

        client = await self._get_client()
        response = await client.get(
            f"{self.read_url}/api/v1/query_range",
            params={
                "query": query,
                "start": self._to_unix(start),
                "end": self._to_unix(end),
                "step": step,
            },
        )
        response.raise_for_status()
        body = response.json()

        if body.get("status") != "success":
            raise RuntimeError(f"Prometheus query failed: {body.get('error', 'Unknown error')}")
        for warning in body.get("warnings", []):
            logger.warning(f"Query '{query}': {warning}")

        frames = [
            self._result_frame(result)
            for result in body.get("data", {}).get("result", [])
            if result.get("values")
        ]
        if not frames:
            logger.debug(f"Query returned no series: {query}")
            return pd.DataFrame(columns=FRAME_COLUMNS)

        df = pd.concat(frames, ignore_index=True)
        df = df.dropna(subset=["y"])
        return df.sort_values(["unique_id", "ds"], ignore_index=True)

    async def fetch_series(
        self,
        query: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> MetricSeries:
        """The query's series as a MetricSeries, picking one when several match."""
        df = await self.query_range(query=query, start=start, end=end, step=step)
        if df.empty:
            return MetricSeries(name=query)

        ids = sorted(df["unique_id"].unique())
        if len(ids) > 1:
            logger.warning(
                f"Query '{query}' matched {len(ids)} series; using {ids[0]}. "
                f"Aggregate the query (e.g. sum(...)) to monitor the total."
            )
        chosen = df[df["unique_id"] == ids[0]]
        return MetricSeries.from_dataframe(chosen, name=ids[0])

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _result_frame(result: dict) -> pd.DataFrame:
        values = result["values"]
        y = pd.to_numeric(pd.Series([v for _, v in values], dtype=object), errors="coerce").astype(float)
        return pd.DataFrame({
            "unique_id": series_id(result.get("metric", {})),
            "ds": pd.to_datetime([float(ts) for ts, _ in values], unit="s", utc=True),
            "y": y.where(np.isfinite(y)).to_numpy(),
        })

    @staticmethod
    def _to_unix(moment: datetime) -> float:
        # Naive datetimes are taken as UTC
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.timestamp()
