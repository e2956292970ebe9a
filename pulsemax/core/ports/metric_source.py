"""
MetricSource Port - Interface for reading metric history.
Returns Pandas DataFrames for easy integration with numeric code.
"""

from abc import ABC, abstractmethod
from datetime import datetime

import pandas as pd
from pydantic import BaseModel, ConfigDict

from pulsemax.core.domain.series import MetricSeries


class MetricSource(BaseModel, ABC):
    """
    Abstract interface for metric history.
    Also serves as a Pydantic Model for configuration validation.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    @abstractmethod
    async def query_range(
        self,
        query: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> pd.DataFrame:
        """
        Execute a range query.

        Args:
            query: Query string (e.g. PromQL)
            start: Start time
            end: End time
            step: Resolution

        Returns:
            DataFrame with columns: ['unique_id', 'ds', 'y']
        """
        ...

    async def fetch_series(
        self,
        query: str,
        start: datetime,
        end: datetime,
        step: str,
    ) -> MetricSeries:
        """
        Fetch the first series matched by the query.

        Returns:
            MetricSeries (empty if nothing matched)
        """
        df = await self.query_range(query=query, start=start, end=end, step=step)
        if df.empty:
            return MetricSeries(name=query)

        first_id = df["unique_id"].iloc[0]
        return MetricSeries.from_dataframe(df[df["unique_id"] == first_id], name=str(first_id))
