"""
Tests for PrometheusMetricSource.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pulsemax.adapters.metrics.prometheus import PrometheusMetricSource, series_id
from pulsemax.core.domain.errors import InvalidInputError

pytestmark = pytest.mark.unit


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


@pytest.fixture
def source():
    return PrometheusMetricSource(read_url="http://localhost:8428/")


def test_url_normalized(source):
    assert source.read_url == "http://localhost:8428"


@pytest.mark.asyncio
async def test_query_range(source):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        client_instance = MockClient.return_value
        client_instance.get = AsyncMock(return_value=_response({
            "status": "success",
            "data": {
                "result": [
                    {
                        "metric": {"__name__": "sessions", "region": "us"},
                        "values": [[1704096000, "12"], [1704099600, "15"]],
                    }
                ]
            },
        }))

        start = datetime(2024, 1, 1, 8, tzinfo=timezone.utc)
        end = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        df = await source.query_range("sessions", start=start, end=end, step="1h")

        assert len(df) == 2
        assert df["unique_id"].iloc[0] == 'sessions{region="us"}'
        assert df["y"].tolist() == [12.0, 15.0]

        url = client_instance.get.call_args[0][0]
        assert url == "http://localhost:8428/api/v1/query_range"
        params = client_instance.get.call_args[1]["params"]
        assert params["start"] == start.timestamp()
        assert params["end"] == end.timestamp()


@pytest.mark.asyncio
async def test_fetch_series(source):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        MockClient.return_value.get = AsyncMock(return_value=_response({
            "status": "success",
            "data": {"result": [{"metric": {}, "values": [[1704099600, "3"], [1704096000, "2"]]}]},
        }))

        now = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        series = await source.fetch_series("tutors", now, now, "1h")

        assert series.name == "metric"
        assert list(series.values) == [2.0, 3.0]
        assert series.points[0].timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_query_range_empty(source):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        MockClient.return_value.get = AsyncMock(return_value=_response({
            "status": "success",
            "data": {"result": []},
        }))

        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        df = await source.query_range("nothing", now, now, "1h")
        assert df.empty
        assert list(df.columns) == ["unique_id", "ds", "y"]

        series = await source.fetch_series("nothing", now, now, "1h")
        assert len(series) == 0


@pytest.mark.asyncio
async def test_query_range_error(source):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        MockClient.return_value.get = AsyncMock(return_value=_response({
            "status": "error",
            "error": "bad query",
        }))

        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(RuntimeError, match="bad query"):
            await source.query_range("sessions{", now, now, "1h")


def test_series_id():
    assert series_id({"__name__": "sessions", "zone": "eu", "app": "web"}) == 'sessions{app="web",zone="eu"}'
    assert series_id({"__name__": "sessions"}) == "sessions"
    assert series_id({}) == "metric"


@pytest.mark.asyncio
async def test_query_range_drops_non_numeric_samples(source):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        MockClient.return_value.get = AsyncMock(return_value=_response({
            "status": "success",
            "data": {"result": [{
                "metric": {"__name__": "tutors"},
                "values": [[1704099600, "NaN"], [1704096000, "4"], [1704103200, "+Inf"], [1704106800, "6"]],
            }]},
        }))

        now = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        df = await source.query_range("tutors", now, now, "1h")

        assert df["y"].tolist() == [4.0, 6.0]
        assert df["ds"].is_monotonic_increasing


@pytest.mark.asyncio
async def test_fetch_series_picks_first_series_id(source, caplog):
    with patch("pulsemax.adapters.metrics.prometheus.httpx.AsyncClient") as MockClient:
        MockClient.return_value.get = AsyncMock(return_value=_response({
            "status": "success",
            "data": {"result": [
                {"metric": {"__name__": "sessions", "region": "us"}, "values": [[1704096000, "9"]]},
                {"metric": {"__name__": "sessions", "region": "eu"}, "values": [[1704096000, "5"]]},
            ]},
        }))

        now = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        series = await source.fetch_series("sessions", now, now, "1h")

        assert series.name == 'sessions{region="eu"}'
        assert list(series.values) == [5.0]
        assert "matched 2 series" in caplog.text


@pytest.mark.asyncio
@pytest.mark.parametrize("step", ["1 hour", "h", "", "5x"])
async def test_query_range_rejects_bad_step(source, step):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(InvalidInputError):
        await source.query_range("sessions", now, now, step)


@pytest.mark.asyncio
async def test_query_range_rejects_inverted_range(source):
    start = datetime(2024, 1, 2, tzinfo=timezone.utc)
    end = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with pytest.raises(InvalidInputError):
        await source.query_range("sessions", start, end, "1h")
