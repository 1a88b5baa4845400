"""Tests for the Energi Data Service client.

The API is stubbed with httpx.MockTransport; no network calls are made.
"""

import json
from datetime import UTC, date, datetime
from decimal import Decimal

import httpx
import pytest

from dk_settlement.clients.base import APIError
from dk_settlement.clients.energidataservice import EnergiDataServiceClient


def hourly_record(hour: str, price: float | None, area: str = "DK1") -> dict:
    return {"HourUTC": hour, "PriceArea": area, "SpotPriceDKK": price}


def quarter_record(ts: str, price: float | None, area: str = "DK1") -> dict:
    return {"TimeUTC": ts, "PriceArea": area, "DayAheadPriceDKK": price}


class StubApi:
    """Answers dataset requests from canned records and remembers each request."""

    def __init__(self, datasets: dict[str, list[dict]], status_code: int = 200):
        self.datasets = datasets
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream unavailable")
        dataset = request.url.path.rsplit("/", 1)[-1]
        records = self.datasets.get(dataset, [])
        return httpx.Response(200, json={"total": len(records), "records": records})


class TestEnergiDataServiceClient:
    """Spot price retrieval and parsing."""

    @pytest.mark.asyncio
    async def test_hourly_prices(self):
        """Hourly prices are converted from DKK/MWh to DKK/kWh."""
        api = StubApi(
            {
                "Elspotprices": [
                    hourly_record("2025-01-01T00:00:00", 450.0),
                    hourly_record("2025-01-01T01:00:00", 1250.5),
                ]
            }
        )

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))

        assert [p.price_per_kwh for p in prices] == [Decimal("0.45"), Decimal("1.2505")]
        assert prices[0].timestamp == datetime(2025, 1, 1, tzinfo=UTC)
        assert prices[0].resolution == "PT1H"
        assert prices[0].price_area == "DK1"

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        """The area filter, range and column selection are sent."""
        api = StubApi({})

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            await client.get_spot_prices("DK2", date(2025, 1, 1), date(2025, 1, 8))

        (request,) = api.requests
        assert request.url.path == "/dataset/Elspotprices"
        assert request.url.params["start"] == "2025-01-01"
        assert request.url.params["end"] == "2025-01-08"
        assert json.loads(request.url.params["filter"]) == {"PriceArea": ["DK2"]}
        assert request.url.params["columns"] == "HourUTC,PriceArea,SpotPriceDKK"

    @pytest.mark.asyncio
    async def test_quarter_hour_prices(self):
        """From October 2025 prices come from the 15-minute dataset."""
        api = StubApi({"DayAheadPrices": [quarter_record("2025-10-02T00:15:00", 700.0)]})

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 10, 2), date(2025, 10, 3))

        (price,) = prices
        assert price.resolution == "PT15M"
        assert price.price_per_kwh == Decimal("0.7")
        assert price.timestamp == datetime(2025, 10, 2, 0, 15, tzinfo=UTC)
        assert [r.url.path for r in api.requests] == ["/dataset/DayAheadPrices"]

    @pytest.mark.asyncio
    async def test_range_split_at_cutover(self):
        """A range spanning the cutover queries both datasets."""
        api = StubApi(
            {
                "Elspotprices": [hourly_record("2025-09-30T23:00:00", 500.0)],
                "DayAheadPrices": [quarter_record("2025-10-01T00:00:00", 600.0)],
            }
        )

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 9, 30), date(2025, 10, 2))

        assert [p.resolution for p in prices] == ["PT1H", "PT15M"]
        hourly, quarterly = api.requests
        assert hourly.url.params["end"] == "2025-10-01"
        assert quarterly.url.params["start"] == "2025-10-01"

    @pytest.mark.asyncio
    async def test_null_prices_skipped(self):
        """Intervals without a published price are left out."""
        api = StubApi(
            {
                "Elspotprices": [
                    hourly_record("2025-01-01T00:00:00", None),
                    hourly_record("2025-01-01T01:00:00", 300.0),
                ]
            }
        )

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))

        assert len(prices) == 1
        assert prices[0].timestamp.hour == 1

    @pytest.mark.asyncio
    async def test_negative_prices_kept(self):
        """Negative spot prices are valid and passed through."""
        api = StubApi({"Elspotprices": [hourly_record("2025-01-01T12:00:00", -15.0)]})

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))

        assert prices[0].price_per_kwh == Decimal("-0.015")

    @pytest.mark.asyncio
    async def test_prices_parsed_exactly(self):
        """Prices keep every published digit instead of being rounded through float."""
        body = (
            '{"total": 1, "records": [{"HourUTC": "2025-01-01T00:00:00", '
            '"PriceArea": "DK1", "SpotPriceDKK": 412.123456789012345678}]}'
        )
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))

        async with EnergiDataServiceClient(transport=transport) as client:
            prices = await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))

        assert prices[0].price_per_kwh == Decimal("0.412123456789012345678")

    @pytest.mark.asyncio
    async def test_server_error(self):
        """A 5xx response raises APIError with the status code."""
        api = StubApi({}, status_code=503)

        async with EnergiDataServiceClient(transport=httpx.MockTransport(api)) as client:
            with pytest.raises(APIError) as exc_info:
                await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_health_check(self):
        """Health check succeeds when the API answers."""
        async with EnergiDataServiceClient(transport=httpx.MockTransport(StubApi({}))) as client:
            assert await client.health_check() is True

        async with EnergiDataServiceClient(transport=httpx.MockTransport(StubApi({}, 500))) as client:
            assert await client.health_check() is False
