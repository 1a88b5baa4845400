"""Energi Data Service client for Danish day-ahead spot prices.

API Documentation: https://www.energidataservice.dk/guides/api-guides
Base URL: https://api.energidataservice.dk

No authentication required. Two datasets cover the day-ahead market:
- Elspotprices: hourly (PT1H) prices up to 2025-09-30.
  Columns: HourUTC, PriceArea, SpotPriceDKK
- DayAheadPrices: quarter-hourly (PT15M) prices from 2025-10-01,
  when the Nordic market moved to a 15-minute MTU.
  Columns: TimeUTC, PriceArea, DayAheadPriceDKK

Prices are published in DKK/MWh and converted here to DKK/kWh.
"""

import json
import logging
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

import httpx

from dk_settlement.clients.base import BaseClient
from dk_settlement.models.metering import PriceSample

logger = logging.getLogger(__name__)

BASE_URL = "https://api.energidataservice.dk"

HOURLY_DATASET = "Elspotprices"
QUARTER_HOURLY_DATASET = "DayAheadPrices"

# First day published in the quarter-hourly dataset
QUARTER_HOUR_CUTOVER = date(2025, 10, 1)

KWH_PER_MWH = Decimal("1000")


def _parse_utc(value: str) -> datetime:
    """Parse an API timestamp. The API omits the offset on UTC columns."""
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


class EnergiDataServiceClient(BaseClient):
    """Client for Energinet's Energi Data Service.

    Example:
        async with EnergiDataServiceClient() as client:
            prices = await client.get_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 2))
    """

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(base_url=BASE_URL, timeout=timeout, transport=transport)

    async def health_check(self) -> bool:
        """Check API health by requesting a single record."""
        try:
            await self.get(f"dataset/{HOURLY_DATASET}", params={"limit": 1})
            return True
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            return False

    async def get_spot_prices(self, price_area: str, from_date: date, to_date: date) -> list[PriceSample]:
        """Get day-ahead prices for [from_date, to_date).

        A range spanning the quarter-hour cutover is split between the
        two datasets.

        Args:
            price_area: DK1 or DK2
            from_date: First day (inclusive)
            to_date: Last day (exclusive)

        Returns:
            Prices in DKK/kWh, ordered by timestamp
        """
        prices: list[PriceSample] = []

        if from_date < QUARTER_HOUR_CUTOVER:
            hourly_end = min(to_date, QUARTER_HOUR_CUTOVER)
            prices.extend(
                await self._fetch_dataset(
                    HOURLY_DATASET, "HourUTC", "SpotPriceDKK", "PT1H", price_area, from_date, hourly_end
                )
            )

        if to_date > QUARTER_HOUR_CUTOVER:
            quarter_start = max(from_date, QUARTER_HOUR_CUTOVER)
            prices.extend(
                await self._fetch_dataset(
                    QUARTER_HOURLY_DATASET, "TimeUTC", "DayAheadPriceDKK", "PT15M", price_area, quarter_start, to_date
                )
            )

        return prices

    async def _fetch_dataset(
        self,
        dataset: str,
        time_column: str,
        price_column: str,
        resolution: str,
        price_area: str,
        from_date: date,
        to_date: date,
    ) -> list[PriceSample]:
        params: dict[str, Any] = {
            "start": from_date.isoformat(),
            "end": to_date.isoformat(),
            "filter": json.dumps({"PriceArea": [price_area]}),
            "sort": f"{time_column} asc",
            "columns": f"{time_column},PriceArea,{price_column}",
            "limit": 0,
        }

        logger.info(f"Fetching {dataset} prices for {price_area} from {from_date} to {to_date}")
        response = await self.get(f"dataset/{dataset}", params=params)

        records = response.get("records") or []
        if not records:
            logger.warning(f"No records from {dataset} for {price_area} {from_date} to {to_date}")
            return []

        prices = []
        for record in records:
            # Unpublished intervals come back with a null price
            if record.get(price_column) is None:
                continue
            prices.append(
                PriceSample(
                    price_area=record["PriceArea"],
                    timestamp=_parse_utc(record[time_column]),
                    price_per_kwh=Decimal(record[price_column]) / KWH_PER_MWH,
                    resolution=resolution,
                )
            )

        logger.info(f"Received {len(prices)} {resolution} prices for {price_area}")
        return prices
