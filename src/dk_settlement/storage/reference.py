"""Supabase reader for settlement reference data.

Contracts, metering points, readings, spot prices and tariffs are staged
by other services. This module only reads them, apart from spot prices
which the price job writes through ``save_spot_prices``.

Tariff tables carry validity ranges: a row applies on a date when
``valid_from <= date`` and ``valid_to`` is null or after the date.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from supabase import Client

from dk_settlement.errors import MissingRateError
from dk_settlement.models.metering import ConsumptionDelta, ConsumptionSample, PriceSample, TariffRate
from dk_settlement.models.portfolio import ContractTerms, MeteringPointInfo, SupplyPeriod
from dk_settlement.models.settlement import GridTariffChange, SettlementInput
from dk_settlement.storage.base import ReferenceDataSource
from dk_settlement.storage.supabase import create_supabase_client, from_db_decimal, to_db_decimal
from dk_settlement.utils.time import period_bounds

logger = logging.getLogger(__name__)

# PostgREST caps rows per response
PAGE_SIZE = 1000


def _applies_on(row: dict[str, Any], on: date) -> bool:
    valid_to = row.get("valid_to")
    return valid_to is None or date.fromisoformat(valid_to) > on


class SupabaseReferenceData(ReferenceDataSource):
    """Reads contracts, metering data, prices and tariffs from Supabase.

    Example:
        reference = SupabaseReferenceData()
        data = reference.load_settlement_input(gsrn, "344", "DK1", date(2025, 1, 1), date(2025, 2, 1))
    """

    def __init__(self, client: Client | None = None):
        self._client = client or create_supabase_client()

    def get_metering_point(self, gsrn: str) -> MeteringPointInfo | None:
        rows = self._client.table("metering_points").select("*").eq("gsrn", gsrn).limit(1).execute().data
        if not rows:
            return None
        row = rows[0]
        return MeteringPointInfo(gsrn=row["gsrn"], grid_area_code=row["grid_area_code"], price_area=row["price_area"])

    def get_contract(self, gsrn: str, include_ended: bool = False) -> ContractTerms | None:
        """Return contract terms joined with the contract's product.

        Product margin and supplement are stored in øre/kWh and returned
        in DKK/kWh.
        """
        query = self._client.table("contracts").select("*").eq("gsrn", gsrn)
        if not include_ended:
            query = query.is_("end_date", "null")
        rows = query.order("start_date", desc=True).limit(1).execute().data
        if not rows:
            return None
        contract = rows[0]

        products = self._client.table("products").select("*").eq("id", contract["product_id"]).limit(1).execute().data
        if not products:
            logger.warning(f"GSRN {gsrn}: product {contract['product_id']} not found")
            return None
        product = products[0]

        supplement_ore = from_db_decimal(product.get("supplement_ore_per_kwh")) or Decimal("0")
        return ContractTerms(
            gsrn=gsrn,
            billing_frequency=contract["billing_frequency"],
            start_date=date.fromisoformat(contract["start_date"]),
            margin_per_kwh=from_db_decimal(product["margin_ore_per_kwh"]) / 100,
            supplement_per_kwh=supplement_ore / 100,
            supplier_subscription_per_month=from_db_decimal(product["subscription_kr_per_month"]),
        )

    def get_supply_periods(self, gsrn: str) -> list[SupplyPeriod]:
        rows = self._client.table("supply_periods").select("*").eq("gsrn", gsrn).order("start_date").execute().data
        return [
            SupplyPeriod(
                gsrn=row["gsrn"],
                start_date=date.fromisoformat(row["start_date"]),
                end_date=date.fromisoformat(row["end_date"]) if row.get("end_date") else None,
            )
            for row in rows
        ]

    def count_readings(self, gsrn: str, period_start: date, period_end: date) -> int:
        start, end = period_bounds(period_start, period_end)
        result = (
            self._client.table("metering_data")
            .select("timestamp", count="exact")
            .eq("metering_point_id", gsrn)
            .gte("timestamp", start.isoformat())
            .lt("timestamp", end.isoformat())
            .limit(1)
            .execute()
        )
        return result.count or 0

    def get_consumption(self, gsrn: str, period_start: date, period_end: date) -> list[ConsumptionSample]:
        start, end = period_bounds(period_start, period_end)
        rows = self._fetch_all(
            lambda: self._client.table("metering_data")
            .select("*")
            .eq("metering_point_id", gsrn)
            .gte("timestamp", start.isoformat())
            .lt("timestamp", end.isoformat())
            .order("timestamp")
        )
        return [
            ConsumptionSample(
                timestamp=row["timestamp"],
                resolution=row.get("resolution") or "PT1H",
                quantity_kwh=from_db_decimal(row["quantity_kwh"]),
                quality_code=row.get("quality_code") or "A04",
                message_id=row.get("source_message_id"),
            )
            for row in rows
        ]

    def get_spot_prices(self, price_area: str, period_start: date, period_end: date) -> list[PriceSample]:
        start, end = period_bounds(period_start, period_end)
        rows = self._fetch_all(
            lambda: self._client.table("spot_prices")
            .select("*")
            .eq("price_area", price_area)
            .gte("timestamp", start.isoformat())
            .lt("timestamp", end.isoformat())
            .order("timestamp")
        )
        return [
            PriceSample(
                price_area=row["price_area"],
                timestamp=row["timestamp"],
                price_per_kwh=from_db_decimal(row["price_per_kwh"]),
                resolution=row.get("resolution") or "PT1H",
            )
            for row in rows
        ]

    def get_metering_changes(self, gsrn: str, period_start: date, period_end: date) -> list[ConsumptionDelta]:
        start, end = period_bounds(period_start, period_end)
        rows = self._fetch_all(
            lambda: self._client.table("metering_data_changes")
            .select("*")
            .eq("metering_point_id", gsrn)
            .gte("timestamp", start.isoformat())
            .lt("timestamp", end.isoformat())
            .order("timestamp")
        )
        return [
            ConsumptionDelta(
                timestamp=row["timestamp"],
                previous_kwh=from_db_decimal(row["previous_kwh"]),
                new_kwh=from_db_decimal(row["new_kwh"]),
            )
            for row in rows
        ]

    def get_tariff_rates(self, grid_area_code: str, tariff_type: str, on: date) -> list[TariffRate]:
        """Hour-of-day rates of the tariff version valid on a date."""
        tariff = self._find_tariff(grid_area_code, tariff_type, on)
        if tariff is None:
            return []
        return self._rates_for(tariff["id"])

    def get_electricity_tax(self, on: date) -> Decimal | None:
        rows = (
            self._client.table("electricity_tax")
            .select("*")
            .lte("valid_from", on.isoformat())
            .order("valid_from", desc=True)
            .execute()
            .data
        )
        for row in rows:
            if _applies_on(row, on):
                return from_db_decimal(row["rate_per_kwh"])
        return None

    def get_subscription(self, grid_area_code: str, subscription_type: str, on: date) -> Decimal | None:
        rows = (
            self._client.table("subscriptions")
            .select("*")
            .eq("grid_area_code", grid_area_code)
            .eq("subscription_type", subscription_type)
            .lte("valid_from", on.isoformat())
            .order("valid_from", desc=True)
            .execute()
            .data
        )
        for row in rows:
            if _applies_on(row, on):
                return from_db_decimal(row["amount_kr_per_month"])
        return None

    def get_grid_tariff_change(self, grid_area_code: str, period_start: date, period_end: date) -> GridTariffChange | None:
        """Find a grid tariff version taking effect strictly inside the period."""
        rows = (
            self._client.table("grid_tariffs")
            .select("*")
            .eq("grid_area_code", grid_area_code)
            .eq("tariff_type", "grid")
            .gt("valid_from", period_start.isoformat())
            .lt("valid_from", period_end.isoformat())
            .order("valid_from")
            .execute()
            .data
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(
                f"Grid area {grid_area_code}: {len(rows)} tariff changes in {period_start} to {period_end}, "
                f"splitting on the first only"
            )
        row = rows[0]
        return GridTariffChange(split_date=date.fromisoformat(row["valid_from"]), rates=self._rates_for(row["id"]))

    def load_settlement_input(
        self,
        gsrn: str,
        grid_area_code: str,
        price_area: str,
        period_start: date,
        period_end: date,
        include_consumption: bool = True,
    ) -> SettlementInput:
        """Assemble readings, prices and rates for a period.

        Rates are taken as valid on the middle day of the period. When a
        grid tariff change falls inside the period, the grid rates are
        those valid on the first day and the change is reported
        separately so the period can be split.

        Raises:
            MissingRateError: If system tariff, transmission tariff or
                electricity tax is absent for the period
        """
        mid_date = period_start + timedelta(days=(period_end - period_start).days // 2)

        consumption = self.get_consumption(gsrn, period_start, period_end) if include_consumption else []
        spot_prices = self.get_spot_prices(price_area, period_start, period_end)

        change = self.get_grid_tariff_change(grid_area_code, period_start, period_end)
        grid_rates = self.get_tariff_rates(grid_area_code, "grid", period_start if change else mid_date)
        if not grid_rates:
            logger.warning(f"Grid area {grid_area_code}: no grid tariff for {period_start} to {period_end}")

        system_rate = self._flat_rate(grid_area_code, "system", mid_date)
        transmission_rate = self._flat_rate(grid_area_code, "transmission", mid_date)

        tax_rate = self.get_electricity_tax(mid_date)
        if tax_rate is None:
            raise MissingRateError(f"No electricity tax rate found for {mid_date}", "electricity_tax")

        grid_subscription = self.get_subscription(grid_area_code, "grid", mid_date)
        if grid_subscription is None:
            logger.warning(f"Grid area {grid_area_code}: no grid subscription on {mid_date}, using 0")
            grid_subscription = Decimal("0")

        logger.debug(
            f"GSRN {gsrn}: loaded {len(consumption)} readings and {len(spot_prices)} prices "
            f"for {period_start} to {period_end}"
        )
        return SettlementInput(
            consumption=consumption,
            spot_prices=spot_prices,
            grid_tariff_rates=grid_rates,
            system_tariff_rate=system_rate,
            transmission_tariff_rate=transmission_rate,
            electricity_tax_rate=tax_rate,
            grid_subscription_per_month=grid_subscription,
            grid_tariff_change=change,
        )

    def save_spot_prices(self, prices: list[PriceSample]) -> dict[str, int]:
        """Upsert spot prices.

        Returns:
            Stats dict with fetched/inserted counts
        """
        if not prices:
            return {"fetched": 0, "inserted": 0}

        records = [
            {
                "price_area": p.price_area,
                "timestamp": p.timestamp.isoformat(),
                "price_per_kwh": to_db_decimal(p.price_per_kwh),
                "resolution": p.resolution,
            }
            for p in prices
        ]

        try:
            result = self._client.table("spot_prices").upsert(records, on_conflict="price_area,timestamp").execute()
            inserted = len(result.data) if result.data else 0
            logger.info(f"Upserted {inserted} spot prices")
            return {"fetched": len(prices), "inserted": inserted}
        except Exception as e:
            logger.error(f"Failed to save spot prices: {e}")
            raise

    def get_latest_price_date(self, price_area: str) -> date | None:
        """UTC date of the latest stored price for an area."""
        rows = (
            self._client.table("spot_prices")
            .select("timestamp")
            .eq("price_area", price_area)
            .order("timestamp", desc=True)
            .limit(1)
            .execute()
            .data
        )
        return datetime.fromisoformat(rows[0]["timestamp"]).astimezone(UTC).date() if rows else None

    def _flat_rate(self, grid_area_code: str, tariff_type: str, on: date) -> Decimal:
        rates = self.get_tariff_rates(grid_area_code, tariff_type, on)
        if not rates:
            raise MissingRateError(
                f"No {tariff_type} tariff rates found for grid area {grid_area_code} on {on}",
                f"{tariff_type}_tariff",
            )
        return rates[0].price_per_kwh

    def _find_tariff(self, grid_area_code: str, tariff_type: str, on: date) -> dict[str, Any] | None:
        rows = (
            self._client.table("grid_tariffs")
            .select("*")
            .eq("grid_area_code", grid_area_code)
            .eq("tariff_type", tariff_type)
            .lte("valid_from", on.isoformat())
            .order("valid_from", desc=True)
            .execute()
            .data
        )
        for row in rows:
            if _applies_on(row, on):
                return row
        return None

    def _rates_for(self, tariff_id: str) -> list[TariffRate]:
        rows = (
            self._client.table("tariff_rates")
            .select("*")
            .eq("grid_tariff_id", tariff_id)
            .order("hour_number")
            .execute()
            .data
        )
        return [TariffRate(hour_number=r["hour_number"], price_per_kwh=from_db_decimal(r["price_per_kwh"])) for r in rows]

    def _fetch_all(self, build: Callable[[], Any]) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = build().range(offset, offset + PAGE_SIZE - 1).execute().data
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                return rows
            offset += PAGE_SIZE
