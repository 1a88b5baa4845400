"""Tests for the spot price fetcher and the scheduler's jobs."""

import threading
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from dk_settlement.config import Settings
from dk_settlement.models import PriceSample
from dk_settlement.scheduler import PriceFetcher, Scheduler

TODAY = date(2025, 3, 10)


class FakeClient:
    """Stands in for EnergiDataServiceClient and records requested ranges."""

    def __init__(self, calls: list[tuple[str, date, date]], fail_area: str | None = None, healthy: bool = True):
        self.calls = calls
        self.fail_area = fail_area
        self.healthy = healthy

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    async def health_check(self) -> bool:
        return self.healthy

    async def get_spot_prices(self, price_area: str, from_date: date, to_date: date) -> list[PriceSample]:
        self.calls.append((price_area, from_date, to_date))
        if price_area == self.fail_area:
            raise RuntimeError("upstream unavailable")
        return [PriceSample(price_area=price_area, timestamp=datetime(2025, 3, 11, tzinfo=UTC), price_per_kwh=Decimal("0.9"))]


class FakeReference:
    def __init__(self, latest: dict[str, date]):
        self.latest = latest
        self.saved: list[PriceSample] = []

    def get_latest_price_date(self, price_area: str) -> date | None:
        return self.latest.get(price_area)

    def save_spot_prices(self, prices: list[PriceSample]) -> dict[str, int]:
        self.saved.extend(prices)
        return {"fetched": len(prices), "inserted": len(prices)}


def make_fetcher(
    latest: dict[str, date],
    fail_area: str | None = None,
    healthy: bool = True,
) -> tuple[PriceFetcher, FakeReference, list[tuple[str, date, date]]]:
    calls: list[tuple[str, date, date]] = []
    reference = FakeReference(latest)
    fetcher = PriceFetcher(reference, client_factory=lambda: FakeClient(calls, fail_area, healthy), today=lambda: TODAY)
    return fetcher, reference, calls


class TestPriceFetcher:
    """Incremental spot price ingestion."""

    @pytest.mark.asyncio
    async def test_fetches_from_latest_stored_day(self):
        """The range starts at the latest stored day and ends two days ahead."""
        fetcher, reference, calls = make_fetcher({"DK1": date(2025, 3, 9)})

        stats = await fetcher.fetch_spot_prices("DK1")

        assert calls == [("DK1", date(2025, 3, 9), date(2025, 3, 12))]
        assert stats == {"fetched": 1, "inserted": 1}
        assert len(reference.saved) == 1

    @pytest.mark.asyncio
    async def test_backfills_empty_area(self):
        """An area with no prices is backfilled 30 days."""
        fetcher, _, calls = make_fetcher({})

        await fetcher.fetch_spot_prices("DK2")

        assert calls == [("DK2", date(2025, 2, 8), date(2025, 3, 12))]

    @pytest.mark.asyncio
    async def test_up_to_date_skips_request(self):
        """Nothing is requested when the stored prices already reach the end."""
        fetcher, _, calls = make_fetcher({"DK1": date(2025, 3, 12)})

        assert await fetcher.fetch_spot_prices("DK1") == {"fetched": 0, "inserted": 0}
        assert calls == []

    @pytest.mark.asyncio
    async def test_explicit_range(self):
        """An explicit range overrides the stored state."""
        fetcher, _, calls = make_fetcher({"DK1": date(2025, 3, 9)})

        await fetcher.fetch_spot_prices("DK1", date(2025, 1, 1), date(2025, 1, 8))

        assert calls == [("DK1", date(2025, 1, 1), date(2025, 1, 8))]

    @pytest.mark.asyncio
    async def test_failure_isolated_per_area(self):
        """One failing area is reported without stopping the other."""
        fetcher, reference, _ = make_fetcher({"DK1": date(2025, 3, 9), "DK2": date(2025, 3, 9)}, fail_area="DK1")

        results = await fetcher.fetch_all(["DK1", "DK2"])

        assert results["DK1"] == {"error": "upstream unavailable"}
        assert results["DK2"] == {"fetched": 1, "inserted": 1}

    @pytest.mark.asyncio
    async def test_unreachable_api_skips_all_areas(self):
        """When the health check fails no prices are requested or saved."""
        fetcher, reference, calls = make_fetcher({"DK1": date(2025, 3, 9)}, healthy=False)

        results = await fetcher.fetch_all(["DK1", "DK2"])

        assert set(results) == {"DK1", "DK2"}
        assert all("error" in stats for stats in results.values())
        assert calls == []
        assert reference.saved == []

    def test_has_tomorrow(self):
        """Tomorrow is covered only when every area reaches it."""
        fetcher, _, _ = make_fetcher({"DK1": date(2025, 3, 11), "DK2": date(2025, 3, 10)})

        assert fetcher.has_tomorrow(["DK1"]) is True
        assert fetcher.has_tomorrow(["DK1", "DK2"]) is False
        assert fetcher.has_tomorrow(["DK1", "DK3"]) is False


class FakeOrchestrator:
    def __init__(self) -> None:
        self.cancel_events: list[threading.Event | None] = []

    def run_tick(self, cancel: threading.Event | None = None) -> dict[str, int]:
        self.cancel_events.append(cancel)
        return {"metering_points": 0, "periods_settled": 0, "final_settled": 0, "errors": 0}


class TestScheduler:
    """Job registration and the spot price retry."""

    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(poll_minutes=2, price_areas=["DK1"])

    def test_jobs_registered(self, settings: Settings):
        """The sweep and the daily price fetch are scheduled."""
        fetcher, _, _ = make_fetcher({"DK1": TODAY})
        scheduler = Scheduler(settings, orchestrator=FakeOrchestrator(), fetcher=fetcher)

        scheduler._setup_jobs()

        assert {job.id for job in scheduler.scheduler.get_jobs()} == {"settlement_sweep", "spot_prices"}

    @pytest.mark.asyncio
    async def test_retry_scheduled_until_tomorrow_published(self, settings: Settings):
        """Missing prices for tomorrow schedule a retry."""
        fetcher, _, _ = make_fetcher({"DK1": TODAY})
        scheduler = Scheduler(settings, orchestrator=FakeOrchestrator(), fetcher=fetcher)

        await scheduler._spot_prices_job()

        assert scheduler.scheduler.get_job("spot_prices_retry") is not None

    @pytest.mark.asyncio
    async def test_no_retry_when_complete(self, settings: Settings):
        """No retry once tomorrow's prices are stored."""
        fetcher, _, _ = make_fetcher({"DK1": date(2025, 3, 12)})
        scheduler = Scheduler(settings, orchestrator=FakeOrchestrator(), fetcher=fetcher)

        await scheduler._spot_prices_job()

        assert scheduler.scheduler.get_job("spot_prices_retry") is None

    @pytest.mark.asyncio
    async def test_run_once_passes_stop_event(self, settings: Settings):
        """The sweep receives the scheduler's stop event for cancellation."""
        orchestrator = FakeOrchestrator()
        fetcher, _, _ = make_fetcher({"DK1": date(2025, 3, 12)})
        scheduler = Scheduler(settings, orchestrator=orchestrator, fetcher=fetcher)

        result = await scheduler.run_once()

        assert result["settlement"]["errors"] == 0
        assert orchestrator.cancel_events == [scheduler._stop]

        scheduler.stop()
        assert scheduler._stop.is_set()
