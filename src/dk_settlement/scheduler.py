"""Scheduler for the settlement sweep and spot price ingestion.

Uses APScheduler to run:
- the settlement sweep every few minutes (SETTLEMENT_POLL_MINUTES)
- the spot price fetch daily at 13:15 Danish time, shortly after
  Nord Pool publishes the next day's prices, retrying every 15 minutes
  until tomorrow's prices are in
"""

import asyncio
import logging
import threading
from collections.abc import Callable
from datetime import date, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from dk_settlement.clients.energidataservice import EnergiDataServiceClient
from dk_settlement.config import Settings
from dk_settlement.orchestrator import SettlementOrchestrator
from dk_settlement.storage.processes import SupabaseProcessRepository
from dk_settlement.storage.reference import SupabaseReferenceData
from dk_settlement.storage.supabase import SupabaseSettlementStore, create_supabase_client
from dk_settlement.utils.time import DK_TZ, get_dk_today

logger = logging.getLogger(__name__)

# Day-ahead prices reach one day past today
DAYS_AHEAD = 2
INITIAL_BACKFILL_DAYS = 30
RETRY_MINUTES = 15


class PriceFetcher:
    """Fetches day-ahead spot prices and stores them.

    Example:
        fetcher = PriceFetcher(SupabaseReferenceData())
        await fetcher.fetch_all(["DK1", "DK2"])
    """

    def __init__(
        self,
        reference: SupabaseReferenceData,
        client_factory: Callable[[], EnergiDataServiceClient] = EnergiDataServiceClient,
        today: Callable[[], date] = get_dk_today,
    ):
        self.reference = reference
        self.client_factory = client_factory
        self.today = today

    async def fetch_spot_prices(
        self,
        price_area: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> dict[str, int]:
        """Fetch prices for an area, by default from the latest stored day.

        Args:
            price_area: DK1 or DK2
            from_date: First day to fetch. Defaults to the latest stored price date.
            to_date: Day after the last day to fetch. Defaults to two days ahead.

        Returns:
            Stats dict with fetch counts
        """
        async with self.client_factory() as client:
            return await self._fetch_area(client, price_area, from_date, to_date)

    async def _fetch_area(
        self,
        client: EnergiDataServiceClient,
        price_area: str,
        from_date: date | None,
        to_date: date | None,
    ) -> dict[str, int]:
        to_date = to_date or self.today() + timedelta(days=DAYS_AHEAD)
        if from_date is None:
            latest = self.reference.get_latest_price_date(price_area)
            if latest is None:
                from_date = self.today() - timedelta(days=INITIAL_BACKFILL_DAYS)
                logger.info(f"No existing prices for {price_area}, backfilling from {from_date}")
            else:
                from_date = latest

        if from_date >= to_date:
            logger.info(f"Spot prices for {price_area} already up to date through {to_date}")
            return {"fetched": 0, "inserted": 0}

        prices = await client.get_spot_prices(price_area, from_date, to_date)
        logger.info(f"Fetched {len(prices)} spot prices for {price_area} from {from_date} to {to_date}")
        return self.reference.save_spot_prices(prices)

    async def fetch_all(
        self,
        price_areas: list[str],
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> dict[str, dict[str, int]]:
        """Fetch every price area. A failure in one area does not stop the others.

        The API is checked once first; if it is unreachable every area is
        reported as failed without further requests.

        Returns:
            Dict mapping price area to stats
        """
        results: dict[str, dict[str, int]] = {}
        async with self.client_factory() as client:
            if not await client.health_check():
                logger.error("Energi Data Service is unreachable, skipping spot price fetch")
                return {area: {"error": "Energi Data Service unreachable"} for area in price_areas}

            for area in price_areas:
                try:
                    results[area] = await self._fetch_area(client, area, from_date, to_date)
                except Exception as e:
                    logger.error(f"Failed to fetch spot prices for {area}: {e}")
                    results[area] = {"error": str(e)}
        return results

    def has_tomorrow(self, price_areas: list[str]) -> bool:
        """True if every area has prices stored for tomorrow."""
        tomorrow = self.today() + timedelta(days=1)
        for area in price_areas:
            latest = self.reference.get_latest_price_date(area)
            if latest is None or latest < tomorrow:
                return False
        return True


class Scheduler:
    """Runs the settlement sweep and the spot price job until interrupted.

    Example:
        scheduler = Scheduler()
        scheduler.start()
        # Runs until interrupted
    """

    def __init__(
        self,
        settings: Settings | None = None,
        orchestrator: SettlementOrchestrator | None = None,
        fetcher: PriceFetcher | None = None,
    ):
        self.settings = settings or Settings.from_env()
        if orchestrator is None or fetcher is None:
            client = create_supabase_client(self.settings.supabase_url, self.settings.supabase_service_key)
            reference = SupabaseReferenceData(client)
            orchestrator = orchestrator or SettlementOrchestrator(
                reference,
                SupabaseSettlementStore(client),
                processes=SupabaseProcessRepository(client),
            )
            fetcher = fetcher or PriceFetcher(reference)
        self.orchestrator = orchestrator
        self.fetcher = fetcher
        self.scheduler = AsyncIOScheduler(timezone=DK_TZ)
        self._stop = threading.Event()

    def _setup_jobs(self) -> None:
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self._settlement_job,
            IntervalTrigger(minutes=self.settings.poll_minutes),
            id="settlement_sweep",
            name="Settlement Sweep",
            replace_existing=True,
        )

        # Nord Pool publishes day-ahead prices around 13:00 Danish time
        self.scheduler.add_job(
            self._spot_prices_job,
            CronTrigger(hour=13, minute=15, timezone=DK_TZ),
            id="spot_prices",
            name="Fetch Spot Prices",
            replace_existing=True,
        )

    async def _settlement_job(self) -> None:
        """Job: advance all metering points with a triggering process."""
        logger.info("Running settlement sweep")
        try:
            stats = await asyncio.to_thread(self.orchestrator.run_tick, self._stop)
            logger.info(f"Settlement sweep job completed: {stats}")
        except Exception as e:
            logger.error(f"Settlement sweep job failed: {e}")

    async def _spot_prices_job(self) -> None:
        """Job: fetch spot prices, retrying later if tomorrow is not published yet."""
        logger.info("Running spot prices job")
        areas = self.settings.price_areas
        try:
            stats = await self.fetcher.fetch_all(areas)
            logger.info(f"Spot prices job completed: {stats}")
            complete = self.fetcher.has_tomorrow(areas)
        except Exception as e:
            logger.error(f"Spot prices job failed: {e}")
            complete = False

        if not complete:
            retry_at = datetime.now(DK_TZ) + timedelta(minutes=RETRY_MINUTES)
            logger.info(f"Tomorrow's spot prices not available yet, retrying at {retry_at:%H:%M}")
            self.scheduler.add_job(
                self._spot_prices_job,
                DateTrigger(run_date=retry_at),
                id="spot_prices_retry",
                name="Retry Spot Prices",
                replace_existing=True,
            )

    async def run(self) -> None:
        """Start the jobs and wait until stopped."""
        self._setup_jobs()

        logger.info("Starting scheduler...")
        logger.info("Jobs scheduled:")
        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.name}: {job.trigger}")

        self.scheduler.start()

        # Catch up on prices at startup
        await self._spot_prices_job()

        try:
            while not self._stop.is_set():
                await asyncio.sleep(1)
        finally:
            self.scheduler.shutdown(wait=False)

    def start(self) -> None:
        """Start the scheduler.

        This is a blocking call that runs until interrupted.
        """
        try:
            asyncio.run(self.run())
        except (KeyboardInterrupt, SystemExit):
            logger.info("Shutting down scheduler...")
            self.stop()

    def stop(self) -> None:
        """Signal running sweeps and the run loop to stop."""
        self._stop.set()

    async def run_once(self) -> dict[str, object]:
        """Run the sweep and the price fetch once (useful for testing)."""
        return {
            "settlement": await asyncio.to_thread(self.orchestrator.run_tick, self._stop),
            "spot_prices": await self.fetcher.fetch_all(self.settings.price_areas),
        }
