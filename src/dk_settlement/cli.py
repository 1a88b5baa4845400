"""CLI for the Danish electricity settlement engine.

Commands:
    settle        - Advance one metering point through its billing periods
    settle-all    - Run one settlement sweep over all triggering processes
    final-settle  - Final-settle every offboarding process
    correct       - Price revised metering data for a settled period
    runs          - Show settlement run history for a metering point
    fetch-prices  - Fetch day-ahead spot prices from Energi Data Service
    scheduler     - Run the settlement sweep and price jobs continuously

Usage:
    dk-settlement settle 571313100000012345
    dk-settlement correct 571313100000012345 --from 2025-01-01 --to 2025-02-01
    dk-settlement fetch-prices --area DK1 --from 2025-01-01 --to 2025-01-08
    dk-settlement scheduler
"""

import asyncio
import logging
from datetime import date, datetime

import click
from dotenv import load_dotenv

# Load environment variables before imports that need them
load_dotenv()

from dk_settlement.config import Settings
from dk_settlement.corrections import CorrectionService
from dk_settlement.errors import SettlementError
from dk_settlement.models.process import ProcessStatus
from dk_settlement.orchestrator import SettlementOrchestrator
from dk_settlement.scheduler import PriceFetcher, Scheduler
from dk_settlement.storage.processes import SupabaseProcessRepository
from dk_settlement.storage.reference import SupabaseReferenceData
from dk_settlement.storage.supabase import SupabaseSettlementStore, create_supabase_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def parse_date(date_str: str) -> date:
    """Parse date string in YYYY-MM-DD format."""
    return datetime.strptime(date_str, "%Y-%m-%d").date()


def build_orchestrator() -> SettlementOrchestrator:
    client = create_supabase_client()
    return SettlementOrchestrator(
        SupabaseReferenceData(client),
        SupabaseSettlementStore(client),
        processes=SupabaseProcessRepository(client),
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose: bool) -> None:
    """Danish electricity settlement - billing periods, settlement runs and corrections."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@main.command()
@click.argument("gsrn")
def settle(gsrn: str) -> None:
    """Settle all closed, complete periods for one metering point."""
    orchestrator = build_orchestrator()
    settled = orchestrator.advance_metering_point(gsrn)
    click.echo(f"{gsrn}: {settled} period(s) settled")


@main.command("settle-all")
def settle_all() -> None:
    """Run one settlement sweep, including final settlement of offboarding processes."""
    stats = build_orchestrator().run_tick()

    click.echo("\nResults:")
    for name, value in stats.items():
        click.echo(f"  {name}: {value}")


@main.command("final-settle")
def final_settle() -> None:
    """Final-settle every process in offboarding."""
    orchestrator = build_orchestrator()
    processes = orchestrator.processes.get_by_status(ProcessStatus.OFFBOARDING)
    if not processes:
        click.echo("No offboarding processes")
        return

    for process in processes:
        done = orchestrator.final_settle(process)
        click.echo(f"  {process.gsrn}: {'final settled' if done else 'not ready'}")


@main.command()
@click.argument("gsrn")
@click.option("--from", "from_date", required=True, help="Period start (YYYY-MM-DD)")
@click.option("--to", "to_date", required=True, help="Period end, exclusive (YYYY-MM-DD)")
@click.option("--note", default=None, help="Note stored with the correction")
def correct(gsrn: str, from_date: str, to_date: str, note: str | None) -> None:
    """Calculate a correction for revised metering data."""
    start = parse_date(from_date)
    end = parse_date(to_date)

    if start >= end:
        click.echo("Error: --from must be before --to")
        return

    client = create_supabase_client()
    service = CorrectionService(SupabaseReferenceData(client), SupabaseSettlementStore(client))

    try:
        batch = service.trigger_correction(gsrn, start, end, note=note)
    except SettlementError as e:
        click.echo(f"Error: {e}")
        return

    result = batch.result
    click.echo(f"Correction batch {batch.batch_id} (original run: {batch.original_run_id or 'none'})")
    for line in result.lines:
        click.echo(f"  {line.charge_type:<22} {line.amount:>10} DKK")
    click.echo(f"  {'delta kWh':<22} {result.total_delta_kwh:>10}")
    click.echo(f"  {'subtotal':<22} {result.subtotal:>10} DKK")
    click.echo(f"  {'VAT':<22} {result.vat_amount:>10} DKK")
    click.echo(f"  {'total':<22} {result.total:>10} DKK")


@main.command()
@click.argument("gsrn")
def runs(gsrn: str) -> None:
    """Show settlement runs for a metering point."""
    store = SupabaseSettlementStore()
    history = store.get_runs(gsrn)
    if not history:
        click.echo(f"No settlement runs for {gsrn}")
        return

    click.echo(f"Settlement runs for {gsrn}")
    click.echo("=" * 50)
    for run in history:
        total = sum((line.amount + line.vat_amount for line in run.lines), start=0)
        click.echo(f"  {run.period_start} to {run.period_end}  v{run.version}  {run.status}  {total} DKK")
        if run.error_details:
            click.echo(f"    error: {run.error_details}")


@main.command("fetch-prices")
@click.option("--area", "-a", "areas", multiple=True, help="Price area (repeatable). Defaults to configured areas.")
@click.option("--from", "from_date", default=None, help="Start date (YYYY-MM-DD)")
@click.option("--to", "to_date", default=None, help="End date, exclusive (YYYY-MM-DD)")
def fetch_prices(areas: tuple[str, ...], from_date: str | None, to_date: str | None) -> None:
    """Fetch day-ahead spot prices and store them."""
    price_areas = list(areas) or Settings.from_env().price_areas
    start = parse_date(from_date) if from_date else None
    end = parse_date(to_date) if to_date else None

    if start and end and start >= end:
        click.echo("Error: --from must be before --to")
        return

    fetcher = PriceFetcher(SupabaseReferenceData())
    results = asyncio.run(fetcher.fetch_all(price_areas, start, end))

    click.echo("\nResults:")
    for area, stats in results.items():
        if "error" in stats:
            click.echo(f"  {area}: ERROR - {stats['error']}")
        else:
            click.echo(f"  {area}: {stats.get('fetched', 0)} fetched, {stats.get('inserted', 0)} saved")


@main.command()
def scheduler() -> None:
    """Run the settlement sweep and spot price jobs.

    Press Ctrl+C to stop.
    """
    click.echo("Starting settlement scheduler...")
    click.echo("Press Ctrl+C to stop")
    click.echo()

    Scheduler().start()


if __name__ == "__main__":
    main()
