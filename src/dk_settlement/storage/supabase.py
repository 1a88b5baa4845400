"""Supabase storage backend for settlement results.

Writes billing periods, versioned settlement runs and their lines.
Commits for the same (metering point, period) are serialised through an
in-process KeyedLock; the database's partial unique index on completed
runs rejects a second completed run from another process.

A run and its lines are written in one call to the
``record_settlement_run`` database function so they commit together.
"""

import logging
import os
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from dotenv import load_dotenv
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client, create_client

from dk_settlement.engine.vat import allocate_vat
from dk_settlement.models.settlement import (
    BillingFrequency,
    CorrectionResult,
    RunStatus,
    SettlementResult,
    SettlementRun,
    StoredSettlementLine,
)
from dk_settlement.storage.base import SettlementStore
from dk_settlement.storage.locks import KeyedLock

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

CURRENCY = "DKK"
UNIQUE_VIOLATION = "23505"


def create_supabase_client(url: str | None = None, key: str | None = None) -> Client:
    """Create a Supabase client.

    Args:
        url: Supabase project URL. Defaults to SUPABASE_URL env var.
        key: Supabase service key. Defaults to SUPABASE_SERVICE_KEY env var.
    """
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_KEY")

    if not url or not key:
        raise ValueError(
            "Supabase credentials required. Set SUPABASE_URL and SUPABASE_SERVICE_KEY "
            "environment variables or pass them directly."
        )

    return create_client(url, key)


def to_db_decimal(value: Decimal | None) -> str | None:
    """Decimals travel as strings so PostgREST stores them exactly."""
    return None if value is None else str(value)


def from_db_decimal(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


class SupabaseSettlementStore(SettlementStore):
    """Idempotent settlement result store.

    Example:
        store = SupabaseSettlementStore()
        store.store(gsrn, "344", result, "monthly")
        assert store.has_run(gsrn, result.period_start, result.period_end)
    """

    def __init__(self, client: Client | None = None, locks: KeyedLock | None = None):
        """Initialize the store.

        Args:
            client: Supabase client. Created from the environment if not provided.
            locks: Lock map shared by every store in this process.
        """
        self._client = client or create_supabase_client()
        self._locks = locks or KeyedLock()

    def store(
        self,
        gsrn: str,
        grid_area_code: str,
        result: SettlementResult,
        frequency: BillingFrequency | str,
    ) -> str | None:
        """Record a completed settlement run with its lines.

        The result's VAT is allocated across the lines so the per-line
        VAT sums exactly to the result's VAT.

        Returns:
            The new run id, or None if a completed run for the period already exists

        Raises:
            postgrest.exceptions.APIError: On any database error, including a
                unique violation that did not come from a completed run
        """
        key = (gsrn, result.period_start, result.period_end)

        with self._locks.hold(key):
            billing_period_id = self._upsert_billing_period(result.period_start, result.period_end, frequency)

            if self._completed_run_id(gsrn, billing_period_id) is not None:
                logger.warning(
                    f"GSRN {gsrn}: period {result.period_start} to {result.period_end} "
                    "already has a completed run, not storing again"
                )
                return None

            version = self._next_version(gsrn, billing_period_id)
            now = datetime.now(UTC).isoformat()
            run = {
                "billing_period_id": billing_period_id,
                "metering_point_id": gsrn,
                "grid_area_code": grid_area_code,
                "version": version,
                "status": RunStatus.COMPLETED.value,
                "executed_at": now,
                "completed_at": now,
                "error_details": None,
            }

            vat_shares = allocate_vat([line.amount for line in result.lines], result.subtotal, result.vat_amount)
            lines = [
                {
                    "metering_point_id": gsrn,
                    "charge_type": line.charge_type.value,
                    "total_kwh": to_db_decimal(line.kwh),
                    "total_amount": to_db_decimal(line.amount),
                    "vat_amount": to_db_decimal(vat),
                    "currency": CURRENCY,
                }
                for line, vat in zip(result.lines, vat_shares, strict=True)
            ]

            try:
                run_id = self._record_run(run, lines)
            except PostgrestAPIError as e:
                # Settled only if a completed run exists; a version clash alone is not
                if e.code == UNIQUE_VIOLATION and self._completed_run_id(gsrn, billing_period_id) is not None:
                    logger.warning(
                        f"GSRN {gsrn}: concurrent settlement of {result.period_start} to "
                        f"{result.period_end} already committed"
                    )
                    return None
                raise

        logger.info(
            f"Stored settlement run v{version} for GSRN {gsrn}: "
            f"{result.period_start} to {result.period_end}, {len(lines)} lines"
        )
        return run_id

    def store_failed(
        self,
        gsrn: str,
        grid_area_code: str,
        period_start: date,
        period_end: date,
        error_details: str,
        frequency: BillingFrequency | str = BillingFrequency.MONTHLY,
    ) -> str:
        """Record a failed settlement attempt. No lines are written."""
        key = (gsrn, period_start, period_end)

        with self._locks.hold(key):
            billing_period_id = self._upsert_billing_period(period_start, period_end, frequency)
            version = self._next_version(gsrn, billing_period_id)
            run = {
                "billing_period_id": billing_period_id,
                "metering_point_id": gsrn,
                "grid_area_code": grid_area_code,
                "version": version,
                "status": RunStatus.FAILED.value,
                "executed_at": datetime.now(UTC).isoformat(),
                "completed_at": None,
                "error_details": error_details,
            }
            run_id = self._record_run(run, [])

        logger.info(f"Stored failed run v{version} for GSRN {gsrn}: {period_start} to {period_end}")
        return run_id

    def has_run(self, gsrn: str, period_start: date, period_end: date) -> bool:
        billing_period_id = self._find_billing_period(period_start, period_end)
        if billing_period_id is None:
            return False
        return self._completed_run_id(gsrn, billing_period_id) is not None

    def get_runs(self, gsrn: str) -> list[SettlementRun]:
        """All runs for a metering point, ordered by period then version."""
        rows = self._client.table("settlement_runs").select("*").eq("metering_point_id", gsrn).execute().data
        runs = self._to_runs(rows)
        return sorted(runs, key=lambda r: (r.period_start, r.version))

    def get_latest_completed_run(self, gsrn: str, period_start: date, period_end: date) -> SettlementRun | None:
        billing_period_id = self._find_billing_period(period_start, period_end)
        if billing_period_id is None:
            return None

        rows = (
            self._client.table("settlement_runs")
            .select("*")
            .eq("metering_point_id", gsrn)
            .eq("billing_period_id", billing_period_id)
            .eq("status", RunStatus.COMPLETED.value)
            .order("version", desc=True)
            .limit(1)
            .execute()
            .data
        )
        runs = self._to_runs(rows)
        return runs[0] if runs else None

    def store_correction(
        self,
        result: CorrectionResult,
        original_run_id: str | None,
        trigger_type: str = "manual",
        note: str | None = None,
    ) -> str:
        """Persist a correction batch, one row per line."""
        batch_id = str(uuid.uuid4())
        rows = [
            {
                "correction_batch_id": batch_id,
                "metering_point_id": result.metering_point_id,
                "period_start": result.period_start.isoformat(),
                "period_end": result.period_end.isoformat(),
                "original_run_id": original_run_id,
                "delta_kwh": to_db_decimal(line.kwh if line.kwh is not None else result.total_delta_kwh),
                "charge_type": line.charge_type.value,
                "delta_amount": to_db_decimal(line.amount),
                "trigger_type": trigger_type,
                "status": RunStatus.COMPLETED.value,
                "vat_amount": to_db_decimal(result.vat_amount),
                "total_amount": to_db_decimal(result.total),
                "note": note,
            }
            for line in result.lines
        ]

        self._client.table("correction_settlements").insert(rows).execute()
        logger.info(
            f"Stored correction batch {batch_id} for GSRN {result.metering_point_id}: "
            f"{result.period_start} to {result.period_end}, total {result.total} {CURRENCY}"
        )
        return batch_id

    def _upsert_billing_period(self, period_start: date, period_end: date, frequency: BillingFrequency | str) -> str:
        result = (
            self._client.table("billing_periods")
            .upsert(
                {
                    "period_start": period_start.isoformat(),
                    "period_end": period_end.isoformat(),
                    "frequency": BillingFrequency(frequency).value,
                },
                on_conflict="period_start,period_end",
            )
            .execute()
        )
        return result.data[0]["id"]

    def _find_billing_period(self, period_start: date, period_end: date) -> str | None:
        result = (
            self._client.table("billing_periods")
            .select("id")
            .eq("period_start", period_start.isoformat())
            .eq("period_end", period_end.isoformat())
            .limit(1)
            .execute()
        )
        return result.data[0]["id"] if result.data else None

    def _completed_run_id(self, gsrn: str, billing_period_id: str) -> str | None:
        result = (
            self._client.table("settlement_runs")
            .select("id")
            .eq("metering_point_id", gsrn)
            .eq("billing_period_id", billing_period_id)
            .eq("status", RunStatus.COMPLETED.value)
            .limit(1)
            .execute()
        )
        return result.data[0]["id"] if result.data else None

    def _next_version(self, gsrn: str, billing_period_id: str) -> int:
        result = (
            self._client.table("settlement_runs")
            .select("version")
            .eq("metering_point_id", gsrn)
            .eq("billing_period_id", billing_period_id)
            .order("version", desc=True)
            .limit(1)
            .execute()
        )
        return result.data[0]["version"] + 1 if result.data else 1

    def _record_run(self, run: dict[str, Any], lines: list[dict[str, Any]]) -> str:
        result = self._client.rpc("record_settlement_run", {"run": run, "lines": lines}).execute()
        return result.data

    def _to_runs(self, rows: list[dict[str, Any]]) -> list[SettlementRun]:
        if not rows:
            return []

        period_ids = sorted({r["billing_period_id"] for r in rows})
        periods = {
            p["id"]: p
            for p in self._client.table("billing_periods").select("*").in_("id", period_ids).execute().data
        }

        run_ids = [r["id"] for r in rows]
        lines_by_run: dict[str, list[StoredSettlementLine]] = {run_id: [] for run_id in run_ids}
        line_rows = (
            self._client.table("settlement_lines")
            .select("*")
            .in_("settlement_run_id", run_ids)
            .order("id")
            .execute()
            .data
        )
        for line in line_rows:
            lines_by_run[line["settlement_run_id"]].append(
                StoredSettlementLine(
                    charge_type=line["charge_type"],
                    kwh=from_db_decimal(line.get("total_kwh")),
                    amount=from_db_decimal(line["total_amount"]),
                    vat_amount=from_db_decimal(line["vat_amount"]),
                )
            )

        runs = []
        for r in rows:
            period = periods[r["billing_period_id"]]
            runs.append(
                SettlementRun(
                    id=r["id"],
                    billing_period_id=r["billing_period_id"],
                    metering_point_id=r["metering_point_id"],
                    grid_area_code=r["grid_area_code"],
                    period_start=date.fromisoformat(period["period_start"]),
                    period_end=date.fromisoformat(period["period_end"]),
                    version=r["version"],
                    status=r["status"],
                    executed_at=r["executed_at"],
                    completed_at=r.get("completed_at"),
                    error_details=r.get("error_details"),
                    lines=lines_by_run[r["id"]],
                )
            )
        return runs
