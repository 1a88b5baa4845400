"""Supabase-backed market process repository."""

import logging
from datetime import UTC, date, datetime

from supabase import Client

from dk_settlement.errors import SettlementError
from dk_settlement.models.process import ProcessEvent, ProcessRecord, ProcessStatus, next_status
from dk_settlement.storage.base import ProcessSource
from dk_settlement.storage.supabase import create_supabase_client

logger = logging.getLogger(__name__)


class SupabaseProcessRepository(ProcessSource):
    """Reads processes and applies lifecycle transitions.

    A transition updates the row only if it still has the status it was
    read with, and records the event in ``process_events``.
    """

    def __init__(self, client: Client | None = None):
        self._client = client or create_supabase_client()

    def get_by_status(self, status: ProcessStatus) -> list[ProcessRecord]:
        rows = (
            self._client.table("processes")
            .select("*")
            .eq("status", ProcessStatus(status).value)
            .order("created_at")
            .execute()
            .data
        )
        return [
            ProcessRecord(
                id=row["id"],
                gsrn=row["gsrn"],
                process_type=row["process_type"],
                status=row["status"],
                effective_date=date.fromisoformat(row["effective_date"]) if row.get("effective_date") else None,
            )
            for row in rows
        ]

    def transition(self, process: ProcessRecord, event: ProcessEvent) -> ProcessRecord:
        """Apply an event to a process.

        Raises:
            InvalidTransitionError: If the event is not allowed in the current status
            SettlementError: If the process changed status since it was read
        """
        new_status = next_status(process.status, event)
        now = datetime.now(UTC).isoformat()

        result = (
            self._client.table("processes")
            .update({"status": new_status.value, "updated_at": now})
            .eq("id", process.id)
            .eq("status", process.status.value)
            .execute()
        )
        if not result.data:
            raise SettlementError(f"Process {process.id} is no longer {process.status}")

        self._client.table("process_events").insert(
            {
                "process_id": process.id,
                "event_type": ProcessEvent(event).value,
                "occurred_at": now,
                "source": "settlement",
            }
        ).execute()

        logger.info(f"Process {process.id} (GSRN {process.gsrn}): {process.status} -> {new_status}")
        return process.model_copy(update={"status": new_status})
