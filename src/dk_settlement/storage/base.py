"""Storage contracts used by the orchestrator.

Reference data (contracts, metering data, prices, tariffs) is staged by
other services; the settlement core only reads it. Results are written
through a SettlementStore.
"""

from abc import ABC, abstractmethod
from datetime import date

from dk_settlement.models.metering import ConsumptionDelta
from dk_settlement.models.portfolio import ContractTerms, MeteringPointInfo, SupplyPeriod
from dk_settlement.models.process import ProcessEvent, ProcessRecord, ProcessStatus
from dk_settlement.models.settlement import (
    BillingFrequency,
    CorrectionResult,
    SettlementInput,
    SettlementResult,
    SettlementRun,
)


class ReferenceDataSource(ABC):
    """Read access to contract, metering, price and tariff data."""

    @abstractmethod
    def get_contract(self, gsrn: str, include_ended: bool = False) -> ContractTerms | None:
        """Return the active contract, or the latest one when ``include_ended``."""

    @abstractmethod
    def get_metering_point(self, gsrn: str) -> MeteringPointInfo | None:
        pass

    @abstractmethod
    def get_supply_periods(self, gsrn: str) -> list[SupplyPeriod]:
        pass

    @abstractmethod
    def count_readings(self, gsrn: str, period_start: date, period_end: date) -> int:
        """Number of stored readings in [period_start, period_end)."""

    @abstractmethod
    def get_metering_changes(self, gsrn: str, period_start: date, period_end: date) -> list[ConsumptionDelta]:
        pass

    @abstractmethod
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

        Raises:
            MissingRateError: If system tariff, transmission tariff or
                electricity tax is absent for the period
        """


class SettlementStore(ABC):
    """Persists settlement runs exactly once per metering point and period."""

    @abstractmethod
    def store(
        self,
        gsrn: str,
        grid_area_code: str,
        result: SettlementResult,
        frequency: BillingFrequency | str,
    ) -> str | None:
        """Record a completed run with its lines.

        Returns the run id, or None if a completed run already exists.
        """

    @abstractmethod
    def store_failed(
        self,
        gsrn: str,
        grid_area_code: str,
        period_start: date,
        period_end: date,
        error_details: str,
        frequency: BillingFrequency | str = BillingFrequency.MONTHLY,
    ) -> str:
        """Record a failed run without lines. Returns the run id."""

    @abstractmethod
    def has_run(self, gsrn: str, period_start: date, period_end: date) -> bool:
        """True if a completed run exists for the period, whatever its version."""

    @abstractmethod
    def get_runs(self, gsrn: str) -> list[SettlementRun]:
        pass

    @abstractmethod
    def get_latest_completed_run(self, gsrn: str, period_start: date, period_end: date) -> SettlementRun | None:
        pass

    @abstractmethod
    def store_correction(
        self,
        result: CorrectionResult,
        original_run_id: str | None,
        trigger_type: str = "manual",
        note: str | None = None,
    ) -> str:
        """Persist a correction batch. Returns the batch id."""


class ProcessSource(ABC):
    """Market processes that trigger settlement."""

    @abstractmethod
    def get_by_status(self, status: ProcessStatus) -> list[ProcessRecord]:
        pass

    @abstractmethod
    def transition(self, process: ProcessRecord, event: ProcessEvent) -> ProcessRecord:
        """Apply a lifecycle event and persist the new status."""
