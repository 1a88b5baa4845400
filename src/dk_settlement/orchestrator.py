"""Billing period advancement for metering points.

Walks a metering point's billing periods in calendar order from the
contract's billing anchor date, settling each closed period that has
complete metering data. A period is either fully committed or not
committed at all; a failed period is recorded and halts advancement
for that metering point until the next trigger.
"""

import logging
import threading
from collections.abc import Callable
from datetime import date

from dk_settlement.engine.completeness import check_completeness, expected_sample_count
from dk_settlement.engine.periods import get_first_period_end
from dk_settlement.engine.settlement import SettlementCalculator
from dk_settlement.engine.splitter import PeriodSplitter
from dk_settlement.models.portfolio import ContractTerms, MeteringPointInfo
from dk_settlement.models.process import ProcessEvent, ProcessRecord, ProcessStatus
from dk_settlement.models.settlement import SettlementRequest, SettlementResult
from dk_settlement.storage.base import ProcessSource, ReferenceDataSource, SettlementStore
from dk_settlement.utils.time import get_dk_today

logger = logging.getLogger(__name__)


class SettlementOrchestrator:
    """Advances metering points through their billing periods.

    Safe to run from several threads or processes at once: the store
    serialises the commit for each (metering point, period) and rejects
    a second completed run.

    Example:
        orchestrator = SettlementOrchestrator(SupabaseReferenceData(), SupabaseSettlementStore())
        orchestrator.advance_metering_point("571313100000012345")
    """

    def __init__(
        self,
        reference: ReferenceDataSource,
        store: SettlementStore,
        calculator: SettlementCalculator | None = None,
        splitter: PeriodSplitter | None = None,
        processes: ProcessSource | None = None,
        today: Callable[[], date] = get_dk_today,
    ):
        """Initialize the orchestrator.

        Args:
            reference: Contract, metering and tariff data source
            store: Settlement result store
            calculator: Settlement calculator. Defaults to a 25% VAT calculator.
            splitter: Used for periods with a mid-period grid tariff change
            processes: Market process source, needed by run_tick and final_settle
            today: Returns the current Danish date
        """
        self.reference = reference
        self.store = store
        self.calculator = calculator or SettlementCalculator()
        self.splitter = splitter or PeriodSplitter(self.calculator)
        self.processes = processes
        self.today = today

    def advance_metering_point(self, gsrn: str, cancel: threading.Event | None = None) -> int:
        """Settle every closed, complete and unsettled period in order.

        Stops at the first open period, the first period with incomplete
        metering data, or the first failure.

        Args:
            gsrn: Metering point id
            cancel: Checked between periods; set it to stop early

        Returns:
            Number of periods settled in this call
        """
        contract = self.reference.get_contract(gsrn)
        if contract is None:
            logger.warning(f"GSRN {gsrn}: no active contract found, skipping settlement")
            return 0

        metering_point = self.reference.get_metering_point(gsrn)
        if metering_point is None:
            logger.warning(f"GSRN {gsrn}: metering point not found, skipping settlement")
            return 0

        today = self.today()
        period_start = contract.start_date
        settled = 0

        while not _cancelled(cancel):
            period_end = get_first_period_end(period_start, contract.billing_frequency)

            if period_end > today:
                logger.debug(f"GSRN {gsrn}: period {period_start} to {period_end} is still open")
                break

            if self.store.has_run(gsrn, period_start, period_end):
                period_start = period_end
                continue

            if not self._is_complete(gsrn, period_start, period_end):
                break

            stored = self._settle_period(contract, metering_point, period_start, period_end)
            if stored is None:
                break
            if stored:
                settled += 1
            period_start = period_end

        return settled

    def final_settle(self, process: ProcessRecord, cancel: threading.Event | None = None) -> bool:
        """Settle all remaining periods up to the supply end of an offboarding process.

        The last period is cut short at the supply end date. When every
        period is settled the process moves to ``final_settled``.

        Returns:
            True if the process was final-settled
        """
        gsrn = process.gsrn
        if process.status != ProcessStatus.OFFBOARDING:
            logger.warning(f"Final settlement requested for process {process.id} in status {process.status}")
            return False

        ended = [p for p in self.reference.get_supply_periods(gsrn) if p.end_date is not None]
        if not ended:
            logger.warning(f"GSRN {gsrn}: no ended supply period found for final settlement")
            return False
        supply_end = max(p.end_date for p in ended)

        # The contract may already be ended when offboarding
        contract = self.reference.get_contract(gsrn, include_ended=True)
        if contract is None:
            logger.warning(f"GSRN {gsrn}: no contract found for final settlement")
            return False

        metering_point = self.reference.get_metering_point(gsrn)
        if metering_point is None:
            logger.warning(f"GSRN {gsrn}: metering point not found for final settlement")
            return False

        period_start = contract.start_date
        while period_start < supply_end:
            if _cancelled(cancel):
                return False

            period_end = min(get_first_period_end(period_start, contract.billing_frequency), supply_end)

            if not self.store.has_run(gsrn, period_start, period_end):
                if not self._is_complete(gsrn, period_start, period_end):
                    return False
                if self._settle_period(contract, metering_point, period_start, period_end) is None:
                    return False

            period_start = period_end

        if self.processes is None:
            raise RuntimeError("A process source is required to mark a process final settled")
        self.processes.transition(process, ProcessEvent.FINAL_SETTLE)
        logger.info(f"GSRN {gsrn}: final settlement complete, process {process.id} marked final_settled")
        return True

    def run_tick(self, cancel: threading.Event | None = None) -> dict[str, int]:
        """One sweep over all metering points with a settlement-triggering process.

        Each metering point is handled independently; an error for one is
        logged and does not stop the others.

        Returns:
            Stats dict with settled periods, final settlements and errors
        """
        if self.processes is None:
            raise RuntimeError("A process source is required for the settlement sweep")

        stats = {"metering_points": 0, "periods_settled": 0, "final_settled": 0, "errors": 0}

        seen: set[str] = set()
        for process in self.processes.get_by_status(ProcessStatus.COMPLETED):
            if _cancelled(cancel):
                return stats
            if process.gsrn in seen:
                continue
            seen.add(process.gsrn)

            stats["metering_points"] += 1
            try:
                stats["periods_settled"] += self.advance_metering_point(process.gsrn, cancel)
            except Exception as e:
                stats["errors"] += 1
                logger.error(f"Failed to settle process {process.id} for GSRN {process.gsrn}: {e}")

        for process in self.processes.get_by_status(ProcessStatus.OFFBOARDING):
            if _cancelled(cancel):
                return stats
            try:
                if self.final_settle(process, cancel):
                    stats["final_settled"] += 1
            except Exception as e:
                stats["errors"] += 1
                logger.error(f"Final settlement failed for process {process.id} (GSRN {process.gsrn}): {e}")

        logger.info(f"Settlement sweep completed: {stats}")
        return stats

    def calculate_period(
        self,
        contract: ContractTerms,
        metering_point: MeteringPointInfo,
        period_start: date,
        period_end: date,
    ) -> SettlementResult:
        """Load inputs and settle one period without storing the result."""
        gsrn = metering_point.gsrn
        data = self.reference.load_settlement_input(
            gsrn, metering_point.grid_area_code, metering_point.price_area, period_start, period_end
        )

        request = SettlementRequest(
            metering_point_id=gsrn,
            period_start=period_start,
            period_end=period_end,
            consumption=data.consumption,
            spot_prices=data.spot_prices,
            grid_tariff_rates=data.grid_tariff_rates,
            system_tariff_rate=data.system_tariff_rate,
            transmission_tariff_rate=data.transmission_tariff_rate,
            electricity_tax_rate=data.electricity_tax_rate,
            grid_subscription_per_month=data.grid_subscription_per_month,
            margin_per_kwh=contract.margin_per_kwh,
            supplement_per_kwh=contract.supplement_per_kwh,
            supplier_subscription_per_month=contract.supplier_subscription_per_month,
        )

        change = data.grid_tariff_change
        if change is not None:
            logger.info(f"GSRN {gsrn}: grid tariff changes on {change.split_date}, splitting period")
            return self.splitter.calculate_with_tariff_change(request, change.split_date, change.rates)
        return self.calculator.calculate(request)

    def _is_complete(self, gsrn: str, period_start: date, period_end: date) -> bool:
        completeness = check_completeness(
            expected_sample_count(period_start, period_end),
            self.reference.count_readings(gsrn, period_start, period_end),
        )
        if not completeness.is_complete:
            logger.debug(
                f"GSRN {gsrn}: metering incomplete for {period_start} to {period_end} "
                f"({completeness.received_count}/{completeness.expected_count})"
            )
        return completeness.is_complete

    def _settle_period(
        self,
        contract: ContractTerms,
        metering_point: MeteringPointInfo,
        period_start: date,
        period_end: date,
    ) -> bool | None:
        """Settle and store one period, recording a failed run on error.

        Returns:
            True if this call committed the run, False if another worker
            already had, None if settlement failed
        """
        gsrn = metering_point.gsrn
        try:
            result = self.calculate_period(contract, metering_point, period_start, period_end)
            run_id = self.store.store(gsrn, metering_point.grid_area_code, result, contract.billing_frequency)
        except Exception as e:
            logger.error(f"Settlement failed for GSRN {gsrn}: {period_start} to {period_end}: {e}")
            try:
                self.store.store_failed(
                    gsrn,
                    metering_point.grid_area_code,
                    period_start,
                    period_end,
                    str(e),
                    contract.billing_frequency,
                )
            except Exception as store_error:
                logger.error(f"GSRN {gsrn}: could not record failed run: {store_error}")
            return None

        if run_id is None:
            logger.info(f"GSRN {gsrn}: {period_start} to {period_end} was settled by another worker")
            return False

        logger.info(
            f"Settlement completed for GSRN {gsrn}: {period_start} to {period_end}, total {result.total} DKK"
        )
        return True


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()
