"""Correction workflow for already-settled periods."""

import logging
from datetime import date

from dk_settlement.engine.correction import CorrectionCalculator
from dk_settlement.errors import NoMeteringChangesError, SettlementError
from dk_settlement.models.settlement import CorrectionBatch, CorrectionRequest
from dk_settlement.storage.base import ReferenceDataSource, SettlementStore

logger = logging.getLogger(__name__)


class CorrectionService:
    """Prices revised metering data and stores the differences.

    Example:
        service = CorrectionService(reference, store)
        batch = service.trigger_correction(gsrn, date(2025, 1, 1), date(2025, 2, 1), note="DataHub resend")
    """

    def __init__(
        self,
        reference: ReferenceDataSource,
        store: SettlementStore,
        calculator: CorrectionCalculator | None = None,
    ):
        self.reference = reference
        self.store = store
        self.calculator = calculator or CorrectionCalculator()

    def trigger_correction(
        self,
        gsrn: str,
        period_start: date,
        period_end: date,
        note: str | None = None,
        trigger_type: str = "manual",
    ) -> CorrectionBatch:
        """Calculate and persist a correction for [period_start, period_end).

        Raises:
            NoMeteringChangesError: If no readings were revised in the period
            SettlementError: If the contract or metering point is unknown
            MissingRateError: If a mandatory rate is absent for the period
        """
        deltas = self.reference.get_metering_changes(gsrn, period_start, period_end)
        if not deltas:
            raise NoMeteringChangesError(
                f"No metering data changes found for GSRN {gsrn} in {period_start} to {period_end}"
            )

        contract = self.reference.get_contract(gsrn)
        if contract is None:
            raise SettlementError(f"No active contract found for GSRN {gsrn}")

        metering_point = self.reference.get_metering_point(gsrn)
        if metering_point is None:
            raise SettlementError(f"Metering point {gsrn} not found")

        data = self.reference.load_settlement_input(
            gsrn,
            metering_point.grid_area_code,
            metering_point.price_area,
            period_start,
            period_end,
            include_consumption=False,
        )

        result = self.calculator.calculate(
            CorrectionRequest(
                metering_point_id=gsrn,
                period_start=period_start,
                period_end=period_end,
                deltas=deltas,
                spot_prices=data.spot_prices,
                grid_tariff_rates=data.grid_tariff_rates,
                system_tariff_rate=data.system_tariff_rate,
                transmission_tariff_rate=data.transmission_tariff_rate,
                electricity_tax_rate=data.electricity_tax_rate,
                margin_per_kwh=contract.margin_per_kwh,
                supplement_per_kwh=contract.supplement_per_kwh,
            )
        )

        original = self.store.get_latest_completed_run(gsrn, period_start, period_end)
        if original is None:
            logger.warning(f"GSRN {gsrn}: no completed run for {period_start} to {period_end}, storing unlinked")
        original_run_id = original.id if original else None

        batch_id = self.store.store_correction(result, original_run_id, trigger_type=trigger_type, note=note)
        logger.info(
            f"Correction for GSRN {gsrn} {period_start} to {period_end}: "
            f"{result.total_delta_kwh} kWh, total {result.total} DKK"
        )
        return CorrectionBatch(
            batch_id=batch_id,
            original_run_id=original_run_id,
            trigger_type=trigger_type,
            note=note,
            result=result,
        )
