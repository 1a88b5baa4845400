"""Data models for settlement."""

from dk_settlement.models.metering import (
    ConsumptionDelta,
    ConsumptionSample,
    MeteringCompleteness,
    PriceSample,
    TariffRate,
)
from dk_settlement.models.portfolio import ContractTerms, MeteringPointInfo, SupplyPeriod
from dk_settlement.models.process import ProcessEvent, ProcessRecord, ProcessStatus
from dk_settlement.models.settlement import (
    BillingFrequency,
    ChargeType,
    CorrectionBatch,
    CorrectionRequest,
    CorrectionResult,
    GridTariffChange,
    RunStatus,
    SettlementInput,
    SettlementLine,
    SettlementRequest,
    SettlementResult,
    SettlementRun,
    StoredSettlementLine,
)

__all__ = [
    "BillingFrequency",
    "ChargeType",
    "ConsumptionDelta",
    "ConsumptionSample",
    "ContractTerms",
    "CorrectionBatch",
    "CorrectionRequest",
    "CorrectionResult",
    "GridTariffChange",
    "MeteringCompleteness",
    "MeteringPointInfo",
    "PriceSample",
    "ProcessEvent",
    "ProcessRecord",
    "ProcessStatus",
    "RunStatus",
    "SettlementInput",
    "SettlementLine",
    "SettlementRequest",
    "SettlementResult",
    "SettlementRun",
    "StoredSettlementLine",
    "SupplyPeriod",
    "TariffRate",
]
