"""Danish electricity settlement engine.

Settles metering points per billing period: itemised energy, tariff,
tax and subscription charges with 25% VAT, versioned settlement runs,
corrections for revised metering data, and day-ahead spot price
ingestion from Energi Data Service.
"""

__version__ = "0.1.0"

from dk_settlement.corrections import CorrectionService
from dk_settlement.engine import (
    CorrectionCalculator,
    PeriodSplitter,
    SettlementCalculator,
    get_first_period_end,
)
from dk_settlement.orchestrator import SettlementOrchestrator

__all__ = [
    "CorrectionCalculator",
    "CorrectionService",
    "PeriodSplitter",
    "SettlementCalculator",
    "SettlementOrchestrator",
    "get_first_period_end",
]
