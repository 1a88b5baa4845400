"""Pure settlement calculations."""

from dk_settlement.engine.completeness import check_completeness, expected_sample_count
from dk_settlement.engine.correction import CorrectionCalculator
from dk_settlement.engine.periods import get_first_period_end
from dk_settlement.engine.settlement import SettlementCalculator
from dk_settlement.engine.splitter import PeriodSplitter
from dk_settlement.engine.vat import VAT_RATE, allocate_vat

__all__ = [
    "VAT_RATE",
    "CorrectionCalculator",
    "PeriodSplitter",
    "SettlementCalculator",
    "allocate_vat",
    "check_completeness",
    "expected_sample_count",
    "get_first_period_end",
]
