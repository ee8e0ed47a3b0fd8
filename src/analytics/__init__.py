"""
Progress & pace analytics.

Pure, deterministic computations over entity snapshots:

- weight_ledger: validate and rebalance Key Result weights
- rollup: weighted Objective progress and Key Result metric progress
- periods: quarter / fiscal year date ranges
- pace: pace status, risk signal and projection from a check-in trajectory
- health_report: bulk summary of pace classifications
"""

from .weight_ledger import (
    WeightLedger,
    total_weight,
    validate_weights,
    auto_balance,
    normalize_weights,
    suggest_adjustments,
)
from .rollup import (
    RollupCalculator,
    compute_progress,
    key_result_progress,
    rollup_hierarchy,
)
from .periods import (
    quarter_date_range,
    year_date_range,
    current_quarter,
    resolve_period,
    elapsed_fraction,
)
from .pace import (
    PaceClassifier,
    classify_pace,
    describe_pace,
    to_trajectory,
)
from .health_report import HealthEntry, HealthSummary, TeamHealthReport

__all__ = [
    "WeightLedger",
    "total_weight",
    "validate_weights",
    "auto_balance",
    "normalize_weights",
    "suggest_adjustments",
    "RollupCalculator",
    "compute_progress",
    "key_result_progress",
    "rollup_hierarchy",
    "quarter_date_range",
    "year_date_range",
    "current_quarter",
    "resolve_period",
    "elapsed_fraction",
    "PaceClassifier",
    "classify_pace",
    "describe_pace",
    "to_trajectory",
    "HealthEntry",
    "HealthSummary",
    "TeamHealthReport",
]
