"""
Domain Value Objects for the OKR Progress & Pace Analytics Engine.

Value objects are immutable objects that describe characteristics of a thing,
but have no conceptual identity. They are defined by their attributes.
"""

from datetime import datetime
from typing import Optional, List, Any
from pydantic import BaseModel, Field, ConfigDict, model_validator
from enum import Enum

from .aggregates import CheckIn, EntityType, DEFAULT_KEY_RESULT_WEIGHT


# =============================================================================
# WEIGHT LEDGER
# =============================================================================

class BalanceStrategy(str, Enum):
    """How auto-balance splits the free budget among unlocked items."""
    PROPORTIONAL = "proportional"  # Keep the unlocked items' relative shares
    EQUAL = "equal"  # Split evenly regardless of current weights


class WeightPolicy(BaseModel):
    """Configuration consumed by the weight ledger."""
    model_config = ConfigDict(frozen=True)

    tolerance: float = Field(default=0.1, ge=0, description="Allowed |total - 100|")
    default_weight: float = Field(default=DEFAULT_KEY_RESULT_WEIGHT, ge=0, le=100)
    precision: int = Field(default=2, ge=0, le=6, description="Decimal places kept")
    balance_strategy: BalanceStrategy = Field(default=BalanceStrategy.PROPORTIONAL)
    absorb_rounding_residual: bool = Field(
        default=True,
        description="Push the rounding remainder onto the largest adjustable item"
    )


class WeightedItem(BaseModel):
    """Minimal weighted item: anything with an id, a weight and a lock flag."""
    model_config = ConfigDict(frozen=True)

    id: str
    weight: Optional[float] = Field(default=DEFAULT_KEY_RESULT_WEIGHT)
    is_weight_locked: bool = Field(default=False)


class WeightValidation(BaseModel):
    """Outcome of validating a weight distribution."""
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    message: str
    total: float


class WeightAdjustment(BaseModel):
    """Suggested change to a single item's weight."""
    model_config = ConfigDict(frozen=True)

    item_id: str
    current_weight: float
    suggested_weight: float
    adjustment: float


# =============================================================================
# PACE & RISK
# =============================================================================

class PaceStatus(str, Enum):
    """Actual progress compared with the progress expected from elapsed time."""
    AHEAD = "ahead"
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BEHIND = "behind"


class RiskSignal(str, Enum):
    """Secondary flag, independent of the pace status."""
    NONE = "none"
    STALLED = "stalled"  # No forward movement across the last two check-ins
    ATTENTION_NEEDED = "attention_needed"  # No recent check-in


class PaceThresholds(BaseModel):
    """
    Tunable thresholds for the pace classifier.

    Gaps are measured in percentage points between actual and expected
    progress. The defaults are tuned for quarterly cadences.
    """
    model_config = ConfigDict(frozen=True)

    ahead_threshold: float = Field(default=15.0, ge=0)
    at_risk_threshold: float = Field(default=15.0, ge=0)
    behind_threshold: float = Field(default=35.0, ge=0)
    staleness_days: int = Field(default=14, ge=0)
    completion_progress: int = Field(default=100, ge=0, le=100)
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12)

    @model_validator(mode="after")
    def _check_ordering(self) -> "PaceThresholds":
        if self.behind_threshold < self.at_risk_threshold:
            raise ValueError("behind_threshold must be >= at_risk_threshold")
        return self


class PacePeriod(BaseModel):
    """Concrete half-open period ``[start, end)``."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def total_seconds(self) -> float:
        return (self.end - self.start).total_seconds()


class TrajectoryPoint(BaseModel):
    """One usable point of a check-in trajectory."""
    model_config = ConfigDict(frozen=True)

    as_of_date: datetime
    previous_progress: Optional[float] = None
    new_progress: float


class PaceMetrics(BaseModel):
    """Result of classifying one entity."""
    model_config = ConfigDict(frozen=True)

    status: PaceStatus
    risk_signal: RiskSignal
    days_since_last_check_in: Optional[int]
    projected_end_progress: float

    expected_progress: float
    actual_progress: float
    gap: float
    elapsed_fraction: float
    velocity: Optional[float] = Field(default=None, description="Trend in points per day")
    check_in_count: int = 0
    is_period_ended: bool = False
    period_start: datetime
    period_end: datetime


# =============================================================================
# CHECK-IN LOG
# =============================================================================

class CheckInRequest(BaseModel):
    """
    Caller-supplied check-in.

    Ranges and dates are validated by the check-in service so that every
    rejection is reported as an InvalidInputError before any write.
    """

    tenant_id: str = Field(default="default")
    entity_type: Any
    entity_id: str

    new_progress: Optional[float] = None
    previous_progress: Optional[float] = None
    new_value: Optional[float] = None
    previous_value: Optional[float] = None
    new_status: Optional[str] = None

    note: Optional[str] = None
    achievements: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)

    source: str = Field(default="manual")
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    as_of_date: Any = None


class CheckInCorrection(BaseModel):
    """Fields of an existing check-in to correct; None leaves a field as is."""

    new_progress: Optional[float] = None
    previous_progress: Optional[float] = None
    new_value: Optional[float] = None
    new_status: Optional[str] = None
    note: Optional[str] = None
    achievements: Optional[List[str]] = None
    challenges: Optional[List[str]] = None
    next_steps: Optional[List[str]] = None
    as_of_date: Any = None


class CheckInResult(BaseModel):
    """Snapshot returned after a check-in is recorded or corrected."""

    check_in: CheckIn
    entity_type: EntityType
    entity: Any
    cascaded: bool = False
    objective_id: Optional[str] = None
    objective_progress: Optional[int] = None
