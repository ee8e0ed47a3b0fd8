"""
Domain Aggregates for the OKR Progress & Pace Analytics Engine.

Objectives, Key Results and Big Rocks are the tracked entities; Check-Ins are
the append-only record of their progress changes. The engine reads these as
snapshots and hands back updated copies; it never mutates an instance in
place.
"""

from datetime import datetime
from typing import Optional, List
from uuid import uuid4
from pydantic import BaseModel, Field
from enum import Enum

from .timeutil import utc_now


def new_id() -> str:
    """Generate a new entity identifier."""
    return str(uuid4())


# =============================================================================
# ENUMERATIONS
# =============================================================================

class EntityType(str, Enum):
    """Entities that accept check-ins."""
    OBJECTIVE = "objective"
    KEY_RESULT = "key_result"
    BIG_ROCK = "big_rock"


class ProgressMode(str, Enum):
    """How an Objective's progress is determined."""
    ROLLUP = "rollup"  # Weighted average of its Key Results
    MANUAL = "manual"  # Set directly by check-ins or edits


class MetricType(str, Enum):
    """How a Key Result measures its value against the target."""
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"
    COMPLETE = "complete"


DEFAULT_KEY_RESULT_WEIGHT = 25.0


# =============================================================================
# OBJECTIVE AGGREGATE
# =============================================================================

class Objective(BaseModel):
    """
    Objective Aggregate Root.

    A goal whose progress is either rolled up from its Key Results or set
    manually. Objectives may nest through ``parent_id``.

    Invariants:
    - progress is an integer percentage in [0, 100]
    - quarter 0 (or None) denotes an annual objective
    - version increases by one on every persisted write
    """

    # Identity
    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(default="default")

    # Descriptive
    title: str = Field(description="Objective title")
    description: Optional[str] = Field(default=None)
    parent_id: Optional[str] = Field(default=None, description="Parent objective, if nested")

    # Progress
    progress_mode: ProgressMode = Field(default=ProgressMode.ROLLUP)
    progress: int = Field(default=0, ge=0, le=100)
    status: str = Field(default="not_started")
    status_override: bool = Field(default=False, description="Status was set explicitly")

    # Time period
    quarter: Optional[int] = Field(default=None, ge=0, le=4)
    year: Optional[int] = Field(default=None)
    start_date: Optional[datetime] = Field(default=None, description="Explicit period start")
    end_date: Optional[datetime] = Field(default=None, description="Explicit period end")

    # Last check-in
    last_check_in_at: Optional[datetime] = Field(default=None)
    last_check_in_note: Optional[str] = Field(default=None)

    # Metadata
    version: int = Field(default=1, description="Optimistic locking version")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_rollup(self) -> bool:
        return self.progress_mode == ProgressMode.ROLLUP

    @property
    def is_annual(self) -> bool:
        return not self.quarter


# =============================================================================
# KEY RESULT
# =============================================================================

class KeyResult(BaseModel):
    """
    A measurable sub-target of exactly one Objective.

    ``weight`` is the share (0-100) this Key Result contributes to the
    Objective's rollup. None means unset; the rollup then applies the
    default of 25. Weights are stored as given and clamped by the ledger.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(default="default")
    objective_id: str = Field(description="Owning objective")

    title: str = Field(description="Key result title")
    description: Optional[str] = Field(default=None)

    # Metric tracking
    metric_type: MetricType = Field(default=MetricType.INCREASE)
    initial_value: float = Field(default=0.0)
    current_value: float = Field(default=0.0)
    target_value: float = Field(default=100.0)
    unit: Optional[str] = Field(default=None)

    # Progress and weight
    progress: int = Field(default=0, ge=0, le=100)
    weight: Optional[float] = Field(default=DEFAULT_KEY_RESULT_WEIGHT)
    is_weight_locked: bool = Field(default=False)

    status: str = Field(default="not_started")
    is_promoted_to_kpi: bool = Field(default=False)

    last_check_in_at: Optional[datetime] = Field(default=None)
    last_check_in_note: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# BIG ROCK
# =============================================================================

class BigRock(BaseModel):
    """A major initiative tracked independently of the weighted rollup."""

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(default="default")
    title: str

    objective_id: Optional[str] = Field(default=None)
    key_result_id: Optional[str] = Field(default=None)

    completion_percentage: int = Field(default=0, ge=0, le=100)
    status: str = Field(default="not_started")

    quarter: Optional[int] = Field(default=None, ge=0, le=4)
    year: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def progress(self) -> int:
        return self.completion_percentage


# =============================================================================
# CHECK-IN
# =============================================================================

class CheckIn(BaseModel):
    """
    Immutable record of a progress change to one entity.

    ``as_of_date`` is the date the update reflects and orders the trajectory;
    ``created_at`` is when it was recorded. Corrections set ``updated_at``.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(default="default")

    entity_type: EntityType
    entity_id: str

    # Progress update
    previous_progress: Optional[int] = Field(default=None, ge=0, le=100)
    new_progress: int = Field(ge=0, le=100)
    previous_value: Optional[float] = Field(default=None)
    new_value: Optional[float] = Field(default=None)

    # Status update
    previous_status: Optional[str] = Field(default=None)
    new_status: Optional[str] = Field(default=None)

    # Context (opaque to the engine)
    note: Optional[str] = Field(default=None)
    achievements: List[str] = Field(default_factory=list)
    challenges: List[str] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)

    source: str = Field(default="manual")
    user_id: Optional[str] = Field(default=None)
    user_email: Optional[str] = Field(default=None)

    as_of_date: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = Field(default=None)

    @property
    def progress_delta(self) -> int:
        """Movement recorded by this check-in alone."""
        return self.new_progress - (self.previous_progress or 0)
