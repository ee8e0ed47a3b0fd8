"""
Domain Events for the OKR Progress & Pace Analytics Engine.

Domain events represent something that happened in the domain that domain
experts care about. They are immutable records of past occurrences.

Events are used for:
1. Audit trails - Who changed which progress value and when
2. Integration - Triggering side effects (notifications, dashboards)
3. Observability - Logging every cascade the check-in log performs
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum

from .timeutil import utc_now


class EventType(str, Enum):
    """Types of domain events."""
    # Check-in events
    CHECK_IN_RECORDED = "check_in.recorded"
    CHECK_IN_CORRECTED = "check_in.corrected"

    # Objective events
    OBJECTIVE_PROGRESS_RECALCULATED = "objective.progress_recalculated"

    # Weight events
    KEY_RESULT_WEIGHTS_CHANGED = "key_result.weights_changed"


class DomainEvent(BaseModel):
    """
    Base class for all domain events.

    All events are immutable and contain:
    - Unique event ID
    - When the event occurred
    - Metadata about context (user, tenant, correlation id, etc.)
    """
    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, description="Event schema version")

    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context (user_id, tenant_id, correlation_id, etc.)"
    )

    aggregate_id: Optional[str] = Field(
        default=None,
        description="ID of the aggregate this event belongs to"
    )
    aggregate_type: Optional[str] = Field(
        default=None,
        description="Type of aggregate (objective, key_result, big_rock)"
    )


# =============================================================================
# CHECK-IN EVENTS
# =============================================================================

class CheckInRecorded(DomainEvent):
    """Event raised when a check-in is appended."""
    event_type: EventType = EventType.CHECK_IN_RECORDED

    check_in_id: str
    entity_type: str
    entity_id: str
    previous_progress: Optional[int] = None
    new_progress: int
    as_of_date: datetime


class CheckInCorrected(DomainEvent):
    """Event raised when an existing check-in is amended."""
    event_type: EventType = EventType.CHECK_IN_CORRECTED

    check_in_id: str
    entity_type: str
    entity_id: str
    changed_fields: Dict[str, Any] = Field(
        default_factory=dict,
        description="Fields that changed and their new values"
    )
    previous_values: Dict[str, Any] = Field(
        default_factory=dict,
        description="Previous values of changed fields"
    )


# =============================================================================
# OBJECTIVE EVENTS
# =============================================================================

class ObjectiveProgressRecalculated(DomainEvent):
    """Event raised when a rollup recomputes an Objective's progress."""
    event_type: EventType = EventType.OBJECTIVE_PROGRESS_RECALCULATED
    aggregate_type: str = "objective"

    objective_id: str
    previous_progress: int
    new_progress: int
    key_result_count: int
    trigger: str = Field(description="check_in, check_in_correction, weights or manual")


class KeyResultWeightsChanged(DomainEvent):
    """Event raised when the ledger rewrites Key Result weights."""
    event_type: EventType = EventType.KEY_RESULT_WEIGHTS_CHANGED
    aggregate_type: str = "objective"

    objective_id: str
    operation: str = Field(description="set_weight, lock, unlock, auto_balance or normalize")
    weights: Dict[str, float] = Field(default_factory=dict)
    locked_ids: List[str] = Field(default_factory=list)
