"""
Domain layer for the OKR Progress & Pace Analytics Engine.

This module contains the core domain models, aggregates, value objects,
events, errors and repository interfaces following Domain-Driven Design
principles.
"""

from .aggregates import (
    Objective,
    KeyResult,
    BigRock,
    CheckIn,
    EntityType,
    ProgressMode,
    MetricType,
    DEFAULT_KEY_RESULT_WEIGHT,
)
from .value_objects import (
    BalanceStrategy,
    WeightPolicy,
    WeightedItem,
    WeightValidation,
    WeightAdjustment,
    PaceStatus,
    RiskSignal,
    PaceThresholds,
    PacePeriod,
    TrajectoryPoint,
    PaceMetrics,
    CheckInRequest,
    CheckInCorrection,
    CheckInResult,
)
from .events import (
    DomainEvent,
    EventType,
    CheckInRecorded,
    CheckInCorrected,
    ObjectiveProgressRecalculated,
    KeyResultWeightsChanged,
)
from .exceptions import (
    OKREngineError,
    InvalidInputError,
    NotFoundError,
    InconsistentStateError,
    ConcurrentUpdateError,
)
from .repositories import (
    IObjectiveRepository,
    IKeyResultRepository,
    IBigRockRepository,
    ICheckInRepository,
    IUnitOfWork,
)
from .event_bus import (
    EventBus,
    LoggingEventHandler,
    get_event_bus,
    reset_event_bus,
    publish_event,
    publish_event_async,
)

__all__ = [
    # Aggregates
    "Objective",
    "KeyResult",
    "BigRock",
    "CheckIn",
    "EntityType",
    "ProgressMode",
    "MetricType",
    "DEFAULT_KEY_RESULT_WEIGHT",
    # Value Objects
    "BalanceStrategy",
    "WeightPolicy",
    "WeightedItem",
    "WeightValidation",
    "WeightAdjustment",
    "PaceStatus",
    "RiskSignal",
    "PaceThresholds",
    "PacePeriod",
    "TrajectoryPoint",
    "PaceMetrics",
    "CheckInRequest",
    "CheckInCorrection",
    "CheckInResult",
    # Events
    "DomainEvent",
    "EventType",
    "CheckInRecorded",
    "CheckInCorrected",
    "ObjectiveProgressRecalculated",
    "KeyResultWeightsChanged",
    # Errors
    "OKREngineError",
    "InvalidInputError",
    "NotFoundError",
    "InconsistentStateError",
    "ConcurrentUpdateError",
    # Repositories
    "IObjectiveRepository",
    "IKeyResultRepository",
    "IBigRockRepository",
    "ICheckInRepository",
    "IUnitOfWork",
    # Event Bus
    "EventBus",
    "LoggingEventHandler",
    "get_event_bus",
    "reset_event_bus",
    "publish_event",
    "publish_event_async",
]
