"""
Domain errors for the OKR analytics engine.

Only conditions a caller can act on are raised. Steady states such as an
Objective without Key Results or an all-zero weight set resolve to fallback
values inside the engine and never surface here.
"""

from typing import Any, Optional


class OKREngineError(Exception):
    """Base class for all engine errors."""
    pass


class InvalidInputError(OKREngineError):
    """Raised when a value is out of range or cannot be parsed.

    Always raised before any mutation takes place.
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class NotFoundError(OKREngineError):
    """Raised when a referenced entity or check-in does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} not found: {entity_id}")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InconsistentStateError(OKREngineError):
    """Raised when stored data cannot be interpreted, e.g. a cyclic hierarchy."""
    pass


class ConcurrentUpdateError(OKREngineError):
    """Raised when an optimistic version check fails on write."""

    def __init__(self, entity_type: str, entity_id: str, expected_version: int):
        super().__init__(
            f"{entity_type} {entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
