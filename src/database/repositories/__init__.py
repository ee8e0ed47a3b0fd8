"""Repository implementations for OKR storage."""

from .objective_repository import ObjectiveRepository
from .key_result_repository import KeyResultRepository
from .big_rock_repository import BigRockRepository
from .check_in_repository import CheckInRepository

__all__ = [
    "ObjectiveRepository",
    "KeyResultRepository",
    "BigRockRepository",
    "CheckInRepository",
]
