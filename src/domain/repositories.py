"""
Repository Interfaces for the OKR Progress & Pace Analytics Engine.

Repository interfaces define the contract for data access, following the
Repository pattern from Domain-Driven Design. Implementations are provided
in the infrastructure layer (``database``).

This abstraction allows:
1. Swapping storage backends (SQLite -> PostgreSQL)
2. Testing with in-memory implementations
3. Clear separation between the pure engine and persistence
"""

from abc import ABC, abstractmethod
from typing import Optional, List

from .aggregates import Objective, KeyResult, BigRock, CheckIn, EntityType
from .events import DomainEvent


class IObjectiveRepository(ABC):
    """
    Objective Repository Interface.

    Writes are versioned: ``save`` succeeds only when the stored version
    still equals ``objective.version`` and returns the copy carrying the
    incremented version.
    """

    @abstractmethod
    async def get(self, objective_id: str) -> Optional[Objective]:
        """Get an objective by ID."""
        pass

    @abstractmethod
    async def save(self, objective: Objective) -> Objective:
        """
        Insert or update an objective.

        Args:
            objective: Objective snapshot, carrying the version it was read at

        Returns:
            The persisted objective with its new version

        Raises:
            ConcurrentUpdateError: If the stored version has moved on
        """
        pass

    @abstractmethod
    async def list_children(self, parent_id: str) -> List[Objective]:
        """Get objectives nested directly under ``parent_id``."""
        pass

    @abstractmethod
    async def list_by_period(
        self,
        tenant_id: str,
        quarter: Optional[int] = None,
        year: Optional[int] = None
    ) -> List[Objective]:
        """
        List a tenant's objectives, optionally filtered by period.

        Args:
            tenant_id: Tenant identifier
            quarter: Filter by quarter (0 for annual objectives)
            year: Filter by year

        Returns:
            Matching objectives ordered by title
        """
        pass


class IKeyResultRepository(ABC):
    """Key Result Repository Interface."""

    @abstractmethod
    async def get(self, key_result_id: str) -> Optional[KeyResult]:
        """Get a key result by ID."""
        pass

    @abstractmethod
    async def save(self, key_result: KeyResult) -> KeyResult:
        """Insert or update a key result."""
        pass

    @abstractmethod
    async def save_many(self, key_results: List[KeyResult]) -> List[KeyResult]:
        """Insert or update several key results in the current transaction."""
        pass

    @abstractmethod
    async def list_by_objective(self, objective_id: str) -> List[KeyResult]:
        """
        Get all key results of an objective.

        Args:
            objective_id: Owning objective

        Returns:
            Key results in creation order
        """
        pass


class IBigRockRepository(ABC):
    """Big Rock Repository Interface."""

    @abstractmethod
    async def get(self, big_rock_id: str) -> Optional[BigRock]:
        """Get a big rock by ID."""
        pass

    @abstractmethod
    async def save(self, big_rock: BigRock) -> BigRock:
        """Insert or update a big rock."""
        pass

    @abstractmethod
    async def list_by_objective(self, objective_id: str) -> List[BigRock]:
        """Get big rocks linked to an objective."""
        pass


class ICheckInRepository(ABC):
    """
    Check-In Repository Interface.

    Check-ins are append-only; ``amend`` exists solely for explicit
    corrections.
    """

    @abstractmethod
    async def get(self, check_in_id: str) -> Optional[CheckIn]:
        """Get a check-in by ID."""
        pass

    @abstractmethod
    async def append(self, check_in: CheckIn) -> CheckIn:
        """Append a new check-in."""
        pass

    @abstractmethod
    async def amend(self, check_in: CheckIn) -> CheckIn:
        """Replace a stored check-in with its corrected version."""
        pass

    @abstractmethod
    async def list_for_entity(
        self,
        entity_type: EntityType,
        entity_id: str
    ) -> List[CheckIn]:
        """
        Get the trajectory of one entity.

        Returns:
            Check-ins ordered by as_of_date, then created_at
        """
        pass


class IUnitOfWork(ABC):
    """
    Unit of Work Interface.

    Coordinates multiple repository operations as a single transaction.
    """

    @property
    @abstractmethod
    def objectives(self) -> IObjectiveRepository:
        """Objective repository."""
        pass

    @property
    @abstractmethod
    def key_results(self) -> IKeyResultRepository:
        """Key result repository."""
        pass

    @property
    @abstractmethod
    def big_rocks(self) -> IBigRockRepository:
        """Big rock repository."""
        pass

    @property
    @abstractmethod
    def check_ins(self) -> ICheckInRepository:
        """Check-in repository."""
        pass

    @abstractmethod
    def collect_event(self, event: DomainEvent) -> None:
        """Queue a domain event for publishing after commit."""
        pass

    @abstractmethod
    async def commit(self) -> None:
        """Commit all changes."""
        pass

    @abstractmethod
    async def rollback(self) -> None:
        """Rollback all changes."""
        pass

    @abstractmethod
    async def __aenter__(self) -> 'IUnitOfWork':
        """Enter async context."""
        pass

    @abstractmethod
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context (commit or rollback)."""
        pass
