"""Unit of Work Pattern Implementation.

Coordinates multiple repository operations as a single transaction.
Provides transactional guarantees across aggregate boundaries: a check-in,
the entity snapshot it writes and the parent Objective's recomputed
progress commit together or not at all.
"""

from __future__ import annotations

import logging
from typing import Optional, List
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from domain.repositories import (
    IUnitOfWork,
    IObjectiveRepository,
    IKeyResultRepository,
    IBigRockRepository,
    ICheckInRepository,
)
from domain.events import DomainEvent
from database.async_engine import get_async_session_factory
from database.repositories import (
    ObjectiveRepository,
    KeyResultRepository,
    BigRockRepository,
    CheckInRepository,
)

logger = logging.getLogger(__name__)


class UnitOfWork(IUnitOfWork):
    """
    Unit of Work implementation using SQLAlchemy async sessions.

    Usage:
        async with UnitOfWork() as uow:
            key_result = await uow.key_results.get(kr_id)
            await uow.check_ins.append(check_in)
            # Auto-commits on clean exit

    The context manager automatically handles:
    - Creating a database session
    - Committing on clean exit
    - Rolling back on exception
    - Closing the session
    - Publishing collected domain events after commit
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        publish_events: bool = True,
    ):
        """
        Args:
            session: Optional existing session. If None, creates a new one.
            session_factory: Factory used when no session is given.
            publish_events: Publish collected events on the event bus after commit.
        """
        self._session: Optional[AsyncSession] = session
        self._session_factory = session_factory
        self._owns_session: bool = session is None
        self._committed: bool = False
        self._publish = publish_events

        # Lazy-initialized repositories
        self._objectives: Optional[ObjectiveRepository] = None
        self._key_results: Optional[KeyResultRepository] = None
        self._big_rocks: Optional[BigRockRepository] = None
        self._check_ins: Optional[CheckInRepository] = None

        # Collected domain events
        self._pending_events: List[DomainEvent] = []

    @property
    def session(self) -> AsyncSession:
        """Get the underlying session."""
        if self._session is None:
            raise RuntimeError("UnitOfWork not initialized. Use 'async with' context.")
        return self._session

    @property
    def objectives(self) -> IObjectiveRepository:
        if self._objectives is None:
            self._objectives = ObjectiveRepository(self.session)
        return self._objectives

    @property
    def key_results(self) -> IKeyResultRepository:
        if self._key_results is None:
            self._key_results = KeyResultRepository(self.session)
        return self._key_results

    @property
    def big_rocks(self) -> IBigRockRepository:
        if self._big_rocks is None:
            self._big_rocks = BigRockRepository(self.session)
        return self._big_rocks

    @property
    def check_ins(self) -> ICheckInRepository:
        if self._check_ins is None:
            self._check_ins = CheckInRepository(self.session)
        return self._check_ins

    @property
    def pending_events(self) -> List[DomainEvent]:
        return list(self._pending_events)

    def collect_event(self, event: DomainEvent) -> None:
        """Collect a domain event for publishing after commit."""
        self._pending_events.append(event)

    async def commit(self) -> None:
        """
        Commit all changes.

        After a successful commit, publishes collected domain events.
        """
        if self._committed:
            return

        await self.session.commit()
        self._committed = True
        logger.debug("UnitOfWork committed")

        await self._publish_events()

    async def rollback(self) -> None:
        """Discard all pending changes and collected events."""
        self._pending_events.clear()
        if self._session is None:
            return

        await self._session.rollback()
        logger.debug("UnitOfWork rolled back")

    async def _publish_events(self) -> None:
        """Publish collected domain events."""
        events, self._pending_events = self._pending_events, []
        if not self._publish or not events:
            return

        from domain.event_bus import publish_event_async

        for event in events:
            try:
                await publish_event_async(event)
            except Exception as e:
                logger.error(f"Failed to publish event {event.__class__.__name__}: {e}")

    async def __aenter__(self) -> "UnitOfWork":
        if self._session is None:
            factory = self._session_factory or get_async_session_factory()
            self._session = factory()
            self._owns_session = True

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """
        Exit the async context.

        Commits if no exception, rolls back otherwise.
        Always closes the session if we own it.
        """
        try:
            if exc_type is not None:
                await self.rollback()
                logger.debug(f"UnitOfWork rolled back due to: {exc_type.__name__}")
            elif not self._committed:
                await self.commit()
        finally:
            if self._owns_session and self._session is not None:
                await self._session.close()
                self._session = None


@asynccontextmanager
async def unit_of_work():
    """
    Context manager for creating a unit of work.

    Usage:
        async with unit_of_work() as uow:
            await uow.objectives.save(objective)
            # Auto-commits on clean exit
    """
    async with UnitOfWork() as uow:
        yield uow


class UnitOfWorkFactory:
    """
    Factory for creating unit of work instances.

    Services take a zero-argument callable returning a fresh unit of work;
    an instance of this class is that callable for the SQL backend.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        publish_events: Optional[bool] = None,
    ):
        if publish_events is None:
            from config.settings import get_settings
            publish_events = get_settings().check_ins.publish_events
        self._session_factory = session_factory
        self._publish_events = publish_events

    def create(self) -> UnitOfWork:
        """Create a new unit of work."""
        return UnitOfWork(
            session_factory=self._session_factory,
            publish_events=self._publish_events,
        )

    def __call__(self) -> UnitOfWork:
        return self.create()
