"""In-memory persistence backend.

Implements the repository and Unit of Work interfaces over plain dicts so
the engine can be embedded or tested without a database. Writes are
buffered per unit of work and applied atomically on commit; Objective
versions are checked both when saving and again at commit time, so two
units of work racing on the same Objective behave like two database
transactions would.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from domain.aggregates import BigRock, CheckIn, EntityType, KeyResult, Objective
from domain.events import DomainEvent
from domain.exceptions import ConcurrentUpdateError, NotFoundError
from domain.repositories import (
    IBigRockRepository,
    ICheckInRepository,
    IKeyResultRepository,
    IObjectiveRepository,
    IUnitOfWork,
)

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Committed state shared by every unit of work created from it."""

    def __init__(self):
        self.objectives: Dict[str, Objective] = {}
        self.key_results: Dict[str, KeyResult] = {}
        self.big_rocks: Dict[str, BigRock] = {}
        self.check_ins: Dict[str, CheckIn] = {}
        self.lock = threading.Lock()

    def unit_of_work(self, publish_events: bool = True) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self, publish_events=publish_events)

    def factory(self, publish_events: bool = True):
        """Zero-argument unit of work factory for services."""
        return lambda: self.unit_of_work(publish_events=publish_events)

    # Direct seeding helpers; these bypass version checks
    def add_objective(self, objective: Objective) -> Objective:
        self.objectives[objective.id] = objective.model_copy(deep=True)
        return objective

    def add_key_result(self, key_result: KeyResult) -> KeyResult:
        self.key_results[key_result.id] = key_result.model_copy(deep=True)
        return key_result

    def add_big_rock(self, big_rock: BigRock) -> BigRock:
        self.big_rocks[big_rock.id] = big_rock.model_copy(deep=True)
        return big_rock

    def add_check_in(self, check_in: CheckIn) -> CheckIn:
        self.check_ins[check_in.id] = check_in.model_copy(deep=True)
        return check_in


class _Buffer:
    """Uncommitted writes of one unit of work."""

    def __init__(self):
        self.objectives: Dict[str, Objective] = {}
        self.key_results: Dict[str, KeyResult] = {}
        self.big_rocks: Dict[str, BigRock] = {}
        self.check_ins: Dict[str, CheckIn] = {}
        # objective id -> version the stored row must still have at commit (None = insert)
        self.expected_versions: Dict[str, Optional[int]] = {}

    def clear(self) -> None:
        self.__init__()


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class InMemoryObjectiveRepository(IObjectiveRepository):

    def __init__(self, store: InMemoryStore, buffer: _Buffer):
        self._store = store
        self._buffer = buffer

    async def get(self, objective_id: str) -> Optional[Objective]:
        if objective_id in self._buffer.objectives:
            return _copy(self._buffer.objectives[objective_id])
        return _copy(self._store.objectives.get(objective_id))

    async def save(self, objective: Objective) -> Objective:
        current = self._buffer.objectives.get(objective.id) or self._store.objectives.get(objective.id)

        if current is None:
            self._buffer.expected_versions.setdefault(objective.id, None)
            self._buffer.objectives[objective.id] = _copy(objective)
            return objective

        if current.version != objective.version:
            raise ConcurrentUpdateError("objective", objective.id, objective.version)

        if objective.id not in self._buffer.expected_versions:
            stored = self._store.objectives.get(objective.id)
            self._buffer.expected_versions[objective.id] = stored.version if stored else None

        saved = objective.model_copy(update={"version": objective.version + 1}, deep=True)
        self._buffer.objectives[objective.id] = saved
        return _copy(saved)

    async def list_children(self, parent_id: str) -> List[Objective]:
        return sorted(
            (o for o in self._merged().values() if o.parent_id == parent_id),
            key=lambda o: (o.title, o.id),
        )

    async def list_by_period(
        self,
        tenant_id: str,
        quarter: Optional[int] = None,
        year: Optional[int] = None
    ) -> List[Objective]:
        def matches(o: Objective) -> bool:
            if o.tenant_id != tenant_id:
                return False
            if quarter is not None and (o.quarter or 0) != quarter:
                return False
            if year is not None and o.year != year:
                return False
            return True

        return sorted(
            (o for o in self._merged().values() if matches(o)),
            key=lambda o: (o.title, o.id),
        )

    def _merged(self) -> Dict[str, Objective]:
        merged = {k: _copy(v) for k, v in self._store.objectives.items()}
        merged.update({k: _copy(v) for k, v in self._buffer.objectives.items()})
        return merged


class InMemoryKeyResultRepository(IKeyResultRepository):

    def __init__(self, store: InMemoryStore, buffer: _Buffer):
        self._store = store
        self._buffer = buffer

    async def get(self, key_result_id: str) -> Optional[KeyResult]:
        if key_result_id in self._buffer.key_results:
            return _copy(self._buffer.key_results[key_result_id])
        return _copy(self._store.key_results.get(key_result_id))

    async def save(self, key_result: KeyResult) -> KeyResult:
        self._buffer.key_results[key_result.id] = _copy(key_result)
        return key_result

    async def save_many(self, key_results: List[KeyResult]) -> List[KeyResult]:
        return [await self.save(kr) for kr in key_results]

    async def list_by_objective(self, objective_id: str) -> List[KeyResult]:
        merged = dict(self._store.key_results)
        merged.update(self._buffer.key_results)
        return [
            _copy(kr) for kr in sorted(
                (kr for kr in merged.values() if kr.objective_id == objective_id),
                key=lambda kr: (kr.created_at, kr.id),
            )
        ]


class InMemoryBigRockRepository(IBigRockRepository):

    def __init__(self, store: InMemoryStore, buffer: _Buffer):
        self._store = store
        self._buffer = buffer

    async def get(self, big_rock_id: str) -> Optional[BigRock]:
        if big_rock_id in self._buffer.big_rocks:
            return _copy(self._buffer.big_rocks[big_rock_id])
        return _copy(self._store.big_rocks.get(big_rock_id))

    async def save(self, big_rock: BigRock) -> BigRock:
        self._buffer.big_rocks[big_rock.id] = _copy(big_rock)
        return big_rock

    async def list_by_objective(self, objective_id: str) -> List[BigRock]:
        merged = dict(self._store.big_rocks)
        merged.update(self._buffer.big_rocks)
        return [
            _copy(br) for br in sorted(
                (br for br in merged.values() if br.objective_id == objective_id),
                key=lambda br: br.created_at,
            )
        ]


class InMemoryCheckInRepository(ICheckInRepository):

    def __init__(self, store: InMemoryStore, buffer: _Buffer):
        self._store = store
        self._buffer = buffer

    async def get(self, check_in_id: str) -> Optional[CheckIn]:
        if check_in_id in self._buffer.check_ins:
            return _copy(self._buffer.check_ins[check_in_id])
        return _copy(self._store.check_ins.get(check_in_id))

    async def append(self, check_in: CheckIn) -> CheckIn:
        self._buffer.check_ins[check_in.id] = _copy(check_in)
        return check_in

    async def amend(self, check_in: CheckIn) -> CheckIn:
        if check_in.id not in self._store.check_ins and check_in.id not in self._buffer.check_ins:
            raise NotFoundError("check_in", check_in.id)
        self._buffer.check_ins[check_in.id] = _copy(check_in)
        return check_in

    async def list_for_entity(self, entity_type: EntityType, entity_id: str) -> List[CheckIn]:
        entity_type = EntityType(entity_type)
        # dict order is append order; sorted() keeps it for equal keys
        merged = dict(self._store.check_ins)
        merged.update(self._buffer.check_ins)
        trajectory = [
            c for c in merged.values()
            if c.entity_type == entity_type and c.entity_id == entity_id
        ]
        trajectory.sort(key=lambda c: (c.as_of_date, c.created_at))
        return [_copy(c) for c in trajectory]


class InMemoryUnitOfWork(IUnitOfWork):
    """
    Unit of Work over an InMemoryStore.

    Same contract as the SQL UnitOfWork: commit on clean exit, rollback on
    exception, publish collected events after commit.
    """

    def __init__(self, store: InMemoryStore, publish_events: bool = True):
        self._store = store
        self._buffer = _Buffer()
        self._publish = publish_events
        self._committed = False
        self._pending_events: List[DomainEvent] = []

        self._objectives = InMemoryObjectiveRepository(store, self._buffer)
        self._key_results = InMemoryKeyResultRepository(store, self._buffer)
        self._big_rocks = InMemoryBigRockRepository(store, self._buffer)
        self._check_ins = InMemoryCheckInRepository(store, self._buffer)

    @property
    def objectives(self) -> IObjectiveRepository:
        return self._objectives

    @property
    def key_results(self) -> IKeyResultRepository:
        return self._key_results

    @property
    def big_rocks(self) -> IBigRockRepository:
        return self._big_rocks

    @property
    def check_ins(self) -> ICheckInRepository:
        return self._check_ins

    @property
    def pending_events(self) -> List[DomainEvent]:
        return list(self._pending_events)

    def collect_event(self, event: DomainEvent) -> None:
        self._pending_events.append(event)

    async def commit(self) -> None:
        """
        Apply buffered writes atomically.

        Raises:
            ConcurrentUpdateError: If a saved Objective changed in the store
                since this unit of work read it; nothing is applied
        """
        if self._committed:
            return

        buffer = self._buffer
        with self._store.lock:
            for objective_id, expected in buffer.expected_versions.items():
                stored = self._store.objectives.get(objective_id)
                stored_version = stored.version if stored else None
                if stored_version != expected:
                    raise ConcurrentUpdateError("objective", objective_id, expected or 0)

            self._store.objectives.update(buffer.objectives)
            self._store.key_results.update(buffer.key_results)
            self._store.big_rocks.update(buffer.big_rocks)
            self._store.check_ins.update(buffer.check_ins)

        buffer.clear()
        self._committed = True
        logger.debug("InMemoryUnitOfWork committed")

        events, self._pending_events = self._pending_events, []
        if self._publish and events:
            from domain.event_bus import publish_event_async

            for event in events:
                try:
                    await publish_event_async(event)
                except Exception as e:
                    logger.error(f"Failed to publish event {event.__class__.__name__}: {e}")

    async def rollback(self) -> None:
        self._buffer.clear()
        self._pending_events.clear()
        logger.debug("InMemoryUnitOfWork rolled back")

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            await self.rollback()
            return
        if not self._committed:
            try:
                await self.commit()
            except ConcurrentUpdateError:
                await self.rollback()
                raise
