"""
Check-In Service - Application service for recording progress.

A check-in is appended to the log, written onto the entity it targets and,
for a Key Result whose Objective is in rollup mode, cascaded into the
Objective's progress. All three writes share one unit of work.

Cascades for one Objective are serialized in-process by ObjectiveLocks;
across processes the Objective's version column catches concurrent writers
and the whole transaction is replayed against fresh data.
"""

import asyncio
import math
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from analytics.rollup import RollupCalculator
from config.settings import Settings, get_settings
from domain.aggregates import BigRock, CheckIn, EntityType, KeyResult, Objective, new_id
from domain.events import CheckInCorrected, CheckInRecorded, ObjectiveProgressRecalculated
from domain.exceptions import ConcurrentUpdateError, InvalidInputError, NotFoundError
from domain.repositories import IUnitOfWork
from domain.timeutil import parse_datetime, utc_now
from domain.value_objects import CheckInCorrection, CheckInRequest, CheckInResult

from analytics.decimal_math import round_half_up
from .logging_config import CascadeLogger, get_logger

logger = get_logger(__name__)

UnitOfWorkFactory = Callable[[], IUnitOfWork]


class ObjectiveLocks:
    """One asyncio.Lock per Objective id, shared by every service that cascades."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, objective_id: str) -> asyncio.Lock:
        lock = self._locks.get(objective_id)
        if lock is None:
            lock = self._locks[objective_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, objective_id: Optional[str]):
        """Serialize on ``objective_id``; no-op for entities outside any Objective."""
        if objective_id is None:
            yield
            return
        async with self.get(objective_id):
            yield


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def parse_entity_type(value: Any) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise InvalidInputError(f"Unknown entity type: {value!r}", "entity_type", value) from None


def parse_progress(value: Any, field: str) -> Optional[int]:
    """Validate a 0-100 progress value, rounding half-up to an integer."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise InvalidInputError(f"{field} must be a number, got {value!r}", field, value)
    if not 0 <= value <= 100:
        raise InvalidInputError(f"{field} must be between 0 and 100, got {value}", field, value)
    return round_half_up(value)


def parse_metric_value(value: Any, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidInputError(f"{field} must be a finite number, got {value!r}", field, value)
    return float(value)


def parse_as_of_date(value: Any, default: datetime) -> datetime:
    if value is None:
        return default
    parsed = parse_datetime(value)
    if parsed is None:
        raise InvalidInputError(f"as_of_date is not a valid date: {value!r}", "as_of_date", value)
    return parsed


class CheckInService:
    """
    Records check-ins and cascades them into Objective progress.

    Usage:
        service = CheckInService(store.factory())
        result = await service.submit_check_in(CheckInRequest(
            entity_type="key_result", entity_id=kr.id, new_progress=60,
        ))
        result.objective_progress  # recomputed parent progress
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        locks: Optional[ObjectiveLocks] = None,
        settings: Optional[Settings] = None,
        calculator: Optional[RollupCalculator] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings()
        self._uow_factory = uow_factory
        self._locks = locks or ObjectiveLocks()
        self._calculator = calculator or RollupCalculator(settings.weights.default_weight)
        self._max_attempts = settings.check_ins.cascade_max_attempts
        self._clock = clock

    @property
    def locks(self) -> ObjectiveLocks:
        return self._locks

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    async def submit_check_in(self, request: CheckInRequest) -> CheckInResult:
        """
        Record a check-in.

        Raises:
            InvalidInputError: Out-of-range progress, bad date, unknown entity
                type or no progress/value supplied
            NotFoundError: The entity does not exist
            ConcurrentUpdateError: The parent Objective kept changing after
                every retry
        """
        entity_type = parse_entity_type(request.entity_type)
        new_progress = parse_progress(request.new_progress, "new_progress")
        previous_progress = parse_progress(request.previous_progress, "previous_progress")
        new_value = parse_metric_value(request.new_value, "new_value")
        previous_value = parse_metric_value(request.previous_value, "previous_value")
        now = self._clock()
        as_of_date = parse_as_of_date(request.as_of_date, now)

        if new_progress is None and not (entity_type == EntityType.KEY_RESULT and new_value is not None):
            raise InvalidInputError(
                "A check-in needs new_progress (or new_value for a key result)",
                "new_progress",
                None,
            )

        check_in_id = new_id()
        cascade_log = CascadeLogger(entity_type.value, request.entity_id, check_in_id)
        objective_id = await self._lock_key(entity_type, request.entity_id)

        async with self._locks.hold(objective_id):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    async with self._uow_factory() as uow:
                        entity = await self._load(uow, entity_type, request.entity_id)

                        progress = new_progress
                        if progress is None:
                            progress = self._calculator.key_result_progress(entity, new_value)

                        check_in = CheckIn(
                            id=check_in_id,
                            tenant_id=entity.tenant_id,
                            entity_type=entity_type,
                            entity_id=entity.id,
                            previous_progress=(
                                previous_progress if previous_progress is not None else entity.progress
                            ),
                            new_progress=progress,
                            previous_value=(
                                previous_value if previous_value is not None else self._value_of(entity)
                            ),
                            new_value=new_value,
                            previous_status=entity.status,
                            new_status=request.new_status,
                            note=request.note,
                            achievements=list(request.achievements),
                            challenges=list(request.challenges),
                            next_steps=list(request.next_steps),
                            source=request.source,
                            user_id=request.user_id,
                            user_email=request.user_email,
                            as_of_date=as_of_date,
                            created_at=now,
                        )
                        await uow.check_ins.append(check_in)
                        cascade_log.log_recorded(check_in.previous_progress, check_in.new_progress)

                        uow.collect_event(CheckInRecorded(
                            check_in_id=check_in.id,
                            entity_type=entity_type.value,
                            entity_id=entity.id,
                            previous_progress=check_in.previous_progress,
                            new_progress=check_in.new_progress,
                            as_of_date=check_in.as_of_date,
                            aggregate_id=entity.id,
                            aggregate_type=entity_type.value,
                            metadata={"tenant_id": entity.tenant_id, "user_id": request.user_id},
                        ))

                        entity = await self._write_entity(uow, entity_type, entity, check_in, now)
                        objective, cascaded = await self._cascade(
                            uow, entity_type, entity, now, "check_in", cascade_log
                        )

                    cascade_log.log_complete(attempts=attempt, cascaded=cascaded)
                    return CheckInResult(
                        check_in=check_in,
                        entity_type=entity_type,
                        entity=entity,
                        cascaded=cascaded,
                        objective_id=objective.id if objective else None,
                        objective_progress=objective.progress if objective else None,
                    )
                except ConcurrentUpdateError as e:
                    if attempt >= self._max_attempts:
                        cascade_log.log_error("Giving up after concurrent updates", attempts=attempt)
                        raise
                    cascade_log.log_retry(attempt, self._max_attempts, e)

    # -------------------------------------------------------------------------
    # Correct
    # -------------------------------------------------------------------------

    async def update_check_in(self, check_in_id: str, correction: CheckInCorrection) -> CheckInResult:
        """
        Correct a stored check-in and replay its effects.

        The corrected progress, value and status are written back onto the
        entity and the cascade runs again, whatever the check-in's position
        in the trajectory. Correcting only ``new_value`` of a Key Result
        check-in re-derives its progress from the value.

        Raises:
            InvalidInputError: Out-of-range progress or bad date
            NotFoundError: The check-in or its entity does not exist
        """
        updates: Dict[str, Any] = {}
        for field in ("new_progress", "previous_progress"):
            value = parse_progress(getattr(correction, field), field)
            if value is not None:
                updates[field] = value
        value = parse_metric_value(correction.new_value, "new_value")
        if value is not None:
            updates["new_value"] = value
        if correction.as_of_date is not None:
            updates["as_of_date"] = parse_as_of_date(correction.as_of_date, self._clock())
        for field in ("new_status", "note", "achievements", "challenges", "next_steps"):
            value = getattr(correction, field)
            if value is not None:
                updates[field] = list(value) if isinstance(value, list) else value

        async with self._uow_factory() as uow:
            existing = await uow.check_ins.get(check_in_id)
        if existing is None:
            raise NotFoundError("check_in", check_in_id)

        cascade_log = CascadeLogger(existing.entity_type.value, existing.entity_id, check_in_id)
        objective_id = await self._lock_key(existing.entity_type, existing.entity_id)

        async with self._locks.hold(objective_id):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    return await self._correct_once(check_in_id, updates, cascade_log)
                except ConcurrentUpdateError as e:
                    if attempt >= self._max_attempts:
                        cascade_log.log_error("Giving up after concurrent updates", attempts=attempt)
                        raise
                    cascade_log.log_retry(attempt, self._max_attempts, e)

    async def _correct_once(
        self,
        check_in_id: str,
        updates: Dict[str, Any],
        cascade_log: CascadeLogger,
    ) -> CheckInResult:
        now = self._clock()
        async with self._uow_factory() as uow:
            existing = await uow.check_ins.get(check_in_id)
            if existing is None:
                raise NotFoundError("check_in", check_in_id)
            entity = await self._load(uow, existing.entity_type, existing.entity_id)

            changed = {k: v for k, v in updates.items() if getattr(existing, k) != v}
            if (
                existing.entity_type == EntityType.KEY_RESULT
                and "new_value" in changed
                and "new_progress" not in updates
            ):
                derived = self._calculator.key_result_progress(entity, changed["new_value"])
                if derived != existing.new_progress:
                    changed["new_progress"] = derived
            if not changed:
                return CheckInResult(check_in=existing, entity_type=existing.entity_type, entity=entity)

            corrected = existing.model_copy(update={**changed, "updated_at": now})
            await uow.check_ins.amend(corrected)
            uow.collect_event(CheckInCorrected(
                check_in_id=check_in_id,
                entity_type=existing.entity_type.value,
                entity_id=existing.entity_id,
                changed_fields=changed,
                previous_values={k: getattr(existing, k) for k in changed},
                aggregate_id=existing.entity_id,
                aggregate_type=existing.entity_type.value,
            ))

            entity = await self._write_entity(uow, existing.entity_type, entity, corrected, now)
            objective, cascaded = await self._cascade(
                uow, existing.entity_type, entity, now, "check_in_correction", cascade_log
            )

        cascade_log.log_complete(corrected_fields=sorted(changed), cascaded=cascaded)
        return CheckInResult(
            check_in=corrected,
            entity_type=existing.entity_type,
            entity=entity,
            cascaded=cascaded,
            objective_id=objective.id if objective else None,
            objective_progress=objective.progress if objective else None,
        )

    # -------------------------------------------------------------------------
    # Queries and explicit recalculation
    # -------------------------------------------------------------------------

    async def list_check_ins(self, entity_type: Any, entity_id: str) -> List[CheckIn]:
        """Trajectory of one entity, ordered by as_of_date then created_at."""
        entity_type = parse_entity_type(entity_type)
        async with self._uow_factory() as uow:
            return await uow.check_ins.list_for_entity(entity_type, entity_id)

    async def recalculate_objective(self, objective_id: str, trigger: str = "manual") -> int:
        """
        Recompute and persist an Objective's rollup progress.

        Manual-mode objectives are returned unchanged.

        Raises:
            NotFoundError: The objective does not exist
        """
        async with self._locks.hold(objective_id):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    async with self._uow_factory() as uow:
                        objective = await uow.objectives.get(objective_id)
                        if objective is None:
                            raise NotFoundError("objective", objective_id)
                        objective, _ = await self.recompute(uow, objective, self._clock(), trigger)
                    return objective.progress
                except ConcurrentUpdateError as e:
                    if attempt >= self._max_attempts:
                        raise
                    logger.warning(
                        f"Concurrent update on objective {objective_id}, retrying",
                        extra={'extra_data': {'attempt': attempt, 'error': str(e)}}
                    )

    async def recompute(
        self,
        uow: IUnitOfWork,
        objective: Objective,
        now: datetime,
        trigger: str,
    ) -> Tuple[Objective, int]:
        """
        Recompute ``objective`` inside an open unit of work.

        Re-reads every Key Result of the objective through ``uow`` so writes
        made earlier in the same transaction are included. The objective is
        saved even when its progress is unchanged so its version always
        moves; a concurrent recompute over the same siblings then fails at
        commit. An event is collected only when progress changes.

        Returns:
            (objective after the recompute, number of key results read)
        """
        if not objective.is_rollup:
            return objective, 0

        key_results = await uow.key_results.list_by_objective(objective.id)
        progress = self._calculator.compute_progress(objective, key_results)
        update: Dict[str, Any] = {"progress": progress}
        if progress != objective.progress:
            update["updated_at"] = now
        saved = await uow.objectives.save(objective.model_copy(update=update))
        if progress == objective.progress:
            return saved, len(key_results)

        uow.collect_event(ObjectiveProgressRecalculated(
            objective_id=objective.id,
            previous_progress=objective.progress,
            new_progress=progress,
            key_result_count=len(key_results),
            trigger=trigger,
            aggregate_id=objective.id,
            metadata={"tenant_id": objective.tenant_id},
        ))
        return saved, len(key_results)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _lock_key(self, entity_type: EntityType, entity_id: str) -> Optional[str]:
        """Objective whose cascade a write to this entity can touch."""
        async with self._uow_factory() as uow:
            entity = await self._load(uow, entity_type, entity_id)
        if entity_type == EntityType.OBJECTIVE:
            return entity.id
        return entity.objective_id

    @staticmethod
    async def _load(uow: IUnitOfWork, entity_type: EntityType, entity_id: str):
        if entity_type == EntityType.OBJECTIVE:
            entity = await uow.objectives.get(entity_id)
        elif entity_type == EntityType.KEY_RESULT:
            entity = await uow.key_results.get(entity_id)
        else:
            entity = await uow.big_rocks.get(entity_id)

        if entity is None:
            raise NotFoundError(entity_type.value, entity_id)
        return entity

    @staticmethod
    def _value_of(entity) -> Optional[float]:
        if isinstance(entity, KeyResult):
            return entity.current_value
        return None

    @staticmethod
    async def _write_entity(
        uow: IUnitOfWork,
        entity_type: EntityType,
        entity,
        check_in: CheckIn,
        now: datetime,
    ):
        """Write the check-in's progress, value and status onto the entity."""
        status = check_in.new_status or entity.status

        if entity_type == EntityType.BIG_ROCK:
            updated: BigRock = entity.model_copy(update={
                "completion_percentage": check_in.new_progress,
                "status": status,
                "updated_at": now,
            })
            return await uow.big_rocks.save(updated)

        update = {
            "progress": check_in.new_progress,
            "status": status,
            "last_check_in_at": now,
            "last_check_in_note": check_in.note,
            "updated_at": now,
        }
        if entity_type == EntityType.KEY_RESULT:
            if check_in.new_value is not None:
                update["current_value"] = check_in.new_value
            return await uow.key_results.save(entity.model_copy(update=update))

        if check_in.new_status:
            update["status_override"] = True
        return await uow.objectives.save(entity.model_copy(update=update))

    async def _cascade(
        self,
        uow: IUnitOfWork,
        entity_type: EntityType,
        entity,
        now: datetime,
        trigger: str,
        cascade_log: CascadeLogger,
    ) -> Tuple[Optional[Objective], bool]:
        """
        Propagate a Key Result write into its parent Objective.

        Returns:
            (parent objective after the cascade or None, whether it was recomputed)
        """
        if entity_type != EntityType.KEY_RESULT:
            return None, False

        objective = await uow.objectives.get(entity.objective_id)
        if objective is None:
            cascade_log.log_skipped("parent objective missing", objective_id=entity.objective_id)
            return None, False
        if not objective.is_rollup:
            cascade_log.log_skipped("parent objective in manual mode", objective_id=objective.id)
            return objective, False

        step = cascade_log.log_step("rollup", objective_id=objective.id)
        saved, key_result_count = await self.recompute(uow, objective, now, trigger)
        cascade_log.complete_step("rollup", step, progress=saved.progress)
        if saved.progress != objective.progress:
            cascade_log.log_rollup(objective.id, objective.progress, saved.progress, key_result_count)
        return saved, True
