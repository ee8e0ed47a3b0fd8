"""
Weight Service - Application service for editing Key Result weights.

Applies Weight Ledger operations to the Key Results of one Objective,
persists the new weights and, for rollup-mode Objectives, recomputes the
Objective's progress in the same unit of work. Runs under the same
per-Objective lock as the check-in cascade.
"""

from typing import Callable, List, Optional

from analytics.weight_ledger import WeightLedger
from config.settings import Settings, get_settings
from domain.aggregates import KeyResult
from domain.events import KeyResultWeightsChanged
from domain.exceptions import ConcurrentUpdateError, NotFoundError
from domain.repositories import IUnitOfWork
from domain.timeutil import utc_now
from domain.value_objects import WeightAdjustment, WeightValidation

from .check_in_service import CheckInService, ObjectiveLocks, UnitOfWorkFactory
from .logging_config import get_logger

logger = get_logger(__name__)

LedgerOperation = Callable[[List[KeyResult]], List[KeyResult]]


class WeightService:
    """
    Edits Key Result weights.

    Usage:
        locks = ObjectiveLocks()
        check_ins = CheckInService(factory, locks=locks)
        weights = WeightService(factory, locks=locks, check_ins=check_ins)
        await weights.auto_balance(objective_id)
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        locks: Optional[ObjectiveLocks] = None,
        settings: Optional[Settings] = None,
        ledger: Optional[WeightLedger] = None,
        check_ins: Optional[CheckInService] = None,
        clock=utc_now,
    ):
        settings = settings or get_settings()
        self._uow_factory = uow_factory
        self._ledger = ledger or WeightLedger(settings.weight_policy())
        self._check_ins = check_ins or CheckInService(
            uow_factory, locks=locks, settings=settings, clock=clock
        )
        self._locks = locks or self._check_ins.locks
        self._max_attempts = settings.check_ins.cascade_max_attempts
        self._clock = clock

    @property
    def ledger(self) -> WeightLedger:
        return self._ledger

    # -------------------------------------------------------------------------
    # Read-only
    # -------------------------------------------------------------------------

    async def validate(self, objective_id: str) -> WeightValidation:
        """Validate the weights of an Objective's Key Results."""
        async with self._uow_factory() as uow:
            key_results = await self._key_results(uow, objective_id)
        return self._ledger.validate(key_results)

    async def suggest_adjustments(self, objective_id: str) -> List[WeightAdjustment]:
        """Weight changes that normalizing would apply."""
        async with self._uow_factory() as uow:
            key_results = await self._key_results(uow, objective_id)
        return self._ledger.suggest_adjustments(key_results)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    async def set_weight(self, objective_id: str, key_result_id: str, weight: float) -> List[KeyResult]:
        """Manually set one Key Result's weight (clamped to 0-100)."""
        return await self._apply(
            objective_id,
            "set_weight",
            lambda items: self._ledger.set_weight(items, key_result_id, weight),
        )

    async def set_weight_lock(self, objective_id: str, key_result_id: str, locked: bool) -> List[KeyResult]:
        """Lock or unlock one Key Result's weight."""
        return await self._apply(
            objective_id,
            "lock" if locked else "unlock",
            lambda items: self._ledger.set_lock(items, key_result_id, locked),
        )

    async def auto_balance(self, objective_id: str) -> List[KeyResult]:
        """Redistribute the free budget among unlocked Key Results."""
        return await self._apply(objective_id, "auto_balance", self._ledger.auto_balance)

    async def normalize(self, objective_id: str) -> List[KeyResult]:
        """Scale all weights so they sum to 100."""
        return await self._apply(objective_id, "normalize", self._ledger.normalize)

    async def _apply(self, objective_id: str, operation: str, ledger_op: LedgerOperation) -> List[KeyResult]:
        """
        Run one ledger operation and persist the changed Key Results.

        Raises:
            NotFoundError: The objective or key result does not exist
            ConcurrentUpdateError: The objective kept changing after every retry
        """
        async with self._locks.hold(objective_id):
            for attempt in range(1, self._max_attempts + 1):
                try:
                    return await self._apply_once(objective_id, operation, ledger_op)
                except ConcurrentUpdateError as e:
                    if attempt >= self._max_attempts:
                        logger.error(
                            f"Weight {operation} gave up after concurrent updates",
                            extra={'extra_data': {'objective_id': objective_id, 'attempts': attempt}}
                        )
                        raise
                    logger.warning(
                        f"Concurrent update during weight {operation}, retrying",
                        extra={'extra_data': {'objective_id': objective_id, 'attempt': attempt, 'error': str(e)}}
                    )

    async def _apply_once(self, objective_id: str, operation: str, ledger_op: LedgerOperation) -> List[KeyResult]:
        now = self._clock()
        async with self._uow_factory() as uow:
            objective = await uow.objectives.get(objective_id)
            if objective is None:
                raise NotFoundError("objective", objective_id)

            before = await uow.key_results.list_by_objective(objective_id)
            after = ledger_op(before)

            changed = [
                new.model_copy(update={"updated_at": now})
                for old, new in zip(before, after)
                if old.weight != new.weight or old.is_weight_locked != new.is_weight_locked
            ]
            if changed:
                await uow.key_results.save_many(changed)
                uow.collect_event(KeyResultWeightsChanged(
                    objective_id=objective_id,
                    operation=operation,
                    weights={kr.id: kr.weight for kr in after if kr.weight is not None},
                    locked_ids=[kr.id for kr in after if kr.is_weight_locked],
                    aggregate_id=objective_id,
                    metadata={"tenant_id": objective.tenant_id},
                ))
                await self._check_ins.recompute(uow, objective, now, "weights")

        logger.info(
            f"Weights {operation} applied",
            extra={'extra_data': {
                'objective_id': objective_id,
                'changed': len(changed),
                'total': self._ledger.total_weight(after),
            }}
        )
        return after

    @staticmethod
    async def _key_results(uow: IUnitOfWork, objective_id: str) -> List[KeyResult]:
        objective = await uow.objectives.get(objective_id)
        if objective is None:
            raise NotFoundError("objective", objective_id)
        return await uow.key_results.list_by_objective(objective_id)
