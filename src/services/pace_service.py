"""
Pace Service - Read-only pace classification of stored entities.

Loads an entity and its check-in trajectory and hands both to the
PaceClassifier. Key Results are measured against their Objective's
period; Big Rocks use their own quarter/year, falling back to their
Objective's.
"""

from datetime import datetime
from typing import Optional

from analytics.health_report import HealthEntry, TeamHealthReport
from analytics.pace import PaceClassifier
from config.settings import Settings, get_settings
from domain.aggregates import EntityType, Objective
from domain.exceptions import InvalidInputError, NotFoundError
from domain.repositories import IUnitOfWork
from domain.value_objects import PaceMetrics

from .check_in_service import UnitOfWorkFactory
from .logging_config import get_logger, log_performance

logger = get_logger(__name__)


class PaceService:
    """
    Pace and team-health queries.

    Usage:
        service = PaceService(store.factory())
        metrics = await service.objective_pace(objective_id)
        report = await service.team_health("acme", quarter=1, year=2025)
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        settings: Optional[Settings] = None,
        classifier: Optional[PaceClassifier] = None,
    ):
        settings = settings or get_settings()
        self._uow_factory = uow_factory
        self._classifier = classifier or PaceClassifier(settings.pace_thresholds())

    @property
    def classifier(self) -> PaceClassifier:
        return self._classifier

    async def objective_pace(self, objective_id: str, now: Optional[datetime] = None) -> PaceMetrics:
        """Pace of an Objective against its own period."""
        async with self._uow_factory() as uow:
            objective = await self._objective(uow, objective_id)
            check_ins = await uow.check_ins.list_for_entity(EntityType.OBJECTIVE, objective_id)
        return self._classify_objective(objective, check_ins, now)

    async def key_result_pace(self, key_result_id: str, now: Optional[datetime] = None) -> PaceMetrics:
        """Pace of a Key Result against its Objective's period."""
        async with self._uow_factory() as uow:
            key_result = await uow.key_results.get(key_result_id)
            if key_result is None:
                raise NotFoundError("key_result", key_result_id)
            objective = await self._objective(uow, key_result.objective_id)
            check_ins = await uow.check_ins.list_for_entity(EntityType.KEY_RESULT, key_result_id)

        return self._classifier.classify(
            progress=key_result.progress,
            quarter=objective.quarter,
            year=objective.year,
            check_ins=check_ins,
            start_date=objective.start_date,
            end_date=objective.end_date,
            now=now,
        )

    async def big_rock_pace(self, big_rock_id: str, now: Optional[datetime] = None) -> PaceMetrics:
        """Pace of a Big Rock against its own quarter/year or its Objective's period."""
        async with self._uow_factory() as uow:
            big_rock = await uow.big_rocks.get(big_rock_id)
            if big_rock is None:
                raise NotFoundError("big_rock", big_rock_id)
            objective = None
            if big_rock.objective_id:
                objective = await uow.objectives.get(big_rock.objective_id)
            check_ins = await uow.check_ins.list_for_entity(EntityType.BIG_ROCK, big_rock_id)

        quarter, year, start_date, end_date = big_rock.quarter, big_rock.year, None, None
        if big_rock.year is None and objective is not None:
            quarter, year = objective.quarter, objective.year
            start_date, end_date = objective.start_date, objective.end_date

        return self._classifier.classify(
            progress=big_rock.completion_percentage,
            quarter=quarter,
            year=year,
            check_ins=check_ins,
            start_date=start_date,
            end_date=end_date,
            now=now,
        )

    @log_performance("team_health")
    async def team_health(
        self,
        tenant_id: str,
        quarter: Optional[int] = None,
        year: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TeamHealthReport:
        """Classify every Objective of a tenant's period and summarize."""
        entries = []
        async with self._uow_factory() as uow:
            objectives = await uow.objectives.list_by_period(tenant_id, quarter, year)
            for objective in objectives:
                check_ins = await uow.check_ins.list_for_entity(EntityType.OBJECTIVE, objective.id)
                try:
                    metrics = self._classify_objective(objective, check_ins, now)
                except InvalidInputError as e:
                    logger.warning(
                        f"Skipping objective {objective.id} in team health: {e}",
                        extra={'extra_data': {'objective_id': objective.id, 'field': e.field}}
                    )
                    continue
                entries.append(HealthEntry(
                    entity_id=objective.id,
                    title=objective.title,
                    entity_type=EntityType.OBJECTIVE,
                    metrics=metrics,
                    description=self._classifier.describe(metrics),
                ))

        report = TeamHealthReport.build(entries)
        logger.info(
            "Team health computed",
            extra={'extra_data': {
                'tenant_id': tenant_id,
                'quarter': quarter,
                'year': year,
                'total': report.summary.total,
                'needs_attention': len(report.needs_attention),
            }}
        )
        return report

    def describe(self, metrics: PaceMetrics) -> str:
        return self._classifier.describe(metrics)

    def _classify_objective(self, objective: Objective, check_ins, now: Optional[datetime]) -> PaceMetrics:
        return self._classifier.classify(
            progress=objective.progress,
            quarter=objective.quarter,
            year=objective.year,
            check_ins=check_ins,
            start_date=objective.start_date,
            end_date=objective.end_date,
            now=now,
        )

    @staticmethod
    async def _objective(uow: IUnitOfWork, objective_id: str) -> Objective:
        objective = await uow.objectives.get(objective_id)
        if objective is None:
            raise NotFoundError("objective", objective_id)
        return objective
