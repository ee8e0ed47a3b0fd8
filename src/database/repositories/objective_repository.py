"""Async Objective Repository Implementation.

Implements IObjectiveRepository with SQLAlchemy Core statements on an async
session. Updates are guarded by the ``version`` column.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.aggregates import Objective
from domain.exceptions import ConcurrentUpdateError
from domain.repositories import IObjectiveRepository
from database.models import ObjectiveRecord
from .row_mapping import from_row, to_row

logger = logging.getLogger(__name__)

objectives = ObjectiveRecord.__table__


class ObjectiveRepository(IObjectiveRepository):
    """Async implementation of IObjectiveRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, objective_id: str) -> Optional[Objective]:
        result = await self._session.execute(
            select(objectives).where(objectives.c.id == objective_id)
        )
        row = result.fetchone()
        return from_row(Objective, row) if row else None

    async def save(self, objective: Objective) -> Objective:
        """
        Insert a new objective or update an existing one.

        An update only applies when the stored version still equals
        ``objective.version``; the stored version is then incremented.

        Raises:
            ConcurrentUpdateError: If another writer saved first
        """
        result = await self._session.execute(
            select(objectives.c.version).where(objectives.c.id == objective.id)
        )
        stored_version = result.scalar_one_or_none()

        if stored_version is None:
            await self._session.execute(insert(objectives).values(**to_row(objective, objectives)))
            logger.debug(f"Inserted objective: {objective.id}")
            return objective

        new_version = objective.version + 1
        values = to_row(objective, objectives, version=new_version)
        values.pop("id")
        result = await self._session.execute(
            update(objectives)
            .where(objectives.c.id == objective.id)
            .where(objectives.c.version == objective.version)
            .values(**values)
        )
        if result.rowcount == 0:
            logger.warning(
                f"Version conflict on objective {objective.id}",
                extra={'extra_data': {'expected': objective.version, 'stored': stored_version}}
            )
            raise ConcurrentUpdateError("objective", objective.id, objective.version)

        logger.debug(f"Updated objective: {objective.id} (version {new_version})")
        return objective.model_copy(update={"version": new_version})

    async def list_children(self, parent_id: str) -> List[Objective]:
        result = await self._session.execute(
            select(objectives)
            .where(objectives.c.parent_id == parent_id)
            .order_by(objectives.c.title, objectives.c.id)
        )
        return [from_row(Objective, row) for row in result.fetchall()]

    async def list_by_period(
        self,
        tenant_id: str,
        quarter: Optional[int] = None,
        year: Optional[int] = None
    ) -> List[Objective]:
        query = select(objectives).where(objectives.c.tenant_id == tenant_id)

        if quarter is not None:
            if quarter == 0:
                query = query.where((objectives.c.quarter == 0) | (objectives.c.quarter.is_(None)))
            else:
                query = query.where(objectives.c.quarter == quarter)

        if year is not None:
            query = query.where(objectives.c.year == year)

        result = await self._session.execute(query.order_by(objectives.c.title, objectives.c.id))
        return [from_row(Objective, row) for row in result.fetchall()]
