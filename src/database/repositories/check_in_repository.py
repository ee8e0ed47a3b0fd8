"""Async Check-In Repository Implementation.

Check-ins are inserted once. ``amend`` rewrites a row only for explicit
corrections.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.aggregates import CheckIn, EntityType
from domain.exceptions import NotFoundError
from domain.repositories import ICheckInRepository
from database.models import CheckInRecord
from .row_mapping import from_row, to_row

logger = logging.getLogger(__name__)

check_ins = CheckInRecord.__table__


class CheckInRepository(ICheckInRepository):
    """Async implementation of ICheckInRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, check_in_id: str) -> Optional[CheckIn]:
        result = await self._session.execute(
            select(check_ins).where(check_ins.c.id == check_in_id)
        )
        row = result.fetchone()
        return from_row(CheckIn, row) if row else None

    async def append(self, check_in: CheckIn) -> CheckIn:
        await self._session.execute(insert(check_ins).values(**to_row(check_in, check_ins)))
        logger.debug(f"Appended check-in {check_in.id} for {check_in.entity_type.value} {check_in.entity_id}")
        return check_in

    async def amend(self, check_in: CheckIn) -> CheckIn:
        values = to_row(check_in, check_ins)
        values.pop("id")
        result = await self._session.execute(
            update(check_ins).where(check_ins.c.id == check_in.id).values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError("check_in", check_in.id)
        logger.debug(f"Amended check-in {check_in.id}")
        return check_in

    async def list_for_entity(self, entity_type: EntityType, entity_id: str) -> List[CheckIn]:
        result = await self._session.execute(
            select(check_ins)
            .where(check_ins.c.entity_type == EntityType(entity_type).value)
            .where(check_ins.c.entity_id == entity_id)
            .order_by(check_ins.c.as_of_date, check_ins.c.created_at)
        )
        return [from_row(CheckIn, row) for row in result.fetchall()]
