"""Async Big Rock Repository Implementation."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.aggregates import BigRock
from domain.repositories import IBigRockRepository
from database.models import BigRockRecord
from .row_mapping import from_row, to_row

logger = logging.getLogger(__name__)

big_rocks = BigRockRecord.__table__


class BigRockRepository(IBigRockRepository):
    """Async implementation of IBigRockRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, big_rock_id: str) -> Optional[BigRock]:
        result = await self._session.execute(
            select(big_rocks).where(big_rocks.c.id == big_rock_id)
        )
        row = result.fetchone()
        return from_row(BigRock, row) if row else None

    async def save(self, big_rock: BigRock) -> BigRock:
        result = await self._session.execute(
            select(big_rocks.c.id).where(big_rocks.c.id == big_rock.id)
        )
        values = to_row(big_rock, big_rocks)

        if result.fetchone() is None:
            await self._session.execute(insert(big_rocks).values(**values))
        else:
            values.pop("id")
            await self._session.execute(
                update(big_rocks).where(big_rocks.c.id == big_rock.id).values(**values)
            )

        logger.debug(f"Saved big rock: {big_rock.id}")
        return big_rock

    async def list_by_objective(self, objective_id: str) -> List[BigRock]:
        result = await self._session.execute(
            select(big_rocks)
            .where(big_rocks.c.objective_id == objective_id)
            .order_by(big_rocks.c.created_at, big_rocks.c.id)
        )
        return [from_row(BigRock, row) for row in result.fetchall()]
