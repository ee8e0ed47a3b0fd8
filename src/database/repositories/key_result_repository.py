"""Async Key Result Repository Implementation."""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.aggregates import KeyResult
from domain.repositories import IKeyResultRepository
from database.models import KeyResultRecord
from .row_mapping import from_row, to_row

logger = logging.getLogger(__name__)

key_results = KeyResultRecord.__table__


class KeyResultRepository(IKeyResultRepository):
    """Async implementation of IKeyResultRepository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key_result_id: str) -> Optional[KeyResult]:
        result = await self._session.execute(
            select(key_results).where(key_results.c.id == key_result_id)
        )
        row = result.fetchone()
        return from_row(KeyResult, row) if row else None

    async def save(self, key_result: KeyResult) -> KeyResult:
        """Insert or update a key result (upsert)."""
        result = await self._session.execute(
            select(key_results.c.id).where(key_results.c.id == key_result.id)
        )
        values = to_row(key_result, key_results)

        if result.fetchone() is None:
            await self._session.execute(insert(key_results).values(**values))
        else:
            values.pop("id")
            await self._session.execute(
                update(key_results).where(key_results.c.id == key_result.id).values(**values)
            )

        logger.debug(f"Saved key result: {key_result.id}")
        return key_result

    async def save_many(self, items: List[KeyResult]) -> List[KeyResult]:
        return [await self.save(kr) for kr in items]

    async def list_by_objective(self, objective_id: str) -> List[KeyResult]:
        result = await self._session.execute(
            select(key_results)
            .where(key_results.c.objective_id == objective_id)
            .order_by(key_results.c.created_at, key_results.c.id)
        )
        return [from_row(KeyResult, row) for row in result.fetchall()]
