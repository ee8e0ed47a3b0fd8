"""Tests for Unit of Work pattern implementation."""

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.ext.asyncio import AsyncSession

from database.memory import InMemoryStore
from database.repositories import CheckInRepository, ObjectiveRepository
from database.unit_of_work import UnitOfWork, UnitOfWorkFactory
from domain.aggregates import Objective
from domain.exceptions import ConcurrentUpdateError


class TestUnitOfWork:
    """Tests for UnitOfWork over a mocked session."""

    def test_init_with_session(self):
        """Should initialize with provided session."""
        mock_session = MagicMock(spec=AsyncSession)
        uow = UnitOfWork(session=mock_session)
        assert uow._session is mock_session
        assert uow._owns_session is False

    def test_repositories_are_lazy(self, mock_async_session):
        uow = UnitOfWork(session=mock_async_session)
        assert uow._objectives is None
        assert isinstance(uow.objectives, ObjectiveRepository)
        assert uow.objectives is uow.objectives
        assert isinstance(uow.check_ins, CheckInRepository)

    @pytest.mark.asyncio
    async def test_commit_on_clean_exit(self, mock_async_session):
        async with UnitOfWork(session=mock_async_session, publish_events=False):
            pass
        mock_async_session.commit.assert_awaited_once()
        mock_async_session.rollback.assert_not_awaited()
        mock_async_session.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, mock_async_session):
        with pytest.raises(ValueError):
            async with UnitOfWork(session=mock_async_session) as uow:
                uow.collect_event(MagicMock())
                raise ValueError("boom")
        mock_async_session.rollback.assert_awaited_once()
        mock_async_session.commit.assert_not_awaited()
        assert uow.pending_events == []

    @pytest.mark.asyncio
    async def test_owned_session_is_closed(self):
        session = AsyncMock()
        factory = MagicMock(return_value=session)

        async with UnitOfWorkFactory(factory, publish_events=False)():
            pass

        factory.assert_called_once()
        session.commit.assert_awaited_once()
        session.close.assert_awaited_once()

    def test_factory_reads_publish_setting(self, monkeypatch):
        from config.settings import get_settings

        monkeypatch.setenv("CHECKIN_PUBLISH_EVENTS", "false")
        get_settings.cache_clear()
        try:
            assert UnitOfWorkFactory(MagicMock()).create()._publish is False
        finally:
            get_settings.cache_clear()


class TestInMemoryUnitOfWork:
    """Tests for the in-memory backend's transaction semantics."""

    @pytest.mark.asyncio
    async def test_writes_invisible_until_commit(self):
        store = InMemoryStore()
        objective = Objective(title="Grow")

        async with store.unit_of_work() as uow:
            await uow.objectives.save(objective)
            assert store.objectives == {}
            assert (await uow.objectives.get(objective.id)).title == "Grow"

        assert objective.id in store.objectives

    @pytest.mark.asyncio
    async def test_rollback_discards(self):
        store = InMemoryStore()
        with pytest.raises(RuntimeError):
            async with store.unit_of_work() as uow:
                await uow.objectives.save(Objective(title="Grow"))
                raise RuntimeError("abort")
        assert store.objectives == {}

    @pytest.mark.asyncio
    async def test_stale_save_conflicts(self):
        store = InMemoryStore()
        objective = store.add_objective(Objective(title="Grow"))

        async with store.unit_of_work() as uow:
            await uow.objectives.save(objective.model_copy(update={"progress": 10}))

        with pytest.raises(ConcurrentUpdateError):
            async with store.unit_of_work() as uow:
                await uow.objectives.save(objective.model_copy(update={"progress": 20}))

        assert store.objectives[objective.id].progress == 10
        assert store.objectives[objective.id].version == 2

    @pytest.mark.asyncio
    async def test_racing_units_of_work(self):
        """The second commit sees the version moved by the first."""
        store = InMemoryStore()
        objective = store.add_objective(Objective(title="Grow"))

        first = store.unit_of_work()
        second = store.unit_of_work()
        await first.objectives.save(objective.model_copy(update={"progress": 10}))
        await second.objectives.save(objective.model_copy(update={"progress": 20}))

        await first.commit()
        with pytest.raises(ConcurrentUpdateError):
            await second.commit()
        assert store.objectives[objective.id].progress == 10
