"""Tests for the SQL repositories and Unit of Work on an in-memory SQLite database."""

from datetime import datetime

import pytest

pytest.importorskip("aiosqlite")

import pytest_asyncio

from config.database import DatabaseSettings
from database.async_engine import create_engine, get_session_factory, init_schema
from database.unit_of_work import UnitOfWork, UnitOfWorkFactory
from domain.aggregates import BigRock, CheckIn, EntityType, KeyResult, MetricType, Objective, ProgressMode
from domain.exceptions import ConcurrentUpdateError, NotFoundError
from domain.value_objects import CheckInCorrection, CheckInRequest
from services import create_services

CREATED = datetime(2025, 1, 1)


@pytest_asyncio.fixture
async def engine():
    settings = DatabaseSettings(driver="sqlite+aiosqlite", sqlite_path=":memory:")
    engine = create_engine(settings)
    await init_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return UnitOfWorkFactory(session_factory, publish_events=False)


def make_objective(**fields):
    fields.setdefault("title", "Objective")
    fields.setdefault("quarter", 1)
    fields.setdefault("year", 2025)
    fields.setdefault("created_at", CREATED)
    fields.setdefault("updated_at", CREATED)
    return Objective(**fields)


def make_key_result(objective, minute, **fields):
    fields.setdefault("title", f"KR {minute}")
    fields.setdefault("created_at", datetime(2025, 1, 1, 0, minute))
    fields.setdefault("updated_at", CREATED)
    return KeyResult(objective_id=objective.id, tenant_id=objective.tenant_id, **fields)


# =============================================================================
# REPOSITORIES
# =============================================================================

class TestObjectiveRepository:
    """Tests for ObjectiveRepository."""

    @pytest.mark.asyncio
    async def test_round_trip(self, uow_factory):
        objective = make_objective(
            progress_mode=ProgressMode.MANUAL,
            progress=30,
            start_date=datetime(2025, 1, 15),
            end_date=datetime(2025, 3, 15),
        )
        async with uow_factory() as uow:
            await uow.objectives.save(objective)

        async with uow_factory() as uow:
            loaded = await uow.objectives.get(objective.id)

        assert loaded == objective
        assert loaded.progress_mode == ProgressMode.MANUAL

    @pytest.mark.asyncio
    async def test_get_missing(self, uow_factory):
        async with uow_factory() as uow:
            assert await uow.objectives.get("missing") is None

    @pytest.mark.asyncio
    async def test_update_increments_version(self, uow_factory):
        objective = make_objective()
        async with uow_factory() as uow:
            await uow.objectives.save(objective)

        async with uow_factory() as uow:
            saved = await uow.objectives.save(objective.model_copy(update={"progress": 40}))

        assert saved.version == 2
        async with uow_factory() as uow:
            loaded = await uow.objectives.get(objective.id)
        assert loaded.version == 2
        assert loaded.progress == 40

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, uow_factory):
        objective = make_objective()
        async with uow_factory() as uow:
            await uow.objectives.save(objective)
        async with uow_factory() as uow:
            await uow.objectives.save(objective.model_copy(update={"progress": 40}))

        with pytest.raises(ConcurrentUpdateError):
            async with uow_factory() as uow:
                await uow.objectives.save(objective.model_copy(update={"progress": 70}))

        async with uow_factory() as uow:
            assert (await uow.objectives.get(objective.id)).progress == 40

    @pytest.mark.asyncio
    async def test_list_by_period(self, uow_factory):
        annual = make_objective(title="Annual", quarter=None)
        zero = make_objective(title="Zero", quarter=0)
        q1 = make_objective(title="Q1")
        other = make_objective(title="Other tenant", tenant_id="other")
        async with uow_factory() as uow:
            for objective in (annual, zero, q1, other):
                await uow.objectives.save(objective)

        async with uow_factory() as uow:
            yearly = await uow.objectives.list_by_period("default", quarter=0, year=2025)
            first = await uow.objectives.list_by_period("default", quarter=1, year=2025)
            everything = await uow.objectives.list_by_period("default")

        assert [o.title for o in yearly] == ["Annual", "Zero"]
        assert [o.title for o in first] == ["Q1"]
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_list_children(self, uow_factory):
        parent = make_objective(title="Parent")
        child = make_objective(title="Child", parent_id=parent.id)
        async with uow_factory() as uow:
            await uow.objectives.save(parent)
            await uow.objectives.save(child)

        async with uow_factory() as uow:
            children = await uow.objectives.list_children(parent.id)
        assert [c.id for c in children] == [child.id]


class TestKeyResultAndBigRockRepositories:
    """Tests for KeyResultRepository and BigRockRepository."""

    @pytest.mark.asyncio
    async def test_upsert_and_order(self, uow_factory):
        objective = make_objective()
        second = make_key_result(objective, 2, weight=None, metric_type=MetricType.DECREASE)
        first = make_key_result(objective, 1, weight=40)
        async with uow_factory() as uow:
            await uow.objectives.save(objective)
            await uow.key_results.save_many([second, first])

        async with uow_factory() as uow:
            await uow.key_results.save(first.model_copy(update={"progress": 55}))

        async with uow_factory() as uow:
            listed = await uow.key_results.list_by_objective(objective.id)

        assert [kr.id for kr in listed] == [first.id, second.id]
        assert listed[0].progress == 55
        assert listed[1].weight is None
        assert listed[1].metric_type == MetricType.DECREASE

    @pytest.mark.asyncio
    async def test_big_rock_round_trip(self, uow_factory):
        objective = make_objective()
        big_rock = BigRock(
            title="Launch", objective_id=objective.id, completion_percentage=20,
            created_at=CREATED, updated_at=CREATED,
        )
        async with uow_factory() as uow:
            await uow.objectives.save(objective)
            await uow.big_rocks.save(big_rock)
        async with uow_factory() as uow:
            await uow.big_rocks.save(big_rock.model_copy(update={"completion_percentage": 70}))

        async with uow_factory() as uow:
            assert (await uow.big_rocks.get(big_rock.id)).completion_percentage == 70
            assert [br.id for br in await uow.big_rocks.list_by_objective(objective.id)] == [big_rock.id]


class TestCheckInRepository:
    """Tests for CheckInRepository."""

    @pytest.mark.asyncio
    async def test_append_list_and_amend(self, uow_factory):
        later = CheckIn(
            entity_type=EntityType.KEY_RESULT, entity_id="kr-1", new_progress=60,
            as_of_date=datetime(2025, 2, 10), created_at=CREATED, next_steps=["Call Acme"],
        )
        earlier = CheckIn(
            entity_type=EntityType.KEY_RESULT, entity_id="kr-1", new_progress=40,
            as_of_date=datetime(2025, 2, 1), created_at=CREATED,
        )
        async with uow_factory() as uow:
            await uow.check_ins.append(later)
            await uow.check_ins.append(earlier)

        async with uow_factory() as uow:
            await uow.check_ins.amend(earlier.model_copy(update={"new_progress": 45}))

        async with uow_factory() as uow:
            trajectory = await uow.check_ins.list_for_entity(EntityType.KEY_RESULT, "kr-1")

        assert [c.new_progress for c in trajectory] == [45, 60]
        assert trajectory[1].next_steps == ["Call Acme"]

    @pytest.mark.asyncio
    async def test_amend_missing(self, uow_factory):
        ghost = CheckIn(entity_type=EntityType.OBJECTIVE, entity_id="o", new_progress=1)
        with pytest.raises(NotFoundError):
            async with uow_factory() as uow:
                await uow.check_ins.amend(ghost)


# =============================================================================
# UNIT OF WORK
# =============================================================================

class TestUnitOfWork:
    """Tests for UnitOfWork transaction handling."""

    def test_requires_context(self):
        with pytest.raises(RuntimeError):
            UnitOfWork().session

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, uow_factory):
        objective = make_objective()
        with pytest.raises(ValueError):
            async with uow_factory() as uow:
                await uow.objectives.save(objective)
                raise ValueError("boom")

        async with uow_factory() as uow:
            assert await uow.objectives.get(objective.id) is None

    @pytest.mark.asyncio
    async def test_events_published_after_commit(self, session_factory):
        from domain.event_bus import get_event_bus
        from domain.events import ObjectiveProgressRecalculated

        received = []
        get_event_bus().subscribe_all(received.append)
        event = ObjectiveProgressRecalculated(
            objective_id="o", previous_progress=0, new_progress=10, key_result_count=1, trigger="manual",
        )

        async with UnitOfWorkFactory(session_factory, publish_events=True)() as uow:
            uow.collect_event(event)
            assert received == []

        assert received == [event]


# =============================================================================
# END TO END
# =============================================================================

class TestServicesOnSql:
    """The check-in cascade over the SQL backend."""

    @pytest.mark.asyncio
    async def test_check_in_cascade_and_correction(self, uow_factory):
        objective = make_objective()
        first = make_key_result(objective, 1, progress=0, weight=50)
        second = make_key_result(objective, 2, progress=20, weight=50)
        async with uow_factory() as uow:
            await uow.objectives.save(objective)
            await uow.key_results.save_many([first, second])

        services = create_services(uow_factory)
        result = await services.check_ins.submit_check_in(CheckInRequest(
            entity_type="key_result", entity_id=first.id, new_progress=80,
        ))
        assert result.objective_progress == 50

        corrected = await services.check_ins.update_check_in(
            result.check_in.id, CheckInCorrection(new_progress=60)
        )
        assert corrected.objective_progress == 40

        async with uow_factory() as uow:
            stored = await uow.objectives.get(objective.id)
            trajectory = await uow.check_ins.list_for_entity(EntityType.KEY_RESULT, first.id)
        assert stored.progress == 40
        assert stored.version == 3
        assert [c.new_progress for c in trajectory] == [60]

    @pytest.mark.asyncio
    async def test_weights_on_sql(self, uow_factory):
        objective = make_objective()
        krs = [make_key_result(objective, i, progress=p, weight=10) for i, p in enumerate((90, 0, 0))]
        async with uow_factory() as uow:
            await uow.objectives.save(objective)
            await uow.key_results.save_many(krs)

        services = create_services(uow_factory)
        result = await services.weights.normalize(objective.id)

        assert [kr.weight for kr in result] == [33.34, 33.33, 33.33]
        async with uow_factory() as uow:
            assert (await uow.objectives.get(objective.id)).progress == 30
