"""
Tests for the Check-In Service.

Tests verify:
1. A Key Result check-in cascades into its rollup Objective
2. Rejected input and missing entities leave nothing behind
3. Corrections replay the entity write and the cascade
4. Concurrent check-ins on one Objective lose no update
"""

import asyncio
from datetime import datetime

import pytest

from database.memory import InMemoryKeyResultRepository, InMemoryUnitOfWork
from domain.aggregates import EntityType, MetricType, ProgressMode
from domain.event_bus import get_event_bus
from domain.events import CheckInCorrected, CheckInRecorded, ObjectiveProgressRecalculated
from domain.exceptions import ConcurrentUpdateError, InvalidInputError, NotFoundError
from domain.value_objects import CheckInCorrection, CheckInRequest
from services.check_in_service import CheckInService, ObjectiveLocks, parse_progress

FIXED_NOW = datetime(2025, 2, 15)


def kr_request(key_result, **fields):
    return CheckInRequest(entity_type="key_result", entity_id=key_result.id, **fields)


@pytest.fixture
def okr(seed):
    """Rollup objective with two equally weighted key results at 0 and 20."""
    objective = seed.objective(title="Grow revenue")
    first = seed.key_result(objective, title="Pipeline", progress=0, weight=50)
    second = seed.key_result(objective, title="Deals", progress=20, weight=50)
    return objective, first, second


@pytest.fixture
def published():
    events = []
    get_event_bus().subscribe_all(events.append)
    return events


# =============================================================================
# SUBMIT
# =============================================================================

class TestSubmitCheckIn:
    """Tests for submit_check_in()."""

    @pytest.mark.asyncio
    async def test_cascades_into_rollup_objective(self, services, store, okr):
        """80 and 20 at weight 50 roll up to 50."""
        objective, first, _ = okr

        result = await services.check_ins.submit_check_in(kr_request(first, new_progress=80))

        assert result.cascaded is True
        assert result.objective_id == objective.id
        assert result.objective_progress == 50
        assert result.entity.progress == 80
        assert store.objectives[objective.id].progress == 50
        assert store.objectives[objective.id].version == objective.version + 1
        assert store.key_results[first.id].progress == 80

    @pytest.mark.asyncio
    async def test_check_in_is_recorded(self, services, store, okr):
        _, first, _ = okr

        result = await services.check_ins.submit_check_in(
            kr_request(first, new_progress=80, note="Signed two partners", achievements=["Partner A"])
        )

        stored = store.check_ins[result.check_in.id]
        assert stored.entity_type == EntityType.KEY_RESULT
        assert stored.previous_progress == 0
        assert stored.new_progress == 80
        assert stored.note == "Signed two partners"
        assert stored.achievements == ["Partner A"]
        assert stored.as_of_date == FIXED_NOW
        assert store.key_results[first.id].last_check_in_note == "Signed two partners"

    @pytest.mark.asyncio
    async def test_manual_objective_is_untouched(self, services, store, seed):
        objective = seed.objective(progress_mode=ProgressMode.MANUAL, progress=10)
        key_result = seed.key_result(objective, progress=0)

        result = await services.check_ins.submit_check_in(kr_request(key_result, new_progress=90))

        assert result.cascaded is False
        assert result.objective_progress == 10
        assert store.objectives[objective.id].progress == 10
        assert store.objectives[objective.id].version == objective.version

    @pytest.mark.asyncio
    async def test_progress_rounds_half_up(self, services, store, okr):
        _, first, _ = okr
        result = await services.check_ins.submit_check_in(kr_request(first, new_progress=62.5))
        assert result.check_in.new_progress == 63

    @pytest.mark.asyncio
    async def test_value_only_key_result_check_in(self, services, store, seed):
        objective = seed.objective()
        key_result = seed.key_result(objective, initial_value=0, target_value=200, weight=100)

        result = await services.check_ins.submit_check_in(kr_request(key_result, new_value=50))

        assert result.check_in.new_progress == 25
        assert result.check_in.previous_value == 0.0
        assert store.key_results[key_result.id].current_value == 50.0
        assert result.objective_progress == 25

    @pytest.mark.asyncio
    async def test_complete_metric_value(self, services, store, seed):
        objective = seed.objective()
        key_result = seed.key_result(objective, metric_type=MetricType.COMPLETE, target_value=1)

        result = await services.check_ins.submit_check_in(kr_request(key_result, new_value=1))
        assert result.entity.progress == 100

    @pytest.mark.asyncio
    async def test_objective_check_in_with_status(self, services, store, seed):
        objective = seed.objective(progress_mode=ProgressMode.MANUAL)

        result = await services.check_ins.submit_check_in(CheckInRequest(
            entity_type="objective", entity_id=objective.id, new_progress=60, new_status="on_track",
        ))

        stored = store.objectives[objective.id]
        assert result.cascaded is False
        assert stored.progress == 60
        assert stored.status == "on_track"
        assert stored.status_override is True

    @pytest.mark.asyncio
    async def test_big_rock_check_in(self, services, store, seed):
        big_rock = seed.big_rock(seed.objective())

        result = await services.check_ins.submit_check_in(CheckInRequest(
            entity_type="big_rock", entity_id=big_rock.id, new_progress=40,
        ))

        assert result.entity_type == EntityType.BIG_ROCK
        assert store.big_rocks[big_rock.id].completion_percentage == 40

    @pytest.mark.asyncio
    async def test_explicit_as_of_date(self, services, okr):
        _, first, _ = okr
        result = await services.check_ins.submit_check_in(
            kr_request(first, new_progress=10, as_of_date="2025-02-01T00:00:00Z")
        )
        assert result.check_in.as_of_date == datetime(2025, 2, 1)

    @pytest.mark.asyncio
    async def test_events_published_after_commit(self, services, okr, published):
        _, first, _ = okr

        await services.check_ins.submit_check_in(kr_request(first, new_progress=80))

        assert [type(e) for e in published] == [CheckInRecorded, ObjectiveProgressRecalculated]
        recalculated = published[1]
        assert recalculated.previous_progress == 0
        assert recalculated.new_progress == 50
        assert recalculated.trigger == "check_in"


class TestSubmitRejections:
    """Invalid check-ins raise before anything is written."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("progress", [-1, 100.5, 120, float("nan")])
    async def test_out_of_range_progress(self, services, store, okr, progress):
        _, first, _ = okr
        with pytest.raises(InvalidInputError):
            await services.check_ins.submit_check_in(kr_request(first, new_progress=progress))
        assert store.check_ins == {}
        assert store.key_results[first.id].progress == 0

    @pytest.mark.asyncio
    async def test_unknown_entity(self, services, store):
        with pytest.raises(NotFoundError):
            await services.check_ins.submit_check_in(
                CheckInRequest(entity_type="key_result", entity_id="missing", new_progress=10)
            )
        assert store.check_ins == {}

    @pytest.mark.asyncio
    async def test_unknown_entity_type(self, services, okr):
        _, first, _ = okr
        with pytest.raises(InvalidInputError):
            await services.check_ins.submit_check_in(
                CheckInRequest(entity_type="initiative", entity_id=first.id, new_progress=10)
            )

    @pytest.mark.asyncio
    async def test_bad_as_of_date(self, services, okr):
        _, first, _ = okr
        with pytest.raises(InvalidInputError):
            await services.check_ins.submit_check_in(kr_request(first, new_progress=10, as_of_date="soon"))

    @pytest.mark.asyncio
    async def test_missing_progress(self, services, okr):
        _, first, _ = okr
        with pytest.raises(InvalidInputError):
            await services.check_ins.submit_check_in(kr_request(first, note="no numbers"))

    @pytest.mark.asyncio
    async def test_value_only_needs_key_result(self, services, seed):
        objective = seed.objective()
        with pytest.raises(InvalidInputError):
            await services.check_ins.submit_check_in(
                CheckInRequest(entity_type="objective", entity_id=objective.id, new_value=5)
            )

    def test_parse_progress_accepts_boundaries(self):
        assert parse_progress(0, "new_progress") == 0
        assert parse_progress(100, "new_progress") == 100
        assert parse_progress(None, "new_progress") is None


# =============================================================================
# CORRECTIONS
# =============================================================================

class TestUpdateCheckIn:
    """Tests for update_check_in()."""

    @pytest.mark.asyncio
    async def test_correcting_latest_replays_cascade(self, services, store, okr, published):
        objective, first, _ = okr
        await services.check_ins.submit_check_in(
            kr_request(first, new_progress=40, as_of_date="2025-02-01")
        )
        latest = await services.check_ins.submit_check_in(
            kr_request(first, new_progress=60, as_of_date="2025-02-10")
        )

        result = await services.check_ins.update_check_in(
            latest.check_in.id, CheckInCorrection(new_progress=80)
        )

        assert result.cascaded is True
        assert result.check_in.updated_at == FIXED_NOW
        assert store.check_ins[latest.check_in.id].new_progress == 80
        assert store.key_results[first.id].progress == 80
        assert store.objectives[objective.id].progress == 50

        corrected = [e for e in published if isinstance(e, CheckInCorrected)]
        assert corrected[0].changed_fields == {"new_progress": 80}
        assert corrected[0].previous_values == {"new_progress": 60}

    @pytest.mark.asyncio
    async def test_correcting_older_check_in_replays_cascade(self, services, store, okr):
        """The corrected values are authoritative whatever their position."""
        objective, first, _ = okr
        older = await services.check_ins.submit_check_in(
            kr_request(first, new_progress=40, as_of_date="2025-02-01")
        )
        await services.check_ins.submit_check_in(
            kr_request(first, new_progress=60, as_of_date="2025-02-10")
        )
        store.objectives[objective.id] = store.objectives[objective.id].model_copy(update={"progress": 5})

        result = await services.check_ins.update_check_in(
            older.check_in.id, CheckInCorrection(new_progress=45, note="typo")
        )

        # (45 + 20) / 2 = 32.5
        assert result.cascaded is True
        assert result.objective_progress == 33
        assert store.check_ins[older.check_in.id].new_progress == 45
        assert store.key_results[first.id].progress == 45
        assert store.objectives[objective.id].progress == 33

    @pytest.mark.asyncio
    async def test_correcting_value_rederives_progress(self, services, store, seed, published):
        objective = seed.objective()
        key_result = seed.key_result(objective, initial_value=0, target_value=200, weight=100)
        submitted = await services.check_ins.submit_check_in(kr_request(key_result, new_value=100))
        assert submitted.check_in.new_progress == 50

        result = await services.check_ins.update_check_in(
            submitted.check_in.id, CheckInCorrection(new_value=200)
        )

        assert result.check_in.new_progress == 100
        assert store.check_ins[submitted.check_in.id].new_value == 200.0
        assert store.key_results[key_result.id].current_value == 200.0
        assert store.key_results[key_result.id].progress == 100
        assert store.objectives[objective.id].progress == 100

        corrected = [e for e in published if isinstance(e, CheckInCorrected)]
        assert corrected[0].changed_fields == {"new_value": 200.0, "new_progress": 100}

    @pytest.mark.asyncio
    async def test_explicit_progress_wins_over_value(self, services, store, seed):
        objective = seed.objective()
        key_result = seed.key_result(objective, initial_value=0, target_value=200, weight=100)
        submitted = await services.check_ins.submit_check_in(kr_request(key_result, new_value=100))

        result = await services.check_ins.update_check_in(
            submitted.check_in.id, CheckInCorrection(new_value=200, new_progress=70)
        )

        assert result.check_in.new_progress == 70
        assert store.key_results[key_result.id].progress == 70
        assert store.objectives[objective.id].progress == 70

    @pytest.mark.asyncio
    async def test_no_changes(self, services, store, okr):
        _, first, _ = okr
        submitted = await services.check_ins.submit_check_in(kr_request(first, new_progress=40))

        result = await services.check_ins.update_check_in(
            submitted.check_in.id, CheckInCorrection(new_progress=40)
        )
        assert result.cascaded is False
        assert store.check_ins[submitted.check_in.id].updated_at is None

    @pytest.mark.asyncio
    async def test_unknown_check_in(self, services):
        with pytest.raises(NotFoundError):
            await services.check_ins.update_check_in("missing", CheckInCorrection(new_progress=10))

    @pytest.mark.asyncio
    async def test_invalid_correction(self, services, store, okr):
        _, first, _ = okr
        submitted = await services.check_ins.submit_check_in(kr_request(first, new_progress=40))

        with pytest.raises(InvalidInputError):
            await services.check_ins.update_check_in(
                submitted.check_in.id, CheckInCorrection(new_progress=140)
            )
        assert store.check_ins[submitted.check_in.id].new_progress == 40


# =============================================================================
# QUERIES AND RECALCULATION
# =============================================================================

class TestQueries:
    """Tests for list_check_ins() and recalculate_objective()."""

    @pytest.mark.asyncio
    async def test_list_ordered_by_as_of_date(self, services, okr):
        _, first, _ = okr
        await services.check_ins.submit_check_in(kr_request(first, new_progress=60, as_of_date="2025-02-10"))
        await services.check_ins.submit_check_in(kr_request(first, new_progress=40, as_of_date="2025-02-01"))

        trajectory = await services.check_ins.list_check_ins("key_result", first.id)
        assert [c.new_progress for c in trajectory] == [40, 60]

    @pytest.mark.asyncio
    async def test_recalculate_objective(self, services, store, okr):
        objective, first, _ = okr
        store.key_results[first.id] = store.key_results[first.id].model_copy(update={"progress": 100})

        progress = await services.check_ins.recalculate_objective(objective.id)

        assert progress == 60
        assert store.objectives[objective.id].progress == 60

    @pytest.mark.asyncio
    async def test_recalculate_manual_objective(self, services, seed):
        objective = seed.objective(progress_mode=ProgressMode.MANUAL, progress=33)
        seed.key_result(objective, progress=100)
        assert await services.check_ins.recalculate_objective(objective.id) == 33

    @pytest.mark.asyncio
    async def test_recalculate_without_key_results(self, services, store, seed):
        objective = seed.objective(progress=70)
        assert await services.check_ins.recalculate_objective(objective.id) == 0
        assert store.objectives[objective.id].progress == 0

    @pytest.mark.asyncio
    async def test_recalculate_unknown(self, services):
        with pytest.raises(NotFoundError):
            await services.check_ins.recalculate_objective("missing")


# =============================================================================
# CONCURRENCY
# =============================================================================

class ConflictingUnitOfWork(InMemoryUnitOfWork):
    """Simulates another writer bumping an Objective just before commit."""

    def __init__(self, store, state):
        super().__init__(store)
        self._state = state

    async def commit(self) -> None:
        if self._state["conflicts"] and self._buffer.expected_versions:
            self._state["conflicts"] -= 1
            for objective_id in self._buffer.expected_versions:
                stored = self._store.objectives[objective_id]
                self._store.objectives[objective_id] = stored.model_copy(
                    update={"version": stored.version + 1}
                )
        await super().commit()


class YieldingKeyResultRepository(InMemoryKeyResultRepository):
    """Hands control to the event loop right after reading siblings."""

    async def list_by_objective(self, objective_id: str):
        key_results = await super().list_by_objective(objective_id)
        await asyncio.sleep(0)
        return key_results


class InterleavingUnitOfWork(InMemoryUnitOfWork):

    def __init__(self, store):
        super().__init__(store)
        self._key_results = YieldingKeyResultRepository(store, self._buffer)


class TestConcurrency:
    """Concurrent check-ins against one Objective."""

    @pytest.mark.asyncio
    async def test_parallel_check_ins_lose_no_update(self, services, store, seed):
        objective = seed.objective()
        key_results = [seed.key_result(objective, progress=0, weight=10) for _ in range(10)]

        await asyncio.gather(*[
            services.check_ins.submit_check_in(kr_request(kr, new_progress=10 * (i + 1)))
            for i, kr in enumerate(key_results)
        ])

        # mean of 10..100
        assert store.objectives[objective.id].progress == 55
        assert store.objectives[objective.id].version == objective.version + 10
        assert len(store.check_ins) == 10

    @pytest.mark.asyncio
    async def test_separate_lock_registries_still_converge(self, store, seed, settings):
        """
        Two services without a shared lock rely on the version check.

        Both units of work read the siblings before either commits, and each
        recompute alone leaves the rounded progress at 50.
        """
        objective = seed.objective()
        a = seed.key_result(objective, progress=50, weight=40)
        b = seed.key_result(objective, progress=50, weight=10)
        seed.key_result(objective, progress=50, weight=50)
        store.objectives[objective.id] = store.objectives[objective.id].model_copy(update={"progress": 50})
        first = CheckInService(lambda: InterleavingUnitOfWork(store), locks=ObjectiveLocks(), settings=settings)
        second = CheckInService(lambda: InterleavingUnitOfWork(store), locks=ObjectiveLocks(), settings=settings)

        await asyncio.gather(
            first.submit_check_in(kr_request(a, new_progress=51)),
            second.submit_check_in(kr_request(b, new_progress=51)),
        )

        # (40 * 51 + 10 * 51 + 50 * 50) / 100 = 50.5
        assert store.key_results[a.id].progress == 51
        assert store.key_results[b.id].progress == 51
        assert store.objectives[objective.id].progress == 51
        assert store.objectives[objective.id].version == objective.version + 2
        assert len(store.check_ins) == 2

    @pytest.mark.asyncio
    async def test_unchanged_rollup_still_bumps_version(self, services, store, okr):
        objective, _, second = okr
        store.objectives[objective.id] = store.objectives[objective.id].model_copy(update={"progress": 10})

        result = await services.check_ins.submit_check_in(kr_request(second, new_progress=20))

        assert result.objective_progress == 10
        assert store.objectives[objective.id].version == objective.version + 1

    @pytest.mark.asyncio
    async def test_version_conflict_is_retried(self, store, okr, settings):
        objective, first, _ = okr
        state = {"conflicts": 1}
        service = CheckInService(lambda: ConflictingUnitOfWork(store, state), settings=settings)

        result = await service.submit_check_in(kr_request(first, new_progress=80))

        assert result.objective_progress == 50
        assert state["conflicts"] == 0
        assert len(store.check_ins) == 1
        assert store.objectives[objective.id].progress == 50

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, okr, settings):
        _, first, _ = okr
        state = {"conflicts": 100}
        service = CheckInService(lambda: ConflictingUnitOfWork(store, state), settings=settings)

        with pytest.raises(ConcurrentUpdateError):
            await service.submit_check_in(kr_request(first, new_progress=80))

        assert store.check_ins == {}
        assert store.key_results[first.id].progress == 0
        assert state["conflicts"] == 100 - settings.check_ins.cascade_max_attempts
