"""Pytest configuration and fixtures for test suite."""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("OKR_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")
os.environ.setdefault("DB_SQLITE_PATH", ":memory:")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


def _reset_db_modules():
    """Reset database module globals to ensure clean state."""
    try:
        import database.async_engine as module
        module._async_engine = None
        module._async_session_factory = None
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def reset_database_globals():
    """Reset database module globals before and after each test."""
    _reset_db_modules()
    yield
    _reset_db_modules()


@pytest.fixture(autouse=True)
def reset_event_bus():
    """Give every test a fresh global event bus."""
    from domain.event_bus import reset_event_bus as reset
    reset()
    yield
    reset()


@pytest.fixture
def mock_async_session():
    """Provide a mock async session for testing."""
    from unittest.mock import AsyncMock
    return AsyncMock()


# =============================================================================
# OKR FIXTURES
# =============================================================================

# Fixed clock: day 45 of Q1 2025
FIXED_NOW = datetime(2025, 2, 15)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def settings():
    from config.settings import Settings
    return Settings()


@pytest.fixture
def store():
    """Empty in-memory store."""
    from database.memory import InMemoryStore
    return InMemoryStore()


@pytest.fixture
def services(store, settings):
    """Service set wired to the in-memory store with a fixed clock."""
    from services import CheckInService, ObjectiveLocks, OKRServices, PaceService, WeightService

    locks = ObjectiveLocks()
    check_ins = CheckInService(store.factory(), locks=locks, settings=settings, clock=lambda: FIXED_NOW)
    return OKRServices(
        check_ins=check_ins,
        weights=WeightService(
            store.factory(), locks=locks, settings=settings, check_ins=check_ins, clock=lambda: FIXED_NOW
        ),
        pace=PaceService(store.factory(), settings=settings),
        locks=locks,
    )


@pytest.fixture
def seed(store):
    """
    Seed helpers for the in-memory store.

    Usage:
        objective = seed.objective(title="Grow revenue")
        kr = seed.key_result(objective, progress=80, weight=50)
    """
    from domain.aggregates import BigRock, KeyResult, Objective

    class Seeder:
        def __init__(self):
            self._created = datetime(2025, 1, 1)

        def _next_created(self):
            self._created += timedelta(minutes=1)
            return self._created

        def objective(self, **fields):
            fields.setdefault("title", "Objective")
            fields.setdefault("quarter", 1)
            fields.setdefault("year", 2025)
            fields.setdefault("created_at", self._next_created())
            return store.add_objective(Objective(**fields))

        def key_result(self, objective, **fields):
            fields.setdefault("title", "Key result")
            fields.setdefault("created_at", self._next_created())
            return store.add_key_result(
                KeyResult(objective_id=objective.id, tenant_id=objective.tenant_id, **fields)
            )

        def big_rock(self, objective=None, **fields):
            fields.setdefault("title", "Big rock")
            fields.setdefault("created_at", self._next_created())
            if objective is not None:
                fields.setdefault("objective_id", objective.id)
                fields.setdefault("tenant_id", objective.tenant_id)
            return store.add_big_rock(BigRock(**fields))

    return Seeder()
