"""
Persistence layer for the OKR analytics engine.

- async_engine: SQLAlchemy async engine, sessions and schema creation
- models: table definitions
- repositories: async SQL implementations of the domain repositories
- unit_of_work: transactional Unit of Work over an async session
- memory: in-memory repositories and Unit of Work
"""

from .async_engine import (
    create_engine,
    get_async_engine,
    get_async_session,
    get_async_session_factory,
    get_session_factory,
    check_database_connection,
    init_schema,
    drop_schema,
    close_database,
    reset_engine_state,
)
from .unit_of_work import UnitOfWork, UnitOfWorkFactory, unit_of_work
from .memory import InMemoryStore, InMemoryUnitOfWork

__all__ = [
    "create_engine",
    "get_async_engine",
    "get_async_session",
    "get_async_session_factory",
    "get_session_factory",
    "check_database_connection",
    "init_schema",
    "drop_schema",
    "close_database",
    "reset_engine_state",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "unit_of_work",
    "InMemoryStore",
    "InMemoryUnitOfWork",
]
