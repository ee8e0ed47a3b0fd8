"""Database configuration using Pydantic Settings.

Supports both PostgreSQL (production) and SQLite (development/testing).
Configuration is loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Database configuration settings.

    All settings can be overridden via environment variables with DB_ prefix.

    Example environment variables:
        DB_DRIVER=postgresql+asyncpg
        DB_HOST=localhost
        DB_NAME=okr_engine
        DB_USER=okr
        DB_PASSWORD=secret
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # postgresql+asyncpg (production) or sqlite+aiosqlite (dev)
    driver: str = Field(
        default="sqlite+aiosqlite",
        description="Database driver (postgresql+asyncpg or sqlite+aiosqlite)"
    )

    # PostgreSQL settings
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="okr_engine", description="Database name")
    user: str = Field(default="", description="Database user")
    password: str = Field(default="", description="Database password")

    # SQLite settings; ":memory:" keeps everything in process
    sqlite_path: str = Field(
        default="data/okr.db",
        description="Path to SQLite database file, or :memory:"
    )

    # Connection pool settings (PostgreSQL only)
    pool_size: int = Field(default=10, ge=1, le=100)
    max_overflow: int = Field(default=20, ge=0, le=100)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=1800, ge=60)
    pool_pre_ping: bool = Field(default=True)

    echo_sql: bool = Field(default=False, description="Log all SQL statements")
    query_timeout: int = Field(default=30, ge=1, description="Query timeout in seconds")

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite."""
        return "sqlite" in self.driver.lower()

    @computed_field
    @property
    def is_postgres(self) -> bool:
        """Check if using PostgreSQL."""
        return "postgresql" in self.driver.lower()

    @computed_field
    @property
    def is_memory(self) -> bool:
        """Check if using an in-memory SQLite database."""
        return self.is_sqlite and self.sqlite_path == ":memory:"

    @computed_field
    @property
    def async_url(self) -> str:
        """
        Get the async database URL.

        Returns:
            Database URL for async connections.
        """
        if self.is_sqlite:
            if self.is_memory:
                return "sqlite+aiosqlite:///:memory:"
            path = Path(self.sqlite_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{path.absolute()}"

        auth = ""
        if self.user:
            auth = self.user
            if self.password:
                auth += f":{self.password}"
            auth += "@"

        return f"{self.driver}://{auth}{self.host}:{self.port}/{self.name}"

    def get_connect_args(self) -> dict:
        """Database-specific connection arguments for SQLAlchemy."""
        if self.is_sqlite:
            return {
                "check_same_thread": False,
                "timeout": self.query_timeout,
            }
        return {"command_timeout": self.query_timeout}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """
    Get cached database settings instance.

    Returns:
        DatabaseSettings: Cached settings loaded from environment.
    """
    return DatabaseSettings()
