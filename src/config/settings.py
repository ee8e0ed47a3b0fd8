"""Application settings using Pydantic Settings.

Centralized configuration for the OKR analytics engine.

The engine itself never reads these settings: services convert them into
explicit value objects (``PaceThresholds``, ``WeightPolicy``) and pass them
in. Every value can be overridden through environment variables, e.g.
``PACE_BEHIND_THRESHOLD=40`` or ``WEIGHT_BALANCE_STRATEGY=equal``.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.value_objects import BalanceStrategy, PaceThresholds, WeightPolicy

logger = logging.getLogger(__name__)


class PaceSettings(BaseSettings):
    """Pace & risk classifier thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="PACE_",
        extra="ignore",
    )

    ahead_threshold: float = Field(default=15.0, ge=0, description="Points above expected to be ahead")
    at_risk_threshold: float = Field(default=15.0, ge=0, description="Points below expected to be at risk")
    behind_threshold: float = Field(default=35.0, ge=0, description="Points below expected to be behind")
    staleness_days: int = Field(default=14, ge=0, description="Days without check-in before attention is needed")
    completion_progress: int = Field(default=100, ge=0, le=100, description="Progress treated as complete")
    fiscal_year_start_month: int = Field(default=1, ge=1, le=12, description="First month of Q1")

    @model_validator(mode="after")
    def _check_ordering(self) -> "PaceSettings":
        if self.behind_threshold < self.at_risk_threshold:
            raise ValueError("PACE_BEHIND_THRESHOLD must be >= PACE_AT_RISK_THRESHOLD")
        return self


class WeightSettings(BaseSettings):
    """Weight ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="WEIGHT_",
        extra="ignore",
    )

    tolerance: float = Field(default=0.1, ge=0, description="Allowed deviation from 100")
    default_weight: float = Field(default=25.0, ge=0, le=100, description="Weight used when unset")
    precision: int = Field(default=2, ge=0, le=6, description="Decimal places kept on weights")
    balance_strategy: BalanceStrategy = Field(
        default=BalanceStrategy.PROPORTIONAL,
        description="proportional or equal split among unlocked items"
    )
    absorb_rounding_residual: bool = Field(
        default=True,
        description="Move rounding remainder onto the largest adjustable weight"
    )


class CheckInSettings(BaseSettings):
    """Check-in log configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CHECKIN_",
        extra="ignore",
    )

    cascade_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Re-read and recompute attempts after a concurrent objective write"
    )
    publish_events: bool = Field(default=True, description="Publish domain events after commit")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON log lines")
    file: Optional[str] = Field(default=None, description="Optional log file path")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="OKR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="OKR Analytics Engine", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # Nested settings (loaded separately)
    @property
    def pace(self) -> PaceSettings:
        return PaceSettings()

    @property
    def weights(self) -> WeightSettings:
        return WeightSettings()

    @property
    def check_ins(self) -> CheckInSettings:
        return CheckInSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")

    def pace_thresholds(self) -> PaceThresholds:
        """Explicit classifier configuration built from PACE_* settings."""
        pace = self.pace
        return PaceThresholds(
            ahead_threshold=pace.ahead_threshold,
            at_risk_threshold=pace.at_risk_threshold,
            behind_threshold=pace.behind_threshold,
            staleness_days=pace.staleness_days,
            completion_progress=pace.completion_progress,
            fiscal_year_start_month=pace.fiscal_year_start_month,
        )

    def weight_policy(self) -> WeightPolicy:
        """Explicit ledger configuration built from WEIGHT_* settings."""
        weights = self.weights
        return WeightPolicy(
            tolerance=weights.tolerance,
            default_weight=weights.default_weight,
            precision=weights.precision,
            balance_strategy=weights.balance_strategy,
            absorb_rounding_residual=weights.absorb_rounding_residual,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
