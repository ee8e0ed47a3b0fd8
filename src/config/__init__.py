"""Configuration module for the OKR analytics engine."""

from .database import DatabaseSettings, get_database_settings
from .settings import (
    Settings,
    PaceSettings,
    WeightSettings,
    CheckInSettings,
    LoggingSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "Settings",
    "PaceSettings",
    "WeightSettings",
    "CheckInSettings",
    "LoggingSettings",
    "get_settings",
]
