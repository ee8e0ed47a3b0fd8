"""
Services Module - Application services for the OKR analytics engine.

Application Services (orchestration):
- CheckInService: Check-in log and rollup cascade
- WeightService: Weight edits with rollup recompute
- PaceService: Pace classification and team health

Infrastructure Services:
- Logging and observability (logging_config)
"""

from dataclasses import dataclass
from typing import Optional

from config.settings import Settings, get_settings

from .check_in_service import CheckInService, ObjectiveLocks, UnitOfWorkFactory
from .logging_config import configure_from_settings
from .weight_service import WeightService
from .pace_service import PaceService


@dataclass
class OKRServices:
    """Services wired to one unit of work factory and one lock registry."""
    check_ins: CheckInService
    weights: WeightService
    pace: PaceService
    locks: ObjectiveLocks


def create_services(
    uow_factory: UnitOfWorkFactory,
    settings: Optional[Settings] = None,
    configure_logs: bool = False,
) -> OKRServices:
    """
    Build the service set sharing a single ObjectiveLocks registry.

    Args:
        uow_factory: Zero-argument unit of work factory
        settings: Settings to use; defaults to get_settings()
        configure_logs: Install root log handlers from LOG_* settings,
            for hosts that start the engine on its own

    Usage:
        store = InMemoryStore()
        services = create_services(store.factory())
        await services.check_ins.submit_check_in(request)
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_from_settings(settings.logging)
    locks = ObjectiveLocks()
    check_ins = CheckInService(uow_factory, locks=locks, settings=settings)
    return OKRServices(
        check_ins=check_ins,
        weights=WeightService(uow_factory, locks=locks, settings=settings, check_ins=check_ins),
        pace=PaceService(uow_factory, settings=settings),
        locks=locks,
    )


__all__ = [
    "CheckInService",
    "ObjectiveLocks",
    "WeightService",
    "PaceService",
    "OKRServices",
    "create_services",
]
