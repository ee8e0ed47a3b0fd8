"""
Team health report.

Aggregates pace classifications of many entities into summary counts and a
prioritized list of the items that need attention.
"""

from typing import Iterable, List, Optional

from pydantic import BaseModel, Field

from domain.aggregates import EntityType
from domain.value_objects import PaceMetrics, PaceStatus, RiskSignal


# Lower sorts first
STATUS_PRIORITY = {
    PaceStatus.BEHIND: 0,
    PaceStatus.AT_RISK: 1,
    PaceStatus.ON_TRACK: 2,
    PaceStatus.AHEAD: 3,
}

SIGNAL_PRIORITY = {
    RiskSignal.STALLED: 0,
    RiskSignal.ATTENTION_NEEDED: 1,
    RiskSignal.NONE: 2,
}


class HealthEntry(BaseModel):
    """One classified entity."""
    entity_id: str
    title: str
    entity_type: EntityType = EntityType.OBJECTIVE
    metrics: PaceMetrics
    description: Optional[str] = None

    @property
    def needs_attention(self) -> bool:
        return (
            self.metrics.status in (PaceStatus.BEHIND, PaceStatus.AT_RISK)
            or self.metrics.risk_signal != RiskSignal.NONE
        )


class HealthSummary(BaseModel):
    """Counts per pace status and risk signal."""
    total: int = 0
    ahead: int = 0
    on_track: int = 0
    at_risk: int = 0
    behind: int = 0
    stalled: int = 0
    attention_needed: int = 0
    average_progress: float = 0.0


class TeamHealthReport(BaseModel):
    """Summary plus a prioritized attention list."""
    summary: HealthSummary = Field(default_factory=HealthSummary)
    needs_attention: List[HealthEntry] = Field(default_factory=list)
    entries: List[HealthEntry] = Field(default_factory=list)

    @classmethod
    def build(cls, items: Iterable) -> "TeamHealthReport":
        """
        Build a report.

        Args:
            items: ``HealthEntry`` objects or ``(entity_id, title, PaceMetrics)`` tuples

        Attention order: behind before at_risk before everything else, then
        stalled before attention_needed, then the largest shortfall first.
        """
        entries = [cls._entry(item) for item in items]

        summary = HealthSummary(total=len(entries))
        for entry in entries:
            status_field = entry.metrics.status.value
            setattr(summary, status_field, getattr(summary, status_field) + 1)
            if entry.metrics.risk_signal == RiskSignal.STALLED:
                summary.stalled += 1
            elif entry.metrics.risk_signal == RiskSignal.ATTENTION_NEEDED:
                summary.attention_needed += 1

        if entries:
            total_progress = sum(e.metrics.actual_progress for e in entries)
            summary.average_progress = round(total_progress / len(entries), 1)

        flagged = sorted(
            (e for e in entries if e.needs_attention),
            key=lambda e: (
                STATUS_PRIORITY[e.metrics.status],
                SIGNAL_PRIORITY[e.metrics.risk_signal],
                e.metrics.gap,
            ),
        )
        return cls(summary=summary, needs_attention=flagged, entries=entries)

    @staticmethod
    def _entry(item) -> HealthEntry:
        if isinstance(item, HealthEntry):
            return item
        entity_id, title, metrics = item
        return HealthEntry(entity_id=entity_id, title=title, metrics=metrics)
