"""
Pace & Risk Classifier.

Compares actual progress with the progress expected from the time elapsed
in the entity's period, then looks at the check-in trajectory for risk
signals and a forward projection.

Status (gap = actual - expected, in percentage points):
    ahead     gap > ahead_threshold
    behind    -gap > behind_threshold
    at_risk   -gap > at_risk_threshold
    on_track  otherwise

Risk signal:
    stalled           latest check-in did not move progress past the previous one
    attention_needed  not complete and no check-in within staleness_days
    none              otherwise

The classifier is pure. ``now`` is injectable and defaults to the current
UTC time; thresholds come in as an explicit ``PaceThresholds``.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from statistics import StatisticsError, linear_regression
from typing import Any, Iterable, List, Optional

from domain.exceptions import InvalidInputError
from domain.timeutil import parse_datetime, to_naive_utc, utc_now
from domain.value_objects import (
    PaceMetrics,
    PacePeriod,
    PaceStatus,
    PaceThresholds,
    RiskSignal,
    TrajectoryPoint,
)

from .decimal_math import quantize, round_half_up, to_float
from .periods import elapsed_fraction, resolve_period

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

STATUS_LABELS = {
    PaceStatus.AHEAD: "Ahead of pace",
    PaceStatus.ON_TRACK: "On track",
    PaceStatus.AT_RISK: "At risk",
    PaceStatus.BEHIND: "Behind pace",
}


def _rounded(value: float) -> float:
    return to_float(quantize(value, 2))


def _field(record: Any, *names: str) -> Any:
    """Read the first present attribute or key among ``names``."""
    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return None


def _progress_value(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not 0 <= value <= 100:
        return None
    return value


def to_trajectory(check_ins: Iterable[Any]) -> List[TrajectoryPoint]:
    """
    Coerce check-ins into trajectory points ordered by ``as_of_date``.

    Accepts ``CheckIn`` models, ``TrajectoryPoint`` objects or mappings
    (snake_case or camelCase keys). Records without a parseable date or
    with a missing or out-of-range new progress are skipped with a
    warning. Records sharing a date keep their input order.
    """
    points = []
    for index, record in enumerate(check_ins or ()):
        as_of = parse_datetime(_field(record, "as_of_date", "asOfDate"))
        new_progress = _progress_value(_field(record, "new_progress", "newProgress"))
        if as_of is None or new_progress is None:
            logger.warning(
                f"Skipping malformed check-in at position {index}",
                extra={"extra_data": {"record_id": _field(record, "id")}},
            )
            continue
        points.append(TrajectoryPoint(
            as_of_date=as_of,
            previous_progress=_progress_value(_field(record, "previous_progress", "previousProgress")),
            new_progress=new_progress,
        ))

    points.sort(key=lambda p: p.as_of_date)
    return points


class PaceClassifier:
    """
    Classifies an entity's pace against its period.

    Usage:
        classifier = PaceClassifier(PaceThresholds(staleness_days=7))
        metrics = classifier.classify(progress=20, quarter=1, year=2025,
                                      check_ins=history, now=as_of)
        label = classifier.describe(metrics)
    """

    def __init__(self, thresholds: Optional[PaceThresholds] = None):
        self.thresholds = thresholds or PaceThresholds()

    def classify(
        self,
        progress: float,
        quarter: Optional[int] = None,
        year: Optional[int] = None,
        check_ins: Iterable[Any] = (),
        start_date: Any = None,
        end_date: Any = None,
        now: Optional[datetime] = None,
    ) -> PaceMetrics:
        """
        Classify pace and risk for one entity.

        Args:
            progress: Current progress, 0-100
            quarter: 1-4, or 0/None for an annual entity
            year: Period year; None uses the year of ``now``
            check_ins: Check-in history in any order
            start_date: Explicit period start, overrides quarter/year with end_date
            end_date: Explicit period end (exclusive)
            now: Evaluation instant

        Raises:
            InvalidInputError: If progress is not a number in [0, 100] or
                quarter is outside 0-4
        """
        actual = _progress_value(progress)
        if actual is None:
            raise InvalidInputError(f"Progress must be between 0 and 100, got {progress!r}", "progress", progress)

        now = to_naive_utc(now) if now is not None else utc_now()
        period = resolve_period(
            quarter=quarter,
            year=year,
            start_date=start_date,
            end_date=end_date,
            now=now,
            fiscal_year_start_month=self.thresholds.fiscal_year_start_month,
        )
        points = to_trajectory(check_ins)

        fraction = elapsed_fraction(period, now)
        expected = fraction * 100.0
        gap = actual - expected

        days_since = None
        if points:
            days_since = max(0, (now - points[-1].as_of_date).days)

        velocity, projected = self._project(points, period, actual)

        return PaceMetrics(
            status=self._status(gap),
            risk_signal=self._risk_signal(points, actual, days_since, period, now),
            days_since_last_check_in=days_since,
            projected_end_progress=_rounded(projected),
            expected_progress=_rounded(expected),
            actual_progress=actual,
            gap=_rounded(gap),
            elapsed_fraction=fraction,
            velocity=_rounded(velocity) if velocity is not None else None,
            check_in_count=len(points),
            is_period_ended=now >= period.end,
            period_start=period.start,
            period_end=period.end,
        )

    def describe(self, metrics: PaceMetrics) -> str:
        """
        Short label for a classification.

        Examples:
            "On track"
            "At risk • Projected: 62% • Stalled"
            "80% achieved • No check-in for 20 days"
        """
        if metrics.is_period_ended:
            description = f"{round_half_up(metrics.actual_progress)}% achieved"
        else:
            description = STATUS_LABELS[metrics.status]
            if metrics.velocity is not None and metrics.velocity > 0:
                description += f" • Projected: {round_half_up(metrics.projected_end_progress)}%"

        if metrics.risk_signal == RiskSignal.STALLED:
            description += " • Stalled"
        elif metrics.risk_signal == RiskSignal.ATTENTION_NEEDED:
            if metrics.days_since_last_check_in is None:
                description += " • No check-ins yet"
            else:
                description += f" • No check-in for {metrics.days_since_last_check_in} days"

        return description

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _status(self, gap: float) -> PaceStatus:
        t = self.thresholds
        if gap > t.ahead_threshold:
            return PaceStatus.AHEAD
        if -gap > t.behind_threshold:
            return PaceStatus.BEHIND
        if -gap > t.at_risk_threshold:
            return PaceStatus.AT_RISK
        return PaceStatus.ON_TRACK

    def _risk_signal(
        self,
        points: List[TrajectoryPoint],
        actual: float,
        days_since: Optional[int],
        period: PacePeriod,
        now: datetime,
    ) -> RiskSignal:
        if len(points) >= 2 and points[-1].new_progress - points[-2].new_progress <= 0:
            return RiskSignal.STALLED

        if actual >= self.thresholds.completion_progress:
            return RiskSignal.NONE

        staleness = self.thresholds.staleness_days
        if days_since is not None:
            if days_since > staleness:
                return RiskSignal.ATTENTION_NEEDED
        else:
            elapsed = (min(now, period.end) - period.start).total_seconds() / SECONDS_PER_DAY
            if elapsed > staleness:
                return RiskSignal.ATTENTION_NEEDED

        return RiskSignal.NONE

    @staticmethod
    def _project(points: List[TrajectoryPoint], period: PacePeriod, actual: float):
        """
        Least-squares trend through the trajectory.

        Returns:
            (velocity in points per day or None, projected progress at period end)
        """
        xs = [(p.as_of_date - period.start).total_seconds() / SECONDS_PER_DAY for p in points]
        if len(set(xs)) < 2:
            return None, actual

        ys = [p.new_progress for p in points]
        try:
            slope, intercept = linear_regression(xs, ys)
        except StatisticsError:
            logger.warning("Projection skipped: trajectory has no spread")
            return None, actual

        end_x = period.total_seconds / SECONDS_PER_DAY
        projected = max(0.0, min(100.0, slope * end_x + intercept))
        return slope, projected


# =============================================================================
# MODULE-LEVEL CONVENIENCE FUNCTIONS (default thresholds)
# =============================================================================

_default_classifier = PaceClassifier()


def classify_pace(
    progress: float,
    quarter: Optional[int] = None,
    year: Optional[int] = None,
    check_ins: Iterable[Any] = (),
    now: Optional[datetime] = None,
) -> PaceMetrics:
    """Classify with the default thresholds."""
    return _default_classifier.classify(progress, quarter, year, check_ins, now=now)


def describe_pace(metrics: PaceMetrics) -> str:
    """Fixed-template label for a classification."""
    return _default_classifier.describe(metrics)
