"""
Period resolution for pace classification.

Periods are half-open ``[start, end)`` ranges of naive UTC datetimes. A
quarter starts on the first day of its first month; the fiscal year may
start in any month, in which case Q1 begins in that month and the fiscal
year is named after the calendar year it starts in.
"""

from datetime import datetime
from typing import Any, Optional, Tuple

from domain.exceptions import InvalidInputError
from domain.timeutil import parse_datetime, utc_now
from domain.value_objects import PacePeriod


def _month_start(year: int, month: int) -> datetime:
    """First instant of ``month`` (1-based, may overflow past 12)."""
    start_year = year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    try:
        return datetime(start_year, month, 1)
    except ValueError:
        raise InvalidInputError(f"Year out of range: {year}", "year", year) from None


def _check_fiscal_month(fiscal_year_start_month: int) -> None:
    if not 1 <= fiscal_year_start_month <= 12:
        raise InvalidInputError(
            f"Fiscal year start month must be 1-12, got {fiscal_year_start_month}",
            "fiscal_year_start_month",
            fiscal_year_start_month,
        )


def quarter_date_range(quarter: int, year: int, fiscal_year_start_month: int = 1) -> PacePeriod:
    """
    Date range of one quarter.

    Examples:
        Q1 2025 -> [2025-01-01, 2025-04-01)
        Q1 2025 with an April fiscal year -> [2025-04-01, 2025-07-01)
    """
    if quarter not in (1, 2, 3, 4):
        raise InvalidInputError(f"Quarter must be 1-4, got {quarter}", "quarter", quarter)
    _check_fiscal_month(fiscal_year_start_month)

    first_month = fiscal_year_start_month + (quarter - 1) * 3
    return PacePeriod(
        start=_month_start(year, first_month),
        end=_month_start(year, first_month + 3),
    )


def year_date_range(year: int, fiscal_year_start_month: int = 1) -> PacePeriod:
    """Date range of a whole (fiscal) year."""
    _check_fiscal_month(fiscal_year_start_month)
    return PacePeriod(
        start=_month_start(year, fiscal_year_start_month),
        end=_month_start(year, fiscal_year_start_month + 12),
    )


def current_quarter(now: Optional[datetime] = None, fiscal_year_start_month: int = 1) -> Tuple[int, int]:
    """
    Quarter and fiscal year containing ``now``.

    Returns:
        (quarter, fiscal_year)
    """
    _check_fiscal_month(fiscal_year_start_month)
    now = now or utc_now()
    months_in = (now.month - fiscal_year_start_month) % 12
    fiscal_year = now.year if now.month >= fiscal_year_start_month else now.year - 1
    return months_in // 3 + 1, fiscal_year


def resolve_period(
    quarter: Optional[int] = None,
    year: Optional[int] = None,
    start_date: Any = None,
    end_date: Any = None,
    now: Optional[datetime] = None,
    fiscal_year_start_month: int = 1,
) -> PacePeriod:
    """
    Resolve the period an entity is measured against.

    Resolution order:
    1. Explicit start and end dates, when both parse and end is after start
    2. The quarter of ``year`` (quarter 1-4)
    3. The full year (quarter 0 or None)

    A missing year falls back to the fiscal year containing ``now``.

    Raises:
        InvalidInputError: If quarter is outside 0-4
    """
    start = parse_datetime(start_date)
    end = parse_datetime(end_date)
    if start is not None and end is not None and end > start:
        return PacePeriod(start=start, end=end)

    if quarter is not None and quarter not in (0, 1, 2, 3, 4):
        raise InvalidInputError(f"Quarter must be 0-4, got {quarter}", "quarter", quarter)

    if year is None:
        _, year = current_quarter(now, fiscal_year_start_month)

    if quarter:
        return quarter_date_range(quarter, year, fiscal_year_start_month)
    return year_date_range(year, fiscal_year_start_month)


def elapsed_fraction(period: PacePeriod, now: datetime) -> float:
    """Share of the period elapsed at ``now``, clamped to [0, 1]."""
    total = period.total_seconds
    if total <= 0:
        return 1.0 if now >= period.end else 0.0
    elapsed = (now - period.start).total_seconds() / total
    return max(0.0, min(1.0, elapsed))
