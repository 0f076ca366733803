"""AdPulse - Period Classifier.

Single source of truth for what a "month" or a "week" is. Both the read path
and the refresh path call ``classify``; nothing else re-derives period shape.

Monthly: first to last calendar day of the same month.
Weekly:  exactly 7 days starting on a Monday (ISO week).
Custom:  anything else. Custom periods have no id and are never cached.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import List, Optional

from adpulse.core.errors import InvalidRange


class PeriodKind(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Period:
    kind: PeriodKind
    start: date
    end: date
    id: Optional[str] = None

    @property
    def is_canonical(self) -> bool:
        return self.kind is not PeriodKind.CUSTOM

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        label = self.id or "custom"
        return f"{label} ({self.start.isoformat()} → {self.end.isoformat()})"


def _last_day_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def month_id(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def week_id(d: date) -> str:
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def month_period(d: date) -> Period:
    """Calendar month containing ``d``."""
    start = d.replace(day=1)
    return Period(PeriodKind.MONTHLY, start, _last_day_of_month(d), month_id(d))


def week_period(d: date) -> Period:
    """ISO week (Monday to Sunday) containing ``d``."""
    start = d - timedelta(days=d.weekday())
    return Period(PeriodKind.WEEKLY, start, start + timedelta(days=6), week_id(start))


def classify(start: date, end: date) -> Period:
    """Determine the shape of ``start``..``end`` by calendar boundaries."""
    if start.day == 1 and end == _last_day_of_month(start):
        return Period(PeriodKind.MONTHLY, start, end, month_id(start))
    if start.weekday() == 0 and (end - start).days == 6:
        return Period(PeriodKind.WEEKLY, start, end, week_id(start))
    return Period(PeriodKind.CUSTOM, start, end)


def parse_period_id(period_id: str) -> Period:
    """Inverse of ``Period.id``: ``2025-03`` or ``2025-W09``."""
    try:
        if "-W" in period_id:
            year, week = period_id.split("-W")
            monday = date.fromisocalendar(int(year), int(week), 1)
            return week_period(monday)
        year, month = period_id.split("-")
        return month_period(date(int(year), int(month), 1))
    except ValueError as e:
        raise InvalidRange(f"Unrecognised period id {period_id!r}") from e


def summary_type(period: Period) -> str:
    """Archive ``summary_type`` for a canonical period."""
    if not period.is_canonical:
        raise InvalidRange(f"Custom period {period} has no archive summary type")
    return period.kind.value


def is_closed(period: Period, today: date) -> bool:
    return period.end < today


def is_current(period: Period, today: date) -> bool:
    return period.start <= today <= period.end


def current_periods(today: date) -> List[Period]:
    """The in-progress month and ISO week."""
    return [month_period(today), week_period(today)]


def retention_horizon(today: date, months: int) -> date:
    """First day of the month ``months`` months before ``today``'s month."""
    index = today.year * 12 + (today.month - 1) - months
    return date(index // 12, index % 12 + 1, 1)


def validate(
    start: date,
    end: date,
    today: date,
    retention_months: int,
) -> Period:
    """Classify and check bounds.

    A canonical period containing ``today`` may end in the future: it is the
    in-progress month or week and is fetched upstream up to ``today``.
    """
    if start > end:
        raise InvalidRange(f"Start {start} is after end {end}")

    period = classify(start, end)

    horizon = retention_horizon(today, retention_months)
    if start < horizon:
        raise InvalidRange(
            f"Start {start} precedes the {retention_months}-month retention horizon ({horizon})"
        )

    if end > today and not (period.is_canonical and is_current(period, today)):
        raise InvalidRange(f"End {end} is in the future (today is {today})")

    return period


def decompose(start: date, end: date) -> List[Period]:
    """Canonical periods overlapped by a custom range.

    Ranges shorter than 28 days decompose into ISO weeks, longer ones into
    calendar months.
    """
    if start > end:
        raise InvalidRange(f"Start {start} is after end {end}")

    periods: List[Period] = []
    if (end - start).days + 1 < 28:
        cursor = week_period(start)
        while cursor.start <= end:
            periods.append(cursor)
            cursor = week_period(cursor.end + timedelta(days=1))
    else:
        cursor = month_period(start)
        while cursor.start <= end:
            periods.append(cursor)
            cursor = month_period(cursor.end + timedelta(days=1))
    return periods
