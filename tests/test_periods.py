"""
tests/test_periods.py

Period classification is calendar-boundary based: month lengths and ISO
weeks are checked explicitly, never inferred from a day count.
"""

from datetime import date, timedelta

import pytest

from adpulse.core.errors import InvalidRange
from adpulse.core.periods import (
    PeriodKind,
    classify,
    current_periods,
    decompose,
    is_closed,
    month_period,
    parse_period_id,
    retention_horizon,
    validate,
    week_period,
)

TODAY = date(2025, 4, 16)


class TestMonthly:
    @pytest.mark.parametrize(
        "start,end",
        [
            (date(2024, 2, 1), date(2024, 2, 29)),  # leap February
            (date(2025, 2, 1), date(2025, 2, 28)),  # non-leap February
            (date(2025, 4, 1), date(2025, 4, 30)),
            (date(2025, 3, 1), date(2025, 3, 31)),
            (date(2100, 2, 1), date(2100, 2, 28)),  # century, not leap
        ],
    )
    def test_full_calendar_month_is_monthly(self, start, end):
        period = classify(start, end)
        assert period.kind is PeriodKind.MONTHLY
        assert period.id == f"{start.year}-{start.month:02d}"

    def test_leap_february_truncated_is_custom(self):
        assert classify(date(2024, 2, 1), date(2024, 2, 28)).kind is PeriodKind.CUSTOM

    def test_cross_month_span_of_month_length_is_custom(self):
        # 31 days, but not one calendar month
        assert classify(date(2025, 3, 15), date(2025, 4, 14)).kind is PeriodKind.CUSTOM

    def test_end_in_next_month_is_custom(self):
        assert classify(date(2025, 1, 1), date(2025, 2, 28)).kind is PeriodKind.CUSTOM


class TestWeekly:
    def test_monday_to_sunday_is_weekly(self):
        period = classify(date(2025, 4, 14), date(2025, 4, 20))
        assert period.kind is PeriodKind.WEEKLY
        assert period.id == "2025-W16"

    @pytest.mark.parametrize("offset", range(0, 60, 7))
    def test_every_monday_start_is_weekly_and_shift_is_custom(self, offset):
        monday = date(2025, 1, 6) + timedelta(days=offset)
        assert classify(monday, monday + timedelta(days=6)).kind is PeriodKind.WEEKLY
        shifted = monday + timedelta(days=1)
        assert classify(shifted, shifted + timedelta(days=6)).kind is PeriodKind.CUSTOM

    def test_iso_year_boundary(self):
        # Monday 2024-12-30 starts ISO week 1 of 2025
        assert classify(date(2024, 12, 30), date(2025, 1, 5)).id == "2025-W01"

    def test_eight_days_is_custom(self):
        assert classify(date(2025, 4, 14), date(2025, 4, 21)).kind is PeriodKind.CUSTOM


class TestValidate:
    def test_start_after_end(self):
        with pytest.raises(InvalidRange):
            validate(date(2025, 4, 2), date(2025, 4, 1), TODAY, 37)

    def test_custom_end_in_future(self):
        with pytest.raises(InvalidRange):
            validate(date(2025, 4, 10), date(2025, 4, 17), TODAY, 37)

    def test_current_month_may_end_in_future(self):
        period = validate(date(2025, 4, 1), date(2025, 4, 30), TODAY, 37)
        assert period.kind is PeriodKind.MONTHLY

    def test_future_month_rejected(self):
        with pytest.raises(InvalidRange):
            validate(date(2025, 5, 1), date(2025, 5, 31), TODAY, 37)

    def test_before_retention_horizon(self):
        assert retention_horizon(TODAY, 37) == date(2022, 3, 1)
        with pytest.raises(InvalidRange):
            validate(date(2022, 2, 1), date(2022, 2, 28), TODAY, 37)
        assert validate(date(2022, 3, 1), date(2022, 3, 31), TODAY, 37).id == "2022-03"


class TestHelpers:
    def test_current_periods(self):
        month, week = current_periods(TODAY)
        assert month.id == "2025-04"
        assert week.id == "2025-W16"
        assert week.start == date(2025, 4, 14)

    def test_is_closed(self):
        assert is_closed(month_period(date(2025, 3, 5)), TODAY)
        assert not is_closed(month_period(TODAY), TODAY)

    def test_parse_period_id_round_trips(self):
        assert parse_period_id("2025-03") == month_period(date(2025, 3, 1))
        assert parse_period_id("2025-W01") == week_period(date(2024, 12, 30))

    def test_parse_period_id_rejects_garbage(self):
        with pytest.raises(InvalidRange):
            parse_period_id("March")

    def test_decompose_long_range_into_months(self):
        parts = decompose(date(2025, 1, 15), date(2025, 2, 20))
        assert [p.id for p in parts] == ["2025-01", "2025-02"]

    def test_decompose_short_range_into_weeks(self):
        parts = decompose(date(2025, 4, 2), date(2025, 4, 10))
        assert [p.id for p in parts] == ["2025-W14", "2025-W15"]
