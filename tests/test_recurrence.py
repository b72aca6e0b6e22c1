from datetime import date, datetime, timezone

import pytest

from errors import InvalidInterval
from recurrence import (
    Custom,
    Daily,
    EveryDays,
    EveryMonths,
    EveryYears,
    IntervalUnit,
    Monthly,
    MonthlyOnDay,
    Weekly,
    add_months,
    describe,
    next_occurrence,
    reference_date,
)


def test_basic_rules():
    assert next_occurrence(date(2025, 3, 10), Daily()) == date(2025, 3, 11)
    assert next_occurrence(date(2025, 3, 10), Weekly()) == date(2025, 3, 17)
    assert next_occurrence(date(2025, 3, 10), Monthly()) == date(2025, 4, 10)


def test_monthly_clamp_is_frozen():
    feb = next_occurrence(date(2025, 1, 31), Monthly())
    assert feb == date(2025, 2, 28)
    # The day that came out of the clamp is the day carried forward.
    assert next_occurrence(feb, Monthly()) == date(2025, 3, 28)


def test_monthly_clamp_in_leap_year():
    assert next_occurrence(date(2024, 1, 31), Monthly()) == date(2024, 2, 29)


def test_custom_periods():
    start = date(2025, 1, 31)
    assert next_occurrence(start, Custom(3, IntervalUnit.day)) == date(2025, 2, 3)
    assert next_occurrence(start, Custom(2, IntervalUnit.week)) == date(2025, 2, 14)
    assert next_occurrence(start, Custom(3, IntervalUnit.month)) == date(2025, 4, 30)
    assert next_occurrence(date(2024, 2, 29), Custom(1, "year")) == date(2025, 2, 28)


def test_target_intervals():
    start = date(2025, 1, 15)
    assert next_occurrence(start, EveryDays(10)) == date(2025, 1, 25)
    assert next_occurrence(start, EveryMonths(2)) == date(2025, 3, 15)
    assert next_occurrence(start, EveryYears(1)) == date(2026, 1, 15)


def test_monthly_on_day_looks_at_current_month_first():
    assert next_occurrence(date(2025, 1, 10), MonthlyOnDay(15)) == date(2025, 1, 15)
    assert next_occurrence(date(2025, 1, 15), MonthlyOnDay(15)) == date(2025, 2, 15)
    assert next_occurrence(date(2025, 4, 5), MonthlyOnDay(31)) == date(2025, 4, 30)
    assert next_occurrence(date(2025, 4, 30), MonthlyOnDay(31)) == date(2025, 5, 31)


def test_invalid_intervals_rejected():
    with pytest.raises(InvalidInterval):
        Custom(0, IntervalUnit.day)
    with pytest.raises(InvalidInterval):
        Custom(1, "fortnight")
    with pytest.raises(InvalidInterval):
        EveryDays(-1)
    with pytest.raises(InvalidInterval):
        MonthlyOnDay(32)


def test_calendar_overflow_returns_input_unchanged(caplog):
    last = date(9999, 12, 31)
    with caplog.at_level("WARNING"):
        assert next_occurrence(last, Daily()) == last
        assert next_occurrence(date(9999, 12, 1), Monthly()) == date(9999, 12, 1)
    assert "recurrence_stalled" in caplog.text


def test_add_months_with_desired_day():
    assert add_months(date(2025, 2, 10), 0, desired_day=31) == date(2025, 2, 28)
    assert add_months(date(2025, 11, 30), 2) == date(2026, 1, 30)


def test_reference_date_uses_timezone():
    late_utc = datetime(2025, 3, 1, 23, 30, tzinfo=timezone.utc)
    assert reference_date(late_utc, "Europe/Berlin") == date(2025, 3, 2)
    assert reference_date(late_utc, "America/New_York") == date(2025, 3, 1)
    assert reference_date(date(2025, 3, 1), "Asia/Tokyo") == date(2025, 3, 1)


def test_describe():
    assert describe(Monthly()) == "monthly"
    assert describe(Custom(2, IntervalUnit.week)) == "every 2 week(s)"
    assert describe(MonthlyOnDay(5)) == "monthly on day 5"
