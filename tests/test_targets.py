from datetime import date

import pytest

from errors import InvalidAmount, InvalidInterval
from recurrence import Daily, EveryDays, EveryMonths, MonthlyOnDay
from targets import (
    ByDateTarget,
    CustomTarget,
    MonthlyTarget,
    NoDateTarget,
    WeeklyTarget,
    next_due_date,
    progress,
    reset_date,
)


def test_monthly_on_day_clamps_in_short_month():
    target = CustomTarget(10000, MonthlyOnDay(31))
    today = date(2025, 4, 10)
    assert reset_date(target, today) == date(2025, 4, 30)
    assert next_due_date(target, today) == date(2025, 4, 30)


def test_reset_dates():
    today = date(2025, 5, 14)  # a Wednesday
    assert reset_date(MonthlyTarget(100), today) == date(2025, 5, 1)
    assert reset_date(WeeklyTarget(100), today) == date(2025, 5, 12)
    assert reset_date(WeeklyTarget(100), today, week_start=6) == date(2025, 5, 11)
    assert reset_date(ByDateTarget(100, date(2025, 12, 24)), today) == date(2025, 12, 24)
    assert reset_date(CustomTarget(100, EveryDays(10)), today) == date(2025, 5, 24)
    assert reset_date(NoDateTarget(100), today) is None


def test_next_due_dates():
    today = date(2025, 12, 14)
    assert next_due_date(MonthlyTarget(100), today) == date(2026, 1, 1)
    assert next_due_date(WeeklyTarget(100), today) == date(2025, 12, 15)
    assert next_due_date(CustomTarget(100, EveryMonths(3)), today) == date(2026, 3, 14)
    assert next_due_date(NoDateTarget(100), today) is None


def test_progress_ratio_and_remaining():
    result = progress(MonthlyTarget(20000), 5000, date(2025, 5, 1))
    assert result.target_cents == 20000
    assert result.remaining_cents == 15000
    assert result.ratio == pytest.approx(0.25)
    assert result.reset_date == date(2025, 5, 1)
    assert not result.is_funded

    funded = progress(NoDateTarget(1000), 1500, date(2025, 5, 1))
    assert funded.remaining_cents == 0
    assert funded.is_funded
    assert funded.ratio == pytest.approx(1.5)
    assert funded.reset_date is None


def test_zero_amount_target_has_zero_ratio():
    assert progress(MonthlyTarget(0), 500, date(2025, 5, 1)).ratio == 0.0


def test_by_date_spreads_remaining_over_months():
    target = ByDateTarget(120000, date(2025, 12, 1))
    result = progress(target, 20000, date(2025, 3, 15))
    # March through December is ten funding months.
    assert result.needed_per_month_cents == 10000
    overdue = progress(target, 20000, date(2026, 1, 5))
    assert overdue.needed_per_month_cents == 100000


def test_target_validation():
    with pytest.raises(InvalidAmount):
        MonthlyTarget(-1)
    with pytest.raises(InvalidInterval):
        CustomTarget(100, Daily())
