"""Category targets: how much an envelope should hold, and by when."""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Union

from errors import InvalidInterval
from money import require_non_negative
from recurrence import (
    EveryDays,
    EveryMonths,
    EveryYears,
    MonthlyOnDay,
    TargetInterval,
    add_months,
    next_occurrence,
)


@dataclass(frozen=True)
class MonthlyTarget:
    amount_cents: int

    def __post_init__(self) -> None:
        require_non_negative(self.amount_cents)


@dataclass(frozen=True)
class WeeklyTarget:
    amount_cents: int

    def __post_init__(self) -> None:
        require_non_negative(self.amount_cents)


@dataclass(frozen=True)
class ByDateTarget:
    amount_cents: int
    due: date

    def __post_init__(self) -> None:
        require_non_negative(self.amount_cents)


@dataclass(frozen=True)
class CustomTarget:
    amount_cents: int
    interval: TargetInterval

    def __post_init__(self) -> None:
        require_non_negative(self.amount_cents)
        if not isinstance(self.interval, (EveryDays, EveryMonths, EveryYears, MonthlyOnDay)):
            raise InvalidInterval(f"Unsupported target interval: {self.interval!r}")


@dataclass(frozen=True)
class NoDateTarget:
    amount_cents: int

    def __post_init__(self) -> None:
        require_non_negative(self.amount_cents)


Target = Union[MonthlyTarget, WeeklyTarget, ByDateTarget, CustomTarget, NoDateTarget]


@dataclass(frozen=True)
class TargetProgress:
    target_cents: int
    funded_cents: int
    remaining_cents: int
    ratio: float
    due_date: Optional[date]
    needed_per_month_cents: Optional[int] = None
    reset_date: Optional[date] = None

    @property
    def is_funded(self) -> bool:
        return self.remaining_cents == 0


def target_amount(target: Target) -> int:
    return target.amount_cents


def week_start_of(day: date, week_start: int = 0) -> date:
    return day - timedelta(days=(day.weekday() - week_start) % 7)


def reset_date(target: Target, today: date, week_start: int = 0) -> Optional[date]:
    """Start of the funding window the target is currently measured against."""
    if isinstance(target, MonthlyTarget):
        return today.replace(day=1)
    if isinstance(target, WeeklyTarget):
        return week_start_of(today, week_start)
    if isinstance(target, ByDateTarget):
        return target.due
    if isinstance(target, CustomTarget):
        interval = target.interval
        if isinstance(interval, MonthlyOnDay):
            return add_months(today, 0, desired_day=interval.day)
        return next_occurrence(today, interval)
    return None


def next_due_date(target: Target, today: date, week_start: int = 0) -> Optional[date]:
    if isinstance(target, MonthlyTarget):
        return add_months(today.replace(day=1), 1)
    if isinstance(target, WeeklyTarget):
        return week_start_of(today, week_start) + timedelta(weeks=1)
    if isinstance(target, ByDateTarget):
        return target.due
    if isinstance(target, CustomTarget):
        return next_occurrence(today, target.interval)
    return None


def months_until(today: date, due: date) -> int:
    """Whole funding months left, counting the current one; never below 1."""
    months = (due.year - today.year) * 12 + (due.month - today.month) + 1
    return max(1, months)


def progress(
    target: Target, allocated_cents: int, today: date, week_start: int = 0
) -> TargetProgress:
    amount = target_amount(target)
    funded = max(0, allocated_cents)
    remaining = max(0, amount - funded)
    ratio = allocated_cents / amount if amount > 0 else 0.0
    due = next_due_date(target, today, week_start)

    needed_per_month = None
    if isinstance(target, ByDateTarget):
        if target.due <= today:
            needed_per_month = remaining
        else:
            months = months_until(today, target.due)
            needed_per_month = -(-remaining // months)
    return TargetProgress(
        target_cents=amount,
        funded_cents=funded,
        remaining_cents=remaining,
        ratio=ratio,
        due_date=due,
        needed_per_month_cents=needed_per_month,
        reset_date=reset_date(target, today, week_start),
    )
