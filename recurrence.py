import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from errors import InvalidInterval

logger = logging.getLogger(__name__)


class IntervalUnit(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    year = "year"


def _require_count(count: object, what: str) -> int:
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise InvalidInterval(f"{what} must be a whole number >= 1, got {count!r}")
    return count


# Planned transaction recurrences


@dataclass(frozen=True)
class Daily:
    pass


@dataclass(frozen=True)
class Weekly:
    pass


@dataclass(frozen=True)
class Monthly:
    pass


@dataclass(frozen=True)
class Custom:
    interval: int
    period: IntervalUnit

    def __post_init__(self) -> None:
        _require_count(self.interval, "Recurrence interval")
        if not isinstance(self.period, IntervalUnit):
            try:
                object.__setattr__(self, "period", IntervalUnit(self.period))
            except ValueError as exc:
                raise InvalidInterval(f"Unknown period: {self.period!r}") from exc


Recurrence = Union[Daily, Weekly, Monthly, Custom]


# Target intervals


@dataclass(frozen=True)
class EveryDays:
    count: int

    def __post_init__(self) -> None:
        _require_count(self.count, "Day count")


@dataclass(frozen=True)
class EveryMonths:
    count: int

    def __post_init__(self) -> None:
        _require_count(self.count, "Month count")


@dataclass(frozen=True)
class EveryYears:
    count: int

    def __post_init__(self) -> None:
        _require_count(self.count, "Year count")


@dataclass(frozen=True)
class MonthlyOnDay:
    day: int

    def __post_init__(self) -> None:
        day = _require_count(self.day, "Day of month")
        if day > 31:
            raise InvalidInterval(f"Day of month must be between 1 and 31, got {day}")


TargetInterval = Union[EveryDays, EveryMonths, EveryYears, MonthlyOnDay]

Rule = Union[Recurrence, TargetInterval]


def local_today(tz_name: str) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


def reference_date(now: Union[date, datetime], tz_name: Optional[str] = None) -> date:
    """Calendar date of ``now`` as seen in ``tz_name``.

    Naive datetimes are taken as already local. Plain dates pass through.
    """
    if isinstance(now, datetime):
        if now.tzinfo is not None and tz_name:
            return now.astimezone(ZoneInfo(tz_name)).date()
        return now.date()
    return now


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Shift ``base`` by whole months, clamping the day to the month's length."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1

    day = desired_day if desired_day is not None else base.day
    dim = days_in_month(year, month)
    if day > dim:
        day = dim
    return date(year, month, day)


def month_day_after(after: date, day: int) -> date:
    candidate = add_months(after, 0, desired_day=day)
    if candidate > after:
        return candidate
    return add_months(after, 1, desired_day=day)


def _advance(after: date, rule: Rule) -> date:
    if isinstance(rule, Daily):
        return after + timedelta(days=1)
    if isinstance(rule, Weekly):
        return after + timedelta(weeks=1)
    if isinstance(rule, Monthly):
        return add_months(after, 1)
    if isinstance(rule, Custom):
        if rule.period == IntervalUnit.day:
            return after + timedelta(days=rule.interval)
        if rule.period == IntervalUnit.week:
            return after + timedelta(weeks=rule.interval)
        if rule.period == IntervalUnit.month:
            return add_months(after, rule.interval)
        return add_months(after, 12 * rule.interval)
    if isinstance(rule, EveryDays):
        return after + timedelta(days=rule.count)
    if isinstance(rule, EveryMonths):
        return add_months(after, rule.count)
    if isinstance(rule, EveryYears):
        return add_months(after, 12 * rule.count)
    if isinstance(rule, MonthlyOnDay):
        return month_day_after(after, rule.day)
    raise InvalidInterval(f"Unsupported recurrence rule: {rule!r}")


def next_occurrence(after: date, rule: Rule) -> date:
    """Next date strictly after ``after`` for ``rule``.

    Returns ``after`` unchanged when the calendar cannot represent the
    result; callers treat that as a stalled schedule.
    """
    try:
        return _advance(after, rule)
    except (OverflowError, ValueError) as exc:
        if isinstance(exc, InvalidInterval):
            raise
        logger.warning(f"recurrence_stalled: after={after} rule={rule!r} error={exc}")
        return after


def describe(rule: Rule) -> str:
    if isinstance(rule, Daily):
        return "daily"
    if isinstance(rule, Weekly):
        return "weekly"
    if isinstance(rule, Monthly):
        return "monthly"
    if isinstance(rule, Custom):
        return f"every {rule.interval} {rule.period.value}(s)"
    if isinstance(rule, EveryDays):
        return f"every {rule.count} day(s)"
    if isinstance(rule, EveryMonths):
        return f"every {rule.count} month(s)"
    if isinstance(rule, EveryYears):
        return f"every {rule.count} year(s)"
    return f"monthly on day {rule.day}"
