from dataclasses import dataclass
from datetime import date
from typing import Optional

from recurrence import add_months


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


ALL_TIME = Period("all", date.min, date.max)


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    end = add_months(first, 1) - date.resolution
    return Period("month", first, end)


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: date,
) -> Period:
    if not period or period == "all":
        return ALL_TIME
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period == "this_month":
        this_month = month_period(today.year, today.month)
        return Period("this_month", this_month.start, this_month.end)
    raise ValueError(f"Unknown period: {period}")
