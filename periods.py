from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


EPOCH = date(1970, 1, 1)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def shift_months(base: date, months: int) -> date:
    """Move ``base`` by ``months``, snapping to the last day of short months."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    last = day.replace(day=days_in_month(day.year, day.month))
    return first, last


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", EPOCH, today)
    if period == "today":
        return Period("today", today, today)
    if period == "this_week":
        # Weeks start on Sunday.
        offset = (today.weekday() + 1) % 7
        return Period("this_week", today - timedelta(days=offset), today)
    if period == "this_month":
        first, last = month_bounds(today)
        return Period("this_month", first, last)
    if period == "last_month":
        last_month_end = today.replace(day=1) - date.resolution
        return Period("last_month", last_month_end.replace(day=1), last_month_end)
    if period in ("last_3_months", "last_6_months", "last_12_months"):
        months = int(period.split("_")[1])
        return Period(period, shift_months(today, -months), today)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    raise ValueError(f"Unknown period: {period}")
