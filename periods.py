from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import InvalidPeriodError


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: Optional[date]

    @property
    def cache_discriminator(self) -> str:
        if self.slug != "custom":
            return self.slug
        return f"custom:{self.start.isoformat()}:{self.end.isoformat()}"


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(d: date) -> date:
    return add_months(d, 1) - date.resolution


def month_window(months: int, today: date) -> list[date]:
    """First days of the `months` calendar months ending at today's month."""
    if months < 1:
        raise InvalidPeriodError("months must be at least 1")
    current = month_start(today)
    return [add_months(current, offset) for offset in range(-(months - 1), 1)]


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "month":
        return Period("month", month_start(today), today)
    if period == "all":
        return Period("all", None, None)
    if period == "lastMonth":
        last_month_end = month_start(today) - date.resolution
        return Period("lastMonth", month_start(last_month_end), last_month_end)
    if period == "year":
        return Period("year", date(today.year, 1, 1), today)
    if period == "custom":
        if not start or not end:
            raise InvalidPeriodError("Custom period requires start and end dates")
        try:
            start_date = date.fromisoformat(start)
            end_date = date.fromisoformat(end)
        except ValueError as exc:
            raise InvalidPeriodError(str(exc)) from exc
        if start_date > end_date:
            raise InvalidPeriodError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    raise InvalidPeriodError(f"Unknown period: {period}")
