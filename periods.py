import calendar
from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

# Inclusive upper bound of a day, at millisecond precision.
END_OF_DAY = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class Period:
    slug: str
    start: datetime
    end: datetime


def today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def day_period(target: Optional[date] = None) -> Period:
    target = target or today()
    return Period(
        "daily",
        datetime.combine(target, time.min),
        datetime.combine(target, END_OF_DAY),
    )


def _check_year(year: int) -> None:
    if not MINYEAR <= year <= MAXYEAR:
        raise ValueError(f"Year must be between {MINYEAR} and {MAXYEAR}")


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def month_period(year: int, month: int) -> Period:
    _check_year(year)
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    return Period(
        "monthly",
        datetime(year, month, 1),
        datetime.combine(_month_end(year, month), END_OF_DAY),
    )


def year_period(year: int) -> Period:
    _check_year(year)
    return Period(
        "yearly",
        datetime(year, 1, 1),
        datetime.combine(date(year, 12, 31), END_OF_DAY),
    )


def trailing_months(
    current: Optional[date] = None, count: int = 12
) -> list[tuple[int, int]]:
    """Return ``count`` (year, month) pairs ending with ``current``'s month, oldest first."""
    current = current or today()
    months: list[tuple[int, int]] = []
    index = current.year * 12 + (current.month - 1)
    for offset in range(count - 1, -1, -1):
        year, month0 = divmod(index - offset, 12)
        months.append((year, month0 + 1))
    return months
