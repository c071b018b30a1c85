from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import get_settings

DateLike = Union[date, datetime]

MONTH_ABBREVIATIONS = (
    "JAN",
    "FEB",
    "MAR",
    "APR",
    "MAY",
    "JUN",
    "JUL",
    "AUG",
    "SEP",
    "OCT",
    "NOV",
    "DEC",
)

# Last representable instant of a cycle's final day, at millisecond precision.
END_OF_DAY = time(23, 59, 59, 999000)

SHORT_YEAR_CENTURY = 2000


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def add_months(d: date, count: int) -> date:
    """Shift ``d`` by ``count`` calendar months, keeping the day of month.

    Callers only pass days that exist in every month (1-28).
    """
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, d.day)


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def format_cycle_key(start: date) -> str:
    """Label a cycle by the month and year it starts in, e.g. ``"JAN 26"``.

    Two-digit years are only unambiguous within one century, so cycles
    starting outside 2000-2099 carry the full year (``"JAN 1926"``).
    """
    month = MONTH_ABBREVIATIONS[start.month - 1]
    if SHORT_YEAR_CENTURY <= start.year < SHORT_YEAR_CENTURY + 100:
        return f"{month} {start.year % 100:02d}"
    return f"{month} {start.year}"


@dataclass(frozen=True)
class BillingCycle:
    start: datetime
    end: datetime

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    @property
    def key(self) -> str:
        return format_cycle_key(self.start_date)

    def contains(self, value: DateLike) -> bool:
        if not isinstance(value, datetime):
            value = datetime.combine(value, time.min)
        return self.start <= value <= self.end


def cycle_start_date(cycle_start_day: int, reference_date: DateLike) -> date:
    ref = _as_date(reference_date)
    if ref.day >= cycle_start_day:
        return ref.replace(day=cycle_start_day)
    return add_months(ref.replace(day=cycle_start_day), -1)


def resolve_cycle(
    cycle_start_day: int, reference_date: Optional[DateLike] = None
) -> BillingCycle:
    """Return the billing cycle that contains ``reference_date``.

    A cycle starting on day N runs from N of one month through N-1 of the
    next, so every calendar day falls in exactly one cycle. Without a
    reference date the configured local "today" is used.
    """
    ref = reference_date if reference_date is not None else local_today()
    start = cycle_start_date(cycle_start_day, ref)
    end = add_months(start, 1) - timedelta(days=1)
    return BillingCycle(
        start=datetime.combine(start, time.min),
        end=datetime.combine(end, END_OF_DAY),
    )


def cycle_key(cycle_start_day: int, value: DateLike) -> str:
    return format_cycle_key(cycle_start_date(cycle_start_day, value))
