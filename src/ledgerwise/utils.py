"""Calendar helpers shared by the analytics modules."""

import calendar
from datetime import date, datetime, timedelta


def month_start(d: date) -> date:
    """First day of the month containing ``d``."""
    return d.replace(day=1)


def add_months(d: date, months: int) -> date:
    """Shift a date by whole months, clipping the day to the month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_end(d: date) -> date:
    """Last day of the month containing ``d``."""
    return add_months(month_start(d), 1) - timedelta(days=1)


def month_key(d: date) -> str:
    """Format a date as 'YYYY-MM'."""
    return d.strftime("%Y-%m")


def trailing_window_start(months_back: int, today: date | None = None) -> date:
    """First day of the trailing window of ``months_back`` calendar months.

    The window includes the current month, so ``months_back=1`` starts on the
    first of this month.
    """
    today = today or date.today()
    return add_months(month_start(today), -(max(months_back, 1) - 1))


def parse_date(value: str) -> date:
    """Parse an ISO 'YYYY-MM-DD' string (a time part is ignored)."""
    return date.fromisoformat(value[:10])


def parse_datetime(value: str) -> datetime:
    """Parse a stored timestamp, accepting both 'T' and space separators."""
    return datetime.fromisoformat(value.replace(" ", "T"))


def now_iso() -> str:
    """Current local time as an ISO string with microseconds."""
    return datetime.now().isoformat(timespec="microseconds")


def get_period_dates(period: str) -> tuple[str, str]:
    """Convert a period string to start and end dates.

    Args:
        period: One of "this_month", "last_month", "last_30_days", "ytd",
            "all_time", or "YYYY-MM".

    Returns:
        Tuple of (start_date, end_date) as ISO strings.
    """
    today = date.today()

    if period == "last_month":
        end = month_start(today) - timedelta(days=1)
        start = month_start(end)
    elif period == "last_30_days":
        end = today
        start = today - timedelta(days=30)
    elif period == "ytd":
        start = date(today.year, 1, 1)
        end = today
    elif period == "all_time":
        start = date(1970, 1, 1)
        end = date(2099, 12, 31)
    elif period == "this_month":
        start = month_start(today)
        end = month_end(today)
    else:
        # Assume YYYY-MM format
        try:
            year, month = map(int, period.split("-"))
            start = date(year, month, 1)
            end = month_end(start)
        except (ValueError, AttributeError):
            start = month_start(today)
            end = month_end(today)

    return start.isoformat(), end.isoformat()
