"""
Time helpers. All periods are UTC calendar days and months.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Tuple

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_key(moment: datetime) -> str:
    """Calendar-day period key, e.g. '2024-03-09'."""
    return moment.astimezone(timezone.utc).date().isoformat()


def day_window(moment: datetime) -> Tuple[str, str]:
    """Half-open [today, tomorrow) range of day keys."""
    today = moment.astimezone(timezone.utc).date()
    return today.isoformat(), (today + timedelta(days=1)).isoformat()


def month_window(moment: datetime) -> Tuple[str, str]:
    """Half-open [first of month, first of next month) range of day keys."""
    today = moment.astimezone(timezone.utc).date()
    start = date(today.year, today.month, 1)
    if today.month == 12:
        end = date(today.year + 1, 1, 1)
    else:
        end = date(today.year, today.month + 1, 1)
    return start.isoformat(), end.isoformat()
