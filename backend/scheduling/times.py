"""Date and time-of-day normalization shared by every scheduling path.

Stored times may carry seconds or fractional suffixes (``09:00:00``,
``09:00:00.000000``); everything that compares times goes through
``normalize_time`` so they all collapse to ``HH:MM``.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from backend.core import config

MINUTES_PER_DAY = 24 * 60


def normalize_time(value: str | time) -> str:
    if isinstance(value, time):
        return f'{value.hour:02d}:{value.minute:02d}'

    if not isinstance(value, str):
        raise ValueError(f'Unsupported time value: {value!r}')

    parts = value.strip().split(':')
    if len(parts) < 2 or not parts[0].isdigit() or not parts[1][:2].isdigit():
        raise ValueError(f'Invalid time: {value!r}')

    hour = int(parts[0])
    minute = int(parts[1][:2])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f'Invalid time: {value!r}')

    return f'{hour:02d}:{minute:02d}'


def parse_time(value: str | time) -> time:
    hour, minute = normalize_time(value).split(':')
    return time(int(hour), int(minute))


def parse_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f'Unsupported date value: {value!r}')
    try:
        return datetime.strptime(value.strip(), '%Y-%m-%d').date()
    except ValueError as exc:
        raise ValueError(f'Invalid date: {value!r}. Expected YYYY-MM-DD.') from exc


def day_of_week(value: date) -> int:
    """Return 0 for Sunday through 6 for Saturday."""
    return (value.weekday() + 1) % 7


def to_minutes(value: str | time) -> int:
    hour, minute = normalize_time(value).split(':')
    return int(hour) * 60 + int(minute)


def from_minutes(total: int) -> str:
    if not 0 <= total < MINUTES_PER_DAY:
        raise ValueError(f'Minute offset out of range: {total}')
    return f'{total // 60:02d}:{total % 60:02d}'


def scheduled_moment(booking_date: date, booking_time: str | time) -> datetime:
    return datetime.combine(booking_date, parse_time(booking_time))


def current_time() -> datetime:
    """Naive wall-clock time in the operating timezone."""
    return datetime.now(ZoneInfo(config.APP_TIMEZONE)).replace(tzinfo=None)


def iterate_dates(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
