"""
Operational Calendar Helpers

All "day" boundaries (due dates, overdue evaluation, route partitioning,
report windows) are computed in one fixed operational timezone, never in UTC.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_config
from .exceptions import InvalidTimestamp


TimezoneLike = Union[str, ZoneInfo, None]


@lru_cache(maxsize=16)
def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        raise InvalidTimestamp(f"Unknown timezone '{name}'", timezone=name)


def operational_zone(tz: TimezoneLike = None) -> ZoneInfo:
    """Resolve the operational timezone (configured default when None)"""
    if isinstance(tz, ZoneInfo):
        return tz
    return _zone(tz or get_config().operational_timezone)


def require_aware(value: datetime, name: str = "instant") -> datetime:
    """Reject naive datetimes; every instant must carry an offset"""
    if not isinstance(value, datetime):
        raise InvalidTimestamp(f"{name} must be a datetime", field=name)
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidTimestamp(f"{name} must be timezone-aware", field=name)
    return value


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant; a trailing 'Z' is accepted"""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise InvalidTimestamp(f"Invalid ISO-8601 instant '{value}'", value=value)
    return require_aware(parsed)


def to_utc(value: datetime) -> datetime:
    return require_aware(value).astimezone(timezone.utc)


def operational_date(instant: datetime, tz: TimezoneLike = None) -> date:
    """Calendar date of an instant in the operational timezone"""
    return require_aware(instant).astimezone(operational_zone(tz)).date()


def day_bounds(day: date, tz: TimezoneLike = None) -> Tuple[datetime, datetime]:
    """Half-open [start, end) UTC instants covering one operational day"""
    zone = operational_zone(tz)
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def range_bounds(start_day: date, end_day: date,
                 tz: TimezoneLike = None) -> Tuple[datetime, datetime]:
    """Half-open UTC instants covering start_day..end_day inclusive"""
    start, _ = day_bounds(start_day, tz)
    _, end = day_bounds(end_day, tz)
    return start, end


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday..Sunday of the week containing day"""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of shorter months"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def is_within(instant: datetime, start: datetime, end: Optional[datetime]) -> bool:
    """True when start <= instant < end (end None means open-ended)"""
    instant = to_utc(instant)
    if instant < to_utc(start):
        return False
    return end is None or instant < to_utc(end)
