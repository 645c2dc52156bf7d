"""
Fixed 30-minute window arithmetic.

Windows are aligned to the :00 and :30 minute marks of the producer's local
wall clock. All returned datetimes are timezone-aware and expressed in UTC so
they compare and store consistently; alignment and peak classification are
decided in local time.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

WINDOW_MINUTES = 30
WINDOW_LENGTH = timedelta(minutes=WINDOW_MINUTES)

PEAK_START_HOUR = 14
PEAK_END_HOUR = 22

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@lru_cache(maxsize=64)
def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the zone for `name`, treating empty values as UTC."""
    return ZoneInfo(name or "UTC")


def to_datetime(timestamp_ms: int) -> datetime:
    """Epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=timestamp_ms)


def to_millis(moment: datetime) -> int:
    """Aware datetime to epoch milliseconds."""
    return (moment - EPOCH) // timedelta(milliseconds=1)


# Latest timestamp whose window and local-day arithmetic stays inside datetime's range.
MAX_TIMESTAMP_MS = to_millis(datetime(9999, 12, 30, tzinfo=timezone.utc))


def window_start(timestamp_ms: int, tz: ZoneInfo) -> datetime:
    """
    Truncate a timestamp to the most recent local :00 or :30 boundary.

    Seconds and sub-second parts are zeroed. The result is returned in UTC.
    """
    local = to_datetime(timestamp_ms).astimezone(tz)
    minute = 0 if local.minute < WINDOW_MINUTES else WINDOW_MINUTES
    aligned = local.replace(minute=minute, second=0, microsecond=0)
    return aligned.astimezone(timezone.utc)


def window_end(start: datetime) -> datetime:
    """End of the window opened at `start`; arithmetic is done on absolute time."""
    return start.astimezone(timezone.utc) + WINDOW_LENGTH


def is_peak_hour(moment: datetime, tz: ZoneInfo) -> bool:
    """Peak hours are local 14:00 (inclusive) through 22:00 (exclusive)."""
    hour = moment.astimezone(tz).hour
    return PEAK_START_HOUR <= hour < PEAK_END_HOUR


def window_bounds(timestamp_ms: int, tz: ZoneInfo) -> Tuple[datetime, datetime, bool]:
    """Return (start, end, is_peak) for the window enclosing `timestamp_ms`."""
    start = window_start(timestamp_ms, tz)
    return start, window_end(start), is_peak_hour(start, tz)


def day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Local midnight of `day` and of the following day, both in UTC."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def iter_day_windows(day: date, tz: ZoneInfo) -> Iterator[datetime]:
    """
    Yield the start of every window of a local calendar day.

    A day has 48 windows, except on DST transition days where the local day is
    shorter or longer.
    """
    current, day_end = day_bounds(day, tz)
    while current < day_end:
        yield current
        current = current + WINDOW_LENGTH


__all__ = [
    "WINDOW_MINUTES",
    "WINDOW_LENGTH",
    "PEAK_START_HOUR",
    "PEAK_END_HOUR",
    "resolve_timezone",
    "to_datetime",
    "to_millis",
    "window_start",
    "window_end",
    "is_peak_hour",
    "window_bounds",
    "day_bounds",
    "iter_day_windows",
]
