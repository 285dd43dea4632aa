"""
Conversion between Discord snowflakes and wall-clock instants.

A snowflake carries milliseconds since the Discord epoch in its upper bits;
the low 22 bits are worker/process/sequence entropy and are dropped on decode.
See https://discord.com/developers/docs/reference#snowflakes
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo

DISCORD_EPOCH_MS = 1420070400000
TIMESTAMP_SHIFT = 22

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=DISCORD_EPOCH_MS)
_ONE_MS = timedelta(milliseconds=1)


def encode(instant: datetime, tz: tzinfo = timezone.utc) -> int:
    """Smallest snowflake whose timestamp is ``instant`` (naive values are read in ``tz``)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=tz)
    offset_ms = (instant - _EPOCH) // _ONE_MS
    if offset_ms < 0:
        raise ValueError(f"{instant.isoformat()} is before the snowflake epoch")
    return offset_ms << TIMESTAMP_SHIFT


def decode(event_id: int, tz: tzinfo = timezone.utc) -> datetime:
    if event_id < 0:
        raise ValueError(f"Invalid snowflake: {event_id}")
    return (_EPOCH + timedelta(milliseconds=event_id >> TIMESTAMP_SHIFT)).astimezone(tz)


def duration_to_snowflake(duration: timedelta) -> int:
    return (duration // _ONE_MS) << TIMESTAMP_SHIFT


def add_duration(event_id: int, duration: timedelta) -> int:
    """Step through id space by a wall-clock duration."""
    return event_id + duration_to_snowflake(duration)


def event_date(event_id: int, tz: tzinfo) -> date:
    """Calendar date in ``tz`` that an event is attributed to."""
    return decode(event_id, tz).date()


def day_start(day: date, tz: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=tz)


def date_to_snowflake(day: date, tz: tzinfo) -> int:
    """First snowflake of ``day`` in ``tz``."""
    return encode(day_start(day, tz))
