"""UTC-everywhere time handling, plus epoch-second helpers for server timers.

Server-issued timers (resend cooldowns, code expiry) arrive as absolute epoch
seconds. Every countdown is derived from them against an injectable clock.
"""

import time
from datetime import date, datetime, timezone
from typing import Any, Callable

# A clock returns the current time as epoch seconds (float).
Clock = Callable[[], float]


def system_clock() -> float:
    """Wall-clock epoch seconds."""
    return time.time()


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def from_epoch(seconds: float) -> datetime:
    """Epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def today_utc(clock: Clock = system_clock) -> date:
    """Calendar date in UTC for the given clock."""
    return from_epoch(clock()).date()


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)


def to_epoch(value: Any) -> int | None:
    """
    Server timestamp as whole epoch seconds.

    Accepts epoch numbers, numeric strings and ISO 8601 strings with an
    offset. None or "" means no timestamp.

    Raises ValueError (or TypeError) for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return int(parse_iso(value).timestamp())
    return int(float(value))
