"""Utility modules for cross-cutting concerns."""

from utils.timezone import (
    Clock,
    system_clock,
    now_utc,
    to_utc,
    from_epoch,
    today_utc,
    parse_iso,
    to_epoch,
)
