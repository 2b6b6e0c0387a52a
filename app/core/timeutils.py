"""
Time arithmetic shared by the state machine and the violation detector.

Timestamps are stored as UTC. Calendar dates and policy wall-clock hours are
interpreted in the configured fixed offset (``settings.TIMEZONE_OFFSET``).
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone

from app.core.config import settings

Clock = Callable[[], datetime]

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_offset(tz_offset: str) -> timezone:
    """``"+05:30"`` → ``timezone(timedelta(hours=5, minutes=30))``."""
    sign = 1 if tz_offset[0] == "+" else -1
    hours, _, minutes = tz_offset[1:].partition(":")
    return timezone(sign * timedelta(hours=int(hours), minutes=int(minutes or 0)))


def local_timezone() -> timezone:
    return parse_offset(settings.TIMEZONE_OFFSET)


def local_date(instant: datetime) -> date:
    """Employee-local calendar date of *instant*."""
    return ensure_utc(instant).astimezone(local_timezone()).date()


def parse_wall_clock(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``; raises ``ValueError`` otherwise."""
    match = _HHMM_RE.match(value.strip()) if value else None
    if match is None:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM or HH:MM:SS)")
    return time(int(match.group(1)), int(match.group(2)), int(match.group(3) or 0))


def wall_clock_on(day: date, value: str) -> datetime:
    """Local wall-clock *value* on *day*, as an aware datetime."""
    return datetime.combine(day, parse_wall_clock(value), tzinfo=local_timezone())


def round_minutes(delta: timedelta) -> int:
    """Whole minutes in *delta*, rounded half-up."""
    return math.floor(delta.total_seconds() / 60 + 0.5)


def start_of_local_day(day: date) -> datetime:
    """UTC instant at which local *day* begins."""
    return datetime.combine(day, time.min, tzinfo=local_timezone()).astimezone(timezone.utc)
