"""Timezone-aware time utilities for the game."""

import datetime
from zoneinfo import ZoneInfo
from .config import TIMEZONE


def get_timezone():
    """Get the timezone object for the game."""
    return ZoneInfo(TIMEZONE)


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(ZoneInfo(TIMEZONE))


def now_timestamp() -> int:
    """Get the current time as an epoch timestamp."""
    return int(now().timestamp())


def timestamp_from_hours(hours: float, start: int = None) -> int:
    """Get timestamp N elapsed hours after ``start`` (default: now), ignoring DST shifts."""
    base = now_timestamp() if start is None else start
    return int(base + hours * 3600)


def hours_until(timestamp: int) -> float:
    """Get hours until the given timestamp."""
    target = datetime.datetime.fromtimestamp(timestamp, ZoneInfo(TIMEZONE))
    delta = target - now()
    return max(0.0, delta.total_seconds() / 3600)


def format_timestamp(timestamp: int) -> str:
    """Render a timestamp in the game timezone."""
    return datetime.datetime.fromtimestamp(timestamp, ZoneInfo(TIMEZONE)).strftime("%Y-%m-%d %H:%M %Z")
