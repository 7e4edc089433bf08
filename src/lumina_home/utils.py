from __future__ import annotations

import datetime


def event_time(now: datetime.datetime | None = None) -> str:
    """Format a timestamp the way IoTDA expects: UTC, no fractional seconds, ``Z`` suffix.

    >>> event_time(datetime.datetime(2026, 1, 7, 16, 0, 5, 123000, tzinfo=datetime.UTC))
    '2026-01-07T16:00:05Z'
    """
    now = now or datetime.datetime.now(datetime.UTC)
    return now.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def is_number(value: object) -> bool:
    """True for ints and floats; bools are rejected even though they subclass int."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_number(value: int | float) -> int | float:
    """Collapse integral floats (``128.0``) to ``int`` so payloads carry ``128``."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
