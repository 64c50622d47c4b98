"""Core utility functions."""
from __future__ import annotations

import base64
import html
import time
from datetime import datetime, timezone
from typing import Callable, Optional

# Wall-clock source for staleness decisions; tests pass a fixed function
Clock = Callable[[], datetime]

# Monotonic seconds source for in-process TTLs
MonotonicClock = Callable[[], float]


def utcnow() -> datetime:
    """Get current UTC datetime with timezone info. Always use this instead of datetime.now()."""
    return datetime.now(timezone.utc)


def monotonic() -> float:
    return time.monotonic()


def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware (UTC).

    SQLite stores datetimes without timezone info, so we need to make them
    aware before comparing with utcnow().

    Args:
        dt: A datetime that may or may not be timezone-aware.

    Returns:
        Timezone-aware datetime in UTC, or None if input was None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 string for a stored timestamp, assuming UTC when naive."""
    aware = ensure_aware(dt)
    return aware.isoformat() if aware else None


def to_data_uri(content: bytes, mime_type: str) -> str:
    """Encode image bytes as a ``data:`` URI."""
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def html_unescape(value: str) -> str:
    return html.unescape(value)


__all__ = [
    "Clock",
    "MonotonicClock",
    "utcnow",
    "monotonic",
    "ensure_aware",
    "isoformat_utc",
    "to_data_uri",
    "html_unescape",
]
