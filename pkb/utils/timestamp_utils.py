"""
Timestamp utilities for consistent time handling across the system.
"""

import time
from datetime import datetime, timezone
from typing import Any, Optional


def to_seconds_str(timestamp: Optional[float] = None) -> str:
    """Convert timestamp to seconds string format.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        Seconds timestamp as string
    """
    if timestamp is None:
        timestamp = time.time()
    return str(int(timestamp))


def to_datetime(timestamp: Optional[float] = None) -> datetime:
    """Convert timestamp to a UTC datetime object.

    Args:
        timestamp: Unix timestamp in seconds (optional, uses current time if None)

    Returns:
        Timezone-aware datetime object
    """
    if timestamp is None:
        timestamp = time.time()
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def to_iso(timestamp: float) -> str:
    """Render a Unix timestamp as an ISO-8601 UTC string with milliseconds."""
    return to_datetime(timestamp).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse a persisted timestamp into Unix seconds.

    Accepts ISO-8601 strings (with or without a trailing ``Z``), epoch
    milliseconds (as written by JavaScript ``Date.now()``) and epoch seconds.

    Args:
        value: Raw timestamp value
        default: Value returned when parsing fails

    Returns:
        Unix timestamp in seconds, or default
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        # Anything past year ~2286 in seconds is really milliseconds.
        return value / 1000.0 if value > 1e10 else float(value)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return default
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                return parse_timestamp(float(text), default)
            except ValueError:
                return default
    else:
        return default

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()
