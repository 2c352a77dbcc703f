"""Human-readable durations for watch intervals and TTLs.

Accepted forms::

    "100ms"  "30s"  "5m"  "48h"  "7d"  "2w"
    "1.5h"   "2 days"  "10 minutes"
    30       30.0   "30"          # bare numbers are seconds
"""

from __future__ import annotations

import math
import re

from promptwatch.exceptions import ValidationError

# Ten years.  Keeps expires_at within what datetime can render.
MAX_DURATION_SECONDS = 3650 * 86400.0

_UNITS: dict[str, float] = {
    "ms": 0.001,
    "msec": 0.001,
    "msecs": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1.0,
    "sec": 1.0,
    "secs": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "m": 60.0,
    "min": 60.0,
    "mins": 60.0,
    "minute": 60.0,
    "minutes": 60.0,
    "h": 3600.0,
    "hr": 3600.0,
    "hrs": 3600.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "d": 86400.0,
    "day": 86400.0,
    "days": 86400.0,
    "w": 604800.0,
    "week": 604800.0,
    "weeks": 604800.0,
}

_DURATION_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?|-?\.\d+)\s*([a-z]*)\s*$", re.IGNORECASE)


def parse_duration(value: str | int | float, field: str = "duration") -> float:
    """Return *value* in seconds.

    Raises:
        ValidationError: The value is not a recognised duration, is not
            strictly positive, or exceeds MAX_DURATION_SECONDS.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}: {value!r}", field=field)
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(value)
        if match is None:
            raise ValidationError(f"Invalid {field}: {value!r}", field=field)
        number, unit = match.groups()
        unit = unit.lower()
        if unit and unit not in _UNITS:
            raise ValidationError(f"Invalid {field}: unknown unit {unit!r}", field=field)
        seconds = float(number) * _UNITS.get(unit, 1.0)

    check_seconds(seconds, field)
    return seconds


def check_seconds(seconds: float, field: str = "duration") -> None:
    """Raise ValidationError unless 0 < *seconds* <= MAX_DURATION_SECONDS."""
    if not math.isfinite(seconds) or seconds <= 0:
        raise ValidationError(f"{field} must be a positive number, got {seconds!r}", field=field)
    if seconds > MAX_DURATION_SECONDS:
        raise ValidationError(
            f"{field} must be at most {format_duration(MAX_DURATION_SECONDS)}, got {seconds:g}s",
            field=field,
        )


def format_duration(seconds: float) -> str:
    """Render *seconds* with the largest unit that divides it exactly."""
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"
    for suffix, size in (("w", 604800), ("d", 86400), ("h", 3600), ("m", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{int(seconds // size)}{suffix}"
    if seconds == int(seconds):
        return f"{int(seconds)}s"
    return f"{seconds:g}s"
