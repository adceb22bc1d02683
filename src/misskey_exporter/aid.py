"""
Interval parsing and Misskey AID identifier arithmetic.

Misskey note ids ("AID" format) start with the creation time encoded as
base36(unix_ms - TIME2000), left-padded with "0" to 8 characters, followed by
random suffix characters. Because the prefix has a fixed width, plain string
comparison on the id column orders notes by creation time, which lets
"created after T" be expressed as ``"id" > lower_bound_identifier(...)``
without a timestamp column.
"""

from __future__ import annotations

import re
import string
import time

from misskey_exporter.logging import get_logger

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# 2000-01-01T00:00:00Z in epoch milliseconds
EPOCH_OFFSET_MS = 946_684_800_000

TIME_PREFIX_LENGTH = 8
LOWER_BOUND_SUFFIX = "00"

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Fallback for interval strings that cannot be parsed
DEFAULT_INTERVAL_MS = DAY_MS

_CANONICAL_INTERVALS = {
    "1 day": DAY_MS,
    "7 days": 7 * DAY_MS,
    "30 days": 30 * DAY_MS,
}

_UNIT_MS = {
    "day": DAY_MS,
    "hour": HOUR_MS,
    "minute": MINUTE_MS,
}

_INTERVAL_PATTERN = re.compile(r"(\d+)\s*(day|hour|minute)s?")

_BASE36_DIGITS = string.digits + string.ascii_lowercase


# =============================================================================
# Functions
# =============================================================================


def parse_interval(interval: str) -> int:
    """
    Convert an interval string to milliseconds.

    Accepts "1 day", "7 days", "30 days" and the general form
    ``<N> day|hour|minute[s]``. Anything else yields one day: callers only
    pass the fixed windows above, so an unknown string falls back to the
    daily window instead of failing the whole sampling cycle.

    Args:
        interval: Interval string, e.g. "7 days" or "12 hours".

    Returns:
        Interval length in milliseconds.

    Example:
        >>> parse_interval("7 days")
        604800000
        >>> parse_interval("banana")
        86400000
    """
    if interval in _CANONICAL_INTERVALS:
        return _CANONICAL_INTERVALS[interval]

    match = _INTERVAL_PATTERN.search(interval)
    if match:
        return int(match.group(1)) * _UNIT_MS[match.group(2)]

    logger.debug(
        "Unparseable interval, using one day",
        extra={"interval": interval, "default_ms": DEFAULT_INTERVAL_MS},
    )
    return DEFAULT_INTERVAL_MS


def to_base36(value: int) -> str:
    """Render an integer in lowercase base 36."""
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    value = abs(value)
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return sign + "".join(reversed(digits))


def lower_bound_identifier(interval: str, now_ms: int | None = None) -> str:
    """
    Build the smallest AID-shaped id for notes created within ``interval``.

    Target times before 2000-01-01 are clamped to zero, the same clamp Misskey
    applies when it mints ids, so the bound stays comparable with stored ids.

    Args:
        interval: Interval string understood by parse_interval().
        now_ms: Reference time in epoch milliseconds (defaults to now).

    Returns:
        A 10-character id: 8-character time prefix plus "00".
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    target_ms = now_ms - parse_interval(interval)
    offset = max(0, target_ms - EPOCH_OFFSET_MS)
    return to_base36(offset).rjust(TIME_PREFIX_LENGTH, "0") + LOWER_BOUND_SUFFIX
