"""
ULID generation, timestamp and business-day utilities.

Manifesto:
    Every row the engine writes carries UTC timestamps, but "today" for a
    daily batch is decided in the job's market timezone: a run that
    completes at 22:30 in São Paulo is still the same trading day even
    though UTC has already rolled over.

    - **generate_ulid():** Time-sortable unique IDs (26-char, base32)
    - **utc_now():** Timezone-aware UTC datetime
    - **to_iso8601() / from_iso8601():** Fixed-width, sortable text form
    - **local_day():** Calendar day of an instant in a named timezone

Tags:
    timestamps, ulid, utc, timezone, business-day
"""

from __future__ import annotations

import random
import time
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = _encode_base32(timestamp_ms, 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO 8601 string.

    Naive datetimes are assumed to already be UTC. The fixed width keeps
    string comparison in SQL consistent with chronological order.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def local_day(dt: datetime, tz: str = DEFAULT_TIMEZONE) -> date:
    """Calendar day of ``dt`` as seen in timezone ``tz``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(ZoneInfo(tz)).date()


def is_weekend(day: date) -> bool:
    """Saturday or Sunday."""
    return day.weekday() >= 5


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))


__all__ = [
    "DEFAULT_TIMEZONE",
    "utc_now",
    "generate_ulid",
    "to_iso8601",
    "from_iso8601",
    "local_day",
    "is_weekend",
]
