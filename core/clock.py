"""
core/clock.py -- UTC time helpers shared by every store.

Timestamps are persisted as fixed-width ISO 8601 strings (always with
microseconds and a trailing Z). Fixed width means lexicographic order equals
chronological order, so `expires_at > :now` comparisons work in SQL on any
backend without a native timezone-aware type.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime in the fixed-width storage format."""
    if value.tzinfo is None:
        raise ValueError("naive datetimes are not accepted; pass a UTC-aware value")
    return value.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, _ISO_FORMAT).replace(tzinfo=timezone.utc)
