"""UTC timestamp helpers.

All timestamps inside docmine are timezone-aware UTC datetimes. sqlite
stores them as ISO-8601 strings, which sort lexicographically in time
order as long as every value carries the same offset.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_iso(raw: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix accepted) into an aware UTC datetime."""
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


__all__ = ["ensure_utc", "epoch_millis", "parse_iso", "to_iso", "utcnow"]
