"""Timestamp coercion for agent stream records.

Agent CLIs disagree on where and how they report time: ISO strings, epoch
seconds, epoch milliseconds, under several different keys. Everything is
normalized to timezone-aware UTC datetimes here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

TIMESTAMP_KEYS: tuple[str, ...] = (
    "timestamp",
    "time",
    "created_at",
    "createdAt",
    "ts",
    "started_at",
    "startedAt",
)

# Epoch values below this are seconds, above are milliseconds.
_EPOCH_MS_THRESHOLD = 1e12


def _from_epoch(value: float) -> datetime | None:
    seconds = value / 1000 if value >= _EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def coerce_datetime(value: Any) -> datetime | None:
    """Convert an epoch number or ISO string into an aware datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        try:
            return _from_epoch(float(trimmed))
        except ValueError:
            pass
        return parse_iso(trimmed)
    return None


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string; naive values are assumed to be UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_iso(value: datetime | None) -> str | None:
    """Render a datetime as an ISO 8601 UTC string (None passes through)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def extract_timestamp(raw: Any) -> datetime | None:
    """Return the first usable timestamp found on a raw stream record."""
    if not isinstance(raw, dict):
        return None
    for key in TIMESTAMP_KEYS:
        found = coerce_datetime(raw.get(key))
        if found is not None:
            return found
    return None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
