"""Datetime parsing helpers for provider timestamps."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def parse_published_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is None:
        # RSS feeds carry RFC 2822 dates.
        try:
            dt = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        if dt is None:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def newest_first_key(timestamp: str | None) -> tuple[int, float]:
    """Sort key putting the newest timestamps first and unparseable ones last."""
    dt = parse_published_datetime(timestamp)
    if dt is None:
        return (1, 0.0)
    return (0, -dt.timestamp())


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()
