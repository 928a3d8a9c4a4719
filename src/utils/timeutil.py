"""
Lotline — Time helpers

All timestamps inside the system are timezone-aware UTC. SQLite hands back
naive datetimes, so anything read from the store passes through ensure_utc
before being compared.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_or_none(value: datetime | None) -> str | None:
    """JSON-safe rendering used in event payloads and audit details."""
    value = ensure_utc(value)
    return value.isoformat() if value is not None else None
