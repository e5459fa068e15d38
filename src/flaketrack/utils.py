from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """
    The current time as a naive UTC datetime.

    DuckDB TIMESTAMP columns carry no zone, so every timestamp we store is
    naive UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def clamp(value: int, lo: int, hi: int) -> int:
    return min(max(value, lo), hi)
