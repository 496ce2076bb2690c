from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_stamp(dt: Optional[datetime] = None) -> str:
    """YYYYMMDD of the given (or current) UTC day, used in document numbers."""
    return (as_utc(dt) or utcnow()).strftime("%Y%m%d")


def next_document_number(prefix: str, last_number: Optional[str], width: int = 5) -> str:
    """
    Next sequential number of a `PREFIX-YYYYMMDD-NNNNN` series.

    `last_number` is the highest number already issued under the same
    `PREFIX-YYYYMMDD-` head, or None when the day has none yet.
    """
    seq = 0
    if last_number:
        tail = last_number.rsplit("-", 1)[-1]
        if tail.isdigit():
            seq = int(tail)
    return f"{prefix}{seq + 1:0{width}d}"
