from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

_clock_lock = threading.Lock()
_last_stamp: Optional[datetime] = None


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z' and microseconds.

    The fixed-width form keeps document timestamps sortable as plain strings.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt_utc.isoformat(timespec="microseconds") + "Z"


def now_iso() -> str:
    """
    Current UTC time as a document timestamp string.

    Strictly increasing within the process: two writes never share a stamp.
    """
    global _last_stamp
    with _clock_lock:
        now = utcnow()
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
    return to_utc_z(now)
