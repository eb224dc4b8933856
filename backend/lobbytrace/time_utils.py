from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional

# Stored timestamps are UTC without tzinfo; API output always ends in "Z".


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (Square uses "2026-10-16T12:00:00.123Z") into
    stored form. Blank -> None; naive input is taken as UTC.
    """
    if value is None or not value.strip():
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def deadline_after(seconds: float) -> float:
    """Monotonic deadline for a processing budget of `seconds`."""
    return time.monotonic() + float(seconds)


def deadline_passed(deadline: Optional[float]) -> bool:
    return deadline is not None and time.monotonic() > deadline
