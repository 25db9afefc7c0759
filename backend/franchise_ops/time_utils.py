# Overview: UTC clock and ISO-8601 helpers; all stored datetimes are naive UTC.

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current instant as naive UTC; the default clock for every service."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse request/CLI timestamps into naive UTC.

    Blank input gives None. Offsets (including a trailing "Z") are converted;
    values without an offset are taken to be UTC already. Raises ValueError
    on anything fromisoformat rejects.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Whole-second ISO-8601 with a trailing Z, for JSON payloads."""
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def day_stamp(dt: datetime) -> str:
    """YYYYMMDD of the UTC date, the daily component of order numbers."""
    return _as_utc(dt).strftime("%Y%m%d")
