from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_TZ = "Asia/Shanghai"


def now_in(tz: str = DEFAULT_TZ) -> datetime:
    """Aware 'now' in the named zone, independent of the host timezone."""
    return datetime.now(timezone.utc).astimezone(ZoneInfo(tz))


def _localize(now: Optional[datetime], tz: str) -> datetime:
    if now is None:
        return now_in(tz)
    # naive datetimes are taken as UTC
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz))


def date_key(offset_days: int = 0, tz: str = DEFAULT_TZ, now: Optional[datetime] = None) -> str:
    """
    Calendar day in ``tz``, ``offset_days`` away from now, as YYYY-MM-DD.

    Offsetting happens on the local calendar date, so the result is the same
    for every call made within one local day.
    """
    local_day = _localize(now, tz).date()
    return (local_day + timedelta(days=int(offset_days))).isoformat()


def display_timestamp(tz: str = DEFAULT_TZ, now: Optional[datetime] = None) -> str:
    return _localize(now, tz).strftime("%Y-%m-%d %H:%M:%S")


def is_date_key(value: str) -> bool:
    try:
        parsed = date.fromisoformat(value)
    except (TypeError, ValueError):
        return False
    return parsed.isoformat() == value
