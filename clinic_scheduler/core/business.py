# clinic_scheduler/core/business.py
from __future__ import annotations
from datetime import datetime, time, timezone
from typing import Callable, Optional

from clinic_scheduler.core.config import settings

Clock = Callable[[], datetime]

# 0=Mon .. 6=Sun
BUSINESS_HOURS = {
    0: (time(9, 0), time(18, 0)),  # Mon
    1: (time(9, 0), time(18, 0)),  # Tue
    2: (time(9, 0), time(18, 0)),  # Wed
    3: (time(9, 0), time(18, 0)),  # Thu
    4: (time(9, 0), time(18, 0)),  # Fri
    5: (time(9, 0), time(14, 0)),  # Sat (short)
    6: None,                       # Sun (closed)
}

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def clinic_now() -> datetime:
    """Current time in the configured clinic zone."""
    return datetime.now(settings.clinic_tz)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat those as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_within_hours(dt_local: datetime) -> bool:
    wnd = BUSINESS_HOURS.get(dt_local.weekday())
    if not wnd:
        return False
    start, end = wnd
    t = dt_local.time()
    # a slot may start at opening time but not at closing time
    return start <= t < end


def describe_hours(dt_local: datetime) -> str:
    day = DAY_NAMES[dt_local.weekday()]
    wnd = BUSINESS_HOURS.get(dt_local.weekday())
    if not wnd:
        return f"The clinic does not schedule appointments on {day}"
    start, end = wnd
    return (
        f"Requested time is outside opening hours for {day} "
        f"({start.strftime('%H:%M')} - {end.strftime('%H:%M')})"
    )
