# clinic_scheduler/core/timerange.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from clinic_scheduler.core.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMATS = ("%H:%M", "%H:%M:%S")


def parse_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), DATE_FORMAT).date()
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD", details={"field": "appointment_date"})


def parse_time(value: time | str) -> time:
    if isinstance(value, time):
        return value.replace(microsecond=0)
    raw = str(value).strip()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    raise ValidationError(f"Invalid time '{value}'. Use HH:MM", details={"field": "appointment_time"})


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval [start, end) over timezone-aware datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValidationError("TimeRange bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValidationError("TimeRange end must be after its start")

    @classmethod
    def from_slot(cls, day: date | str, start: time | str, duration_min: int, tz: ZoneInfo) -> "TimeRange":
        if duration_min is None or int(duration_min) <= 0:
            raise ValidationError("duration must be greater than zero", details={"field": "duration"})
        begin = datetime.combine(parse_date(day), parse_time(start), tzinfo=tz)
        return cls(begin, begin + timedelta(minutes=int(duration_min)))

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, other: "TimeRange") -> bool:
        # touching bounds do not overlap
        return self.start < other.end and self.end > other.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class ConflictDetail:
    """Why a slot cannot be booked, and with what it collides."""

    reason: str
    message: str
    appointment_id: Optional[str] = None
    title: Optional[str] = None
    time_range: Optional[TimeRange] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"reason": self.reason, "message": self.message}
        if self.appointment_id is not None:
            body["conflicting_appointment_id"] = self.appointment_id
        if self.title is not None:
            body["conflicting_title"] = self.title
        if self.time_range is not None:
            body["conflicting_time_range"] = self.time_range.to_dict()
        return body
