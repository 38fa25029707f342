# clinic_scheduler/services/availability.py
"""
Slot availability for a provider on a given day.

The checker fails open: when the appointment store cannot be read it
reports the slot as available and logs a warning, so bookings keep working
through a store outage. The primary write path re-validates overlaps in
its own transaction; a fail-open answer followed by the fallback write can
double-book.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.business import Clock, clinic_now, describe_hours, is_within_hours
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.logging import get_logger
from clinic_scheduler.core.timerange import ConflictDetail, TimeRange
from clinic_scheduler.crud.appointment import list_slot_holders
from clinic_scheduler.db.base import Appointment

logger = get_logger(__name__)

REASON_OVERLAP = "overlap"
REASON_PAST_DATE = "past_date"
REASON_OUTSIDE_HOURS = "outside_business_hours"


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflict: Optional[ConflictDetail] = None

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "conflict": self.conflict.to_dict() if self.conflict else None,
        }


def find_overlap(
    target: TimeRange,
    existing: Sequence[Appointment],
    tz: ZoneInfo,
) -> Optional[ConflictDetail]:
    """First appointment in ``existing`` whose interval overlaps ``target``."""
    for appt in existing:
        current = appt.time_range(tz)
        if target.overlaps(current):
            start_label = current.start.strftime("%H:%M")
            end_label = current.end.strftime("%H:%M")
            return ConflictDetail(
                reason=REASON_OVERLAP,
                message=f"The selected time overlaps '{appt.title}' ({start_label}-{end_label})",
                appointment_id=appt.id,
                title=appt.title,
                time_range=current,
            )
    return None


class AvailabilityChecker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = clinic_now,
        tz: Optional[ZoneInfo] = None,
        enforce_business_hours: Optional[bool] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.tz = tz or settings.clinic_tz
        self.enforce_business_hours = (
            settings.BUSINESS_HOURS_ENFORCED if enforce_business_hours is None else enforce_business_hours
        )

    def target_range(self, day: date | str, start: time | str, duration: int) -> TimeRange:
        # raises ValidationError on malformed input
        return TimeRange.from_slot(day, start, duration, self.tz)

    def past_date_conflict(self, target: TimeRange) -> Optional[ConflictDetail]:
        if target.start < self.clock():
            return ConflictDetail(
                reason=REASON_PAST_DATE,
                message="Appointments cannot be scheduled in the past",
            )
        return None

    async def check_availability(
        self,
        provider_id: str,
        day: date | str,
        start: time | str,
        duration: int,
        exclude_appointment_id: Optional[str] = None,
    ) -> AvailabilityResult:
        target = self.target_range(day, start, duration)

        past = self.past_date_conflict(target)
        if past:
            return AvailabilityResult(False, past)

        if self.enforce_business_hours and not is_within_hours(target.start):
            return AvailabilityResult(
                False,
                ConflictDetail(reason=REASON_OUTSIDE_HOURS, message=describe_hours(target.start)),
            )

        try:
            async with self.session_factory() as db:
                existing = await list_slot_holders(
                    db,
                    provider_id=provider_id,
                    day=target.start.date(),
                    exclude_appointment_id=exclude_appointment_id,
                )
        except Exception as e:
            logger.warning(
                "availability_read_failed_open",
                provider_id=provider_id,
                appointment_date=target.start.date().isoformat(),
                error=str(e),
                error_type=type(e).__name__,
            )
            return AvailabilityResult(True)

        conflict = find_overlap(target, existing, self.tz)
        if conflict:
            logger.info(
                "slot_conflict",
                provider_id=provider_id,
                conflicting_appointment_id=conflict.appointment_id,
            )
            return AvailabilityResult(False, conflict)
        return AvailabilityResult(True)
