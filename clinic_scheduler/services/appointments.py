# clinic_scheduler/services/appointments.py
"""
Appointment store adapter.

Every write and read of appointments made by the rest of the system goes
through ``AppointmentService``. Creation validates the payload, asks the
availability checker, and then tries the configured write strategies in
order: only infrastructure failures (``StoreUnavailable``) move on to the
next strategy, business errors are returned to the caller immediately.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.business import Clock, as_utc, clinic_now, utc_now
from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import (
    AppointmentNotFound,
    InvalidTransition,
    PastDate,
    ScheduleConflict,
    StoreUnavailable,
    ValidationError,
)
from clinic_scheduler.core.logging import get_logger
from clinic_scheduler.core.timerange import parse_date, parse_time
from clinic_scheduler.crud import appointment as crud
from clinic_scheduler.db.base import Appointment
from clinic_scheduler.db.enums import (
    ACTIVE_STATUSES,
    DEFAULT_APPOINTMENT_STATUS,
    AppointmentSource,
    AppointmentStatus,
)
from clinic_scheduler.schemas.appointment import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentStats,
    AppointmentUpdate,
)
from clinic_scheduler.services.availability import REASON_PAST_DATE, AvailabilityChecker, AvailabilityResult
from clinic_scheduler.services.rate_limiter import MinIntervalThrottle
from clinic_scheduler.services.write_strategies import (
    WriteStrategy,
    apply_client_side_checks,
    default_strategies,
    store_errors,
)

logger = get_logger(__name__)

SCHEDULING_FIELDS = ("provider_id", "appointment_date", "appointment_time", "duration")


def raise_for_availability(result: AvailabilityResult) -> None:
    if result.available:
        return
    if result.conflict.reason == REASON_PAST_DATE:
        raise PastDate(result.conflict.message)
    raise ScheduleConflict(result.conflict)


class AppointmentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        availability: Optional[AvailabilityChecker] = None,
        strategies: Optional[Sequence[WriteStrategy]] = None,
        throttle: Optional[MinIntervalThrottle] = None,
        clock: Clock = clinic_now,
        default_duration: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.availability = availability or AvailabilityChecker(session_factory, clock=clock)
        self.strategies = list(strategies) if strategies is not None else default_strategies(session_factory)
        if not self.strategies:
            raise ValueError("at least one write strategy is required")
        self.throttle = throttle or MinIntervalThrottle()
        self.default_duration = default_duration or settings.DEFAULT_APPOINTMENT_DURATION

    # ---------- writes ----------

    async def create_appointment(self, payload: Union[AppointmentCreate, Mapping[str, Any]]) -> Appointment:
        if not isinstance(payload, AppointmentCreate):
            payload = AppointmentCreate.model_validate(dict(payload))

        values = apply_client_side_checks(payload.model_dump(), self.default_duration)

        result = await self.availability.check_availability(
            values["provider_id"],
            values["appointment_date"],
            values["appointment_time"],
            values["duration"],
        )
        raise_for_availability(result)

        now = utc_now()
        values.update(
            id=str(uuid.uuid4()),
            status=DEFAULT_APPOINTMENT_STATUS,
            source=AppointmentSource.INTERNAL,
            created_at=now,
            updated_at=now,
        )
        appointment_id = await self._write(values)
        logger.info(
            "appointment_created",
            appointment_id=appointment_id,
            provider_id=values["provider_id"],
            appointment_date=values["appointment_date"].isoformat(),
            appointment_time=values["appointment_time"].strftime("%H:%M"),
        )
        return await self._read_back(appointment_id)

    async def import_external(self, values: Mapping[str, Any]) -> Appointment:
        """
        Insert an appointment that mirrors an external calendar event.

        Imports carry no patient and are written through the same strategy
        chain; the caller decides on overlaps before calling this.
        """
        row = dict(values)
        if not row.get("title"):
            raise ValidationError("imported event has no title", details={"field": "title"})
        if int(row.get("duration") or 0) <= 0:
            raise ValidationError("imported event has no duration", details={"field": "duration"})
        now = utc_now()
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("status", DEFAULT_APPOINTMENT_STATUS)
        row.update(source=AppointmentSource.EXTERNAL, created_at=now, updated_at=now)

        with store_errors("external import"):
            async with self.session_factory() as db:
                async with db.begin():
                    appointment_id = await crud.insert_appointment(db, row)
        return await self._read_back(appointment_id)

    async def _write(self, values: Dict[str, Any]) -> str:
        last_error: Optional[StoreUnavailable] = None
        for strategy in self.strategies:
            try:
                return await strategy.write(values)
            except StoreUnavailable as e:
                last_error = e
                logger.warning(
                    "write_strategy_failed",
                    strategy=strategy.name,
                    appointment_id=values.get("id"),
                    error=str(e),
                )
        raise StoreUnavailable(
            "Appointment could not be saved; all write paths failed",
            details={"strategies": [s.name for s in self.strategies]},
        ) from last_error

    async def update_appointment(
        self,
        appointment_id: str,
        patch: Union[AppointmentUpdate, Mapping[str, Any]],
    ) -> Appointment:
        if isinstance(patch, AppointmentUpdate):
            changes = patch.model_dump(exclude_unset=True)
        else:
            changes = AppointmentUpdate.model_validate(dict(patch)).model_dump(exclude_unset=True)

        with store_errors("load appointment"):
            async with self.session_factory() as db:
                current = await crud.get_appointment(db, appointment_id, with_relations=False)
        if current is None:
            raise AppointmentNotFound(appointment_id)

        if changes.get("status") is not None:
            requested = AppointmentStatus(changes["status"])
            if requested != current.status and not current.status.can_transition_to(requested):
                raise InvalidTransition(current.status.value, requested.value)

        if changes.get("appointment_date") is not None:
            changes["appointment_date"] = parse_date(changes["appointment_date"])
        if changes.get("appointment_time") is not None:
            changes["appointment_time"] = parse_time(changes["appointment_time"])

        if any(f in changes and changes[f] is not None for f in SCHEDULING_FIELDS):
            await self._recheck_slot(current, changes)

        changes = {k: v for k, v in changes.items() if v is not None or k in ("description", "location", "notes")}
        previous = as_utc(current.updated_at)
        now = utc_now()
        changes["updated_at"] = max(now, previous) if previous else now

        with store_errors("update appointment"):
            async with self.session_factory() as db:
                async with db.begin():
                    touched = await crud.update_appointment_fields(db, appointment_id, changes)
        if not touched:
            raise AppointmentNotFound(appointment_id)

        logger.info(
            "appointment_updated",
            appointment_id=appointment_id,
            fields=sorted(k for k in changes if k != "updated_at"),
        )
        return await self._read_back(appointment_id)

    async def _recheck_slot(self, current: Appointment, changes: Mapping[str, Any]) -> None:
        status = AppointmentStatus(changes.get("status") or current.status)
        if not status.blocks_slot:
            return
        duration = changes.get("duration") or current.duration
        if int(duration) <= 0:
            raise ValidationError("duration must be greater than zero", details={"field": "duration"})
        result = await self.availability.check_availability(
            changes.get("provider_id") or current.provider_id,
            changes.get("appointment_date") or current.appointment_date,
            changes.get("appointment_time") or current.appointment_time,
            duration,
            exclude_appointment_id=current.id,
        )
        raise_for_availability(result)

    async def set_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        return await self.update_appointment(appointment_id, {"status": status})

    async def mark_reminder_sent(self, appointment_id: str) -> Appointment:
        return await self.update_appointment(appointment_id, {"reminder_sent": True})

    async def record_sync(
        self,
        appointment_id: str,
        *,
        synced_at: datetime,
        external_event_id: Optional[str] = None,
    ) -> None:
        """Persist sync metadata only; scheduling fields are never touched here."""
        values: Dict[str, Any] = {"last_synced_at": synced_at}
        if external_event_id is not None:
            values["external_event_id"] = external_event_id
        with store_errors("record sync"):
            async with self.session_factory() as db:
                async with db.begin():
                    touched = await crud.update_appointment_fields(db, appointment_id, values)
        if not touched:
            raise AppointmentNotFound(appointment_id)

    # ---------- reads ----------

    async def _read_back(self, appointment_id: str) -> Appointment:
        with store_errors("read appointment"):
            async with self.session_factory() as db:
                appt = await crud.get_appointment(db, appointment_id)
        if appt is None:
            raise AppointmentNotFound(appointment_id)
        return appt

    async def get_appointment(self, appointment_id: str) -> Appointment:
        return await self._read_back(appointment_id)

    async def get_appointments(
        self,
        filters: Union[AppointmentFilters, Mapping[str, Any], None] = None,
    ) -> List[Appointment]:
        if filters is None:
            filters = AppointmentFilters()
        elif not isinstance(filters, AppointmentFilters):
            filters = AppointmentFilters.model_validate(dict(filters))

        if not self.throttle.allow(filters.throttle_key):
            return []

        with store_errors("list appointments"):
            async with self.session_factory() as db:
                rows = await crud.list_appointments(
                    db,
                    provider_id=filters.provider_id,
                    patient_id=filters.patient_id,
                    clinic_id=filters.clinic_id,
                    date_from=filters.date_from,
                    date_to=filters.date_to,
                    status_in=filters.status,
                    type_in=filters.type,
                    text_search=filters.search,
                )
        return list(rows)

    async def get_appointments_by_date(
        self,
        day: Union[date, str],
        *,
        provider_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> List[Appointment]:
        day = parse_date(day)
        return await self.get_appointments(
            AppointmentFilters(provider_id=provider_id, clinic_id=clinic_id, date_from=day, date_to=day)
        )

    async def get_appointments_by_date_range(
        self,
        start: Union[date, str],
        end: Union[date, str],
        *,
        provider_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
    ) -> List[Appointment]:
        return await self.get_appointments(
            AppointmentFilters(
                provider_id=provider_id,
                clinic_id=clinic_id,
                date_from=parse_date(start),
                date_to=parse_date(end),
            )
        )

    async def get_upcoming_appointments(self, provider_id: str, limit: int = 10) -> List[Appointment]:
        """Active appointments from now on, soonest first."""
        now = self.clock()
        with store_errors("upcoming appointments"):
            async with self.session_factory() as db:
                rows = await crud.list_appointments(
                    db,
                    provider_id=provider_id,
                    date_from=now.date(),
                    status_in=ACTIVE_STATUSES,
                )
        # today's rows that already started are not upcoming
        upcoming = [
            a for a in rows
            if a.appointment_date > now.date() or a.appointment_time >= now.time()
        ]
        return upcoming[:limit]

    async def get_appointment_stats(
        self,
        *,
        provider_id: Optional[str] = None,
        clinic_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AppointmentStats:
        with store_errors("appointment stats"):
            async with self.session_factory() as db:
                rows = await crud.list_appointments(
                    db,
                    provider_id=provider_id,
                    clinic_id=clinic_id,
                    date_from=date_from,
                    date_to=date_to,
                    with_relations=False,
                )

        today = self.clock().date()
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)  # weeks start on Sunday
        week_end = week_start + timedelta(days=7)

        stats = AppointmentStats(total=len(rows))
        for appt in rows:
            stats.by_status[appt.status.value] = stats.by_status.get(appt.status.value, 0) + 1
            stats.by_type[appt.type.value] = stats.by_type.get(appt.type.value, 0) + 1
            day = appt.appointment_date
            if day == today:
                stats.today += 1
            if week_start <= day < week_end:
                stats.this_week += 1
            if (day.year, day.month) == (today.year, today.month):
                stats.this_month += 1
        return stats

    async def list_for_sync(self, provider_id: str, date_from: date, date_to: date) -> List[Appointment]:
        """Unthrottled window read used by the calendar reconciler."""
        with store_errors("list appointments for sync"):
            async with self.session_factory() as db:
                rows = await crud.list_appointments(
                    db,
                    provider_id=provider_id,
                    date_from=date_from,
                    date_to=date_to,
                    status_in=ACTIVE_STATUSES,
                    with_relations=False,
                )
        return list(rows)

    async def find_by_external_event(self, provider_id: str, external_event_id: str) -> Optional[Appointment]:
        with store_errors("lookup by external event"):
            async with self.session_factory() as db:
                return await crud.get_by_external_event_id(db, external_event_id, provider_id=provider_id)

    async def list_slot_holders(self, provider_id: str, day: date) -> List[Appointment]:
        with store_errors("list slot holders"):
            async with self.session_factory() as db:
                return list(await crud.list_slot_holders(db, provider_id=provider_id, day=day))
