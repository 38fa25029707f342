# clinic_scheduler/services/calendar_sync.py
"""
Two-way reconciliation between the appointment store and a provider's
Google Calendar.

Outbound pushes active appointments in the sync horizon (create when the
appointment has no external event yet, update otherwise). Inbound imports
external events that are not yet correlated to an appointment. Both run
per provider under an asyncio.Lock, so two batches for the same provider
never interleave while batches for different providers run concurrently.

Failure handling inside a batch:
- ProviderUnavailable is retried with exponential backoff per item and
  reported in the result when the retries run out.
- A 401 forces one token refresh and one retry of the call.
- AuthExpired after that (or a failed refresh) aborts the batch, marks the
  settings record as errored and is re-raised.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.business import Clock, as_utc, clinic_now, utc_now
from clinic_scheduler.core.config import settings as app_settings
from clinic_scheduler.core.errors import (
    AuthExpired,
    CalendarNotConnected,
    ProviderUnavailable,
    SchedulingError,
    ScheduleConflict,
    ValidationError,
    log_error,
)
from clinic_scheduler.core.logging import get_logger, new_correlation_id, set_work_context
from clinic_scheduler.core.timerange import TimeRange
from clinic_scheduler.crud import calendar_settings as settings_crud
from clinic_scheduler.db.base import Appointment, CalendarSyncSettings
from clinic_scheduler.db.enums import (
    DEFAULT_APPOINTMENT_STATUS,
    DEFAULT_APPOINTMENT_TYPE,
    AppointmentSource,
    SyncStatus,
)
from clinic_scheduler.schemas.calendar import CalendarConnect, CalendarSettingsUpdate, SyncFailure, SyncResult
from clinic_scheduler.services.appointments import AppointmentService
from clinic_scheduler.services.availability import find_overlap
from clinic_scheduler.services.google_calendar import (
    VISIBILITY_PRIVATE,
    Attendee,
    CalendarEvent,
    GoogleCalendarClient,
)
from clinic_scheduler.services.write_strategies import store_errors

logger = get_logger(__name__)

T = TypeVar("T")

OUTBOUND = "outbound"
INBOUND = "inbound"

EVENT_DESCRIPTION_FOOTER = "Scheduled through the clinic appointment system"


@dataclass
class _Batch:
    """Per-run view of the provider's settings and current bearer token."""
    provider_id: str
    record: CalendarSyncSettings
    access_token: Optional[str]
    expires_at: Optional[datetime]
    refreshed: bool = False


def describe_appointment(appt: Appointment) -> str:
    """Event description: the appointment's own notes followed by a details block."""
    lines = []
    if appt.description:
        lines.extend([appt.description, ""])
    patient = appt.patient
    lines.append("Appointment details:")
    lines.append(f"Patient: {patient.full_name if patient is not None and patient.full_name else 'N/A'}")
    if patient is not None and patient.phone:
        lines.append(f"Phone: {patient.phone}")
    lines.append(f"Duration: {appt.duration} minutes")
    if appt.location:
        lines.append(f"Location: {appt.location}")
    lines.extend(["", EVENT_DESCRIPTION_FOOTER])
    return "\n".join(lines)


def event_for_appointment(appt: Appointment, tz: ZoneInfo, reminder_minutes: Optional[int]) -> CalendarEvent:
    span = appt.time_range(tz)
    attendees = []
    if appt.patient is not None and appt.patient.email:
        attendees.append(Attendee(email=appt.patient.email, display_name=appt.patient.full_name))
    return CalendarEvent(
        title=appt.title,
        description=describe_appointment(appt),
        location=appt.location,
        start=span.start,
        end=span.end,
        timezone=str(tz),
        attendees=attendees,
        reminder_minutes=reminder_minutes,
        visibility=VISIBILITY_PRIVATE,
        source_appointment_id=appt.id,
    )


class CalendarSyncService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        appointments: AppointmentService,
        client: Optional[GoogleCalendarClient] = None,
        *,
        clock: Clock = clinic_now,
        tz: Optional[ZoneInfo] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        refresh_window: Optional[timedelta] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.appointments = appointments
        self.client = client or GoogleCalendarClient()
        self.clock = clock
        self.tz = tz or app_settings.clinic_tz
        self.max_retries = app_settings.SYNC_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = app_settings.SYNC_RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self.refresh_window = refresh_window or timedelta(minutes=app_settings.SYNC_TOKEN_REFRESH_WINDOW_MINUTES)
        self.sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = self._locks[provider_id] = asyncio.Lock()
        return lock

    # ---------- settings management ----------

    async def get_settings(self, provider_id: str) -> Optional[CalendarSyncSettings]:
        with store_errors("load calendar settings"):
            async with self.session_factory() as db:
                return await settings_crud.get_settings(db, provider_id)

    async def connect_calendar(self, provider_id: str, data: CalendarConnect) -> CalendarSyncSettings:
        """Create or replace the provider's calendar connection."""
        values = data.model_dump()
        values.update(sync_enabled=True, last_sync_status=SyncStatus.PENDING, last_sync_error=None)
        with store_errors("save calendar settings"):
            async with self.session_factory() as db:
                record = await settings_crud.upsert_settings(db, provider_id, values)
        logger.info("calendar_connected", provider_id=provider_id, calendar_id=record.calendar_id)
        return record

    async def toggle_sync(self, provider_id: str, enabled: bool) -> CalendarSyncSettings:
        return await self.update_sync_settings(provider_id, CalendarSettingsUpdate(sync_enabled=enabled))

    async def update_sync_settings(self, provider_id: str, data: CalendarSettingsUpdate) -> CalendarSyncSettings:
        values = data.model_dump(exclude_unset=True, exclude_none=True)
        with store_errors("update calendar settings"):
            async with self.session_factory() as db:
                if values and not await settings_crud.update_settings(db, provider_id, values):
                    raise CalendarNotConnected(provider_id)
                record = await settings_crud.get_settings(db, provider_id)
        if record is None:
            raise CalendarNotConnected(provider_id)
        logger.info("calendar_settings_updated", provider_id=provider_id, fields=sorted(values))
        return record

    async def _save(self, provider_id: str, **values) -> None:
        with store_errors("update calendar settings"):
            async with self.session_factory() as db:
                await settings_crud.update_settings(db, provider_id, values)

    # ---------- token handling ----------

    def _token_is_fresh(self, batch: _Batch) -> bool:
        if not batch.access_token:
            return False
        expires_at = as_utc(batch.expires_at)
        if expires_at is None:
            return True
        return expires_at - self.clock() > self.refresh_window

    async def _refresh(self, batch: _Batch) -> None:
        try:
            grant = await self._with_retries(
                "refresh_token",
                lambda: self.client.refresh_token(batch.record.refresh_token),
            )
        except AuthExpired:
            raise
        except SchedulingError as e:
            raise AuthExpired(f"Token refresh failed: {e.message}") from e

        batch.access_token = grant.access_token
        batch.expires_at = grant.expires_at
        batch.refreshed = True
        await self._save(batch.provider_id, access_token=grant.access_token, token_expires_at=grant.expires_at)

    async def _ensure_token(self, batch: _Batch) -> None:
        if not self._token_is_fresh(batch):
            logger.info("token_refresh_needed", provider_id=batch.provider_id)
            await self._refresh(batch)

    # ---------- provider calls ----------

    async def _with_retries(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        attempt = 0
        while True:
            try:
                return await call()
            except ProviderUnavailable as e:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(
                    "provider_call_retry",
                    operation=operation,
                    attempt=attempt,
                    delay=delay,
                    error=e.message,
                )
                await self.sleep(delay)

    async def _call(self, batch: _Batch, operation: str, call: Callable[[str], Awaitable[T]]) -> T:
        """Provider call with backoff, and one forced refresh on a 401."""
        try:
            return await self._with_retries(operation, lambda: call(batch.access_token))
        except AuthExpired:
            logger.info("provider_rejected_token", operation=operation, provider_id=batch.provider_id)
            await self._refresh(batch)
            return await self._with_retries(operation, lambda: call(batch.access_token))

    # ---------- batches ----------

    async def _open_batch(self, provider_id: str, direction: str) -> _Batch | SyncResult:
        if not self.client.is_configured:
            return SyncResult(provider_id=provider_id, direction=direction, errors=[
                SyncFailure(code="not_configured", message="Google Calendar integration is not configured"),
            ])
        record = await self.get_settings(provider_id)
        if record is None:
            return SyncResult(provider_id=provider_id, direction=direction, errors=[
                SyncFailure(code="not_configured", message="Calendar sync is not configured for this provider"),
            ])
        if not record.sync_enabled:
            return SyncResult(provider_id=provider_id, direction=direction, errors=[
                SyncFailure(code="sync_disabled", message="Calendar sync is disabled for this provider"),
            ])
        return _Batch(
            provider_id=provider_id,
            record=record,
            access_token=record.access_token,
            expires_at=record.token_expires_at,
        )

    async def _run(self, provider_id: str, direction: str) -> SyncResult:
        set_work_context(provider_id=provider_id, sync_batch=new_correlation_id(), sync_direction=direction)
        async with self._lock_for(provider_id):
            opened = await self._open_batch(provider_id, direction)
            if isinstance(opened, SyncResult):
                logger.info("sync_skipped", reason=opened.errors[0].code)
                return opened
            batch = opened

            if direction == INBOUND and not batch.record.sync_direction.allows_inbound:
                return SyncResult(provider_id=provider_id, direction=direction, errors=[SyncFailure(
                    code="direction_not_allowed",
                    message=f"Inbound sync is not allowed for direction '{batch.record.sync_direction.value}'",
                )])

            logger.info("sync_started")
            try:
                await self._ensure_token(batch)
                if direction == OUTBOUND:
                    result = await self._outbound(batch)
                elif direction == INBOUND:
                    result = await self._inbound(batch)
                else:
                    result = SyncResult(provider_id=provider_id, direction=direction)
                    if batch.record.sync_direction.allows_outbound:
                        result = result.merge(await self._outbound(batch))
                    if batch.record.sync_direction.allows_inbound:
                        result = result.merge(await self._inbound(batch))
            except AuthExpired as e:
                logger.error("sync_aborted_auth", error=e.message)
                await self._save(
                    provider_id,
                    last_sync_at=utc_now(),
                    last_sync_status=SyncStatus.ERROR,
                    last_sync_error=e.message,
                )
                raise

            await self._save(
                provider_id,
                last_sync_at=utc_now(),
                last_sync_status=SyncStatus.SUCCESS if result.ok else SyncStatus.ERROR,
                last_sync_error=result.error_summary(),
            )
            logger.info(
                "sync_finished",
                synced=result.synced_count,
                imported=result.imported_count,
                skipped=result.skipped_count,
                errors=len(result.errors),
            )
            return result

    async def sync_outbound(self, provider_id: str) -> SyncResult:
        return await self._run(provider_id, OUTBOUND)

    async def sync_inbound(self, provider_id: str) -> SyncResult:
        return await self._run(provider_id, INBOUND)

    async def sync(self, provider_id: str) -> SyncResult:
        """Run every direction the provider's settings allow."""
        return await self._run(provider_id, "bidirectional")

    async def _outbound(self, batch: _Batch) -> SyncResult:
        result = SyncResult(provider_id=batch.provider_id, direction=OUTBOUND)
        today = self.clock().date()
        horizon = today + timedelta(days=batch.record.sync_future_days)
        appointments = await self.appointments.list_for_sync(batch.provider_id, today, horizon)

        for appt in appointments:
            # events authored in the external calendar are never written back
            if not appt.sync_enabled or appt.source == AppointmentSource.EXTERNAL:
                result.skipped_count += 1
                continue
            try:
                await self._push(batch, appt)
                result.synced_count += 1
            except AuthExpired:
                raise
            except SchedulingError as e:
                logger.warning("outbound_item_failed", appointment_id=appt.id, error=e.message, code=e.code)
                result.add_failure(e, appointment_id=appt.id)
        return result

    async def _push(self, batch: _Batch, appt: Appointment) -> str:
        # reload with projections so attendee emails are available
        appt = await self.appointments.get_appointment(appt.id)
        event = event_for_appointment(appt, self.tz, batch.record.default_reminder_minutes)
        calendar_id = batch.record.calendar_id

        if appt.external_event_id:
            event_id = appt.external_event_id
            await self._call(
                batch, "update_event",
                lambda token: self.client.update_event(token, calendar_id, event_id, event),
            )
            await self.appointments.record_sync(appt.id, synced_at=utc_now())
        else:
            event_id = await self._call(
                batch, "create_event",
                lambda token: self.client.create_event(token, calendar_id, event),
            )
            await self.appointments.record_sync(appt.id, synced_at=utc_now(), external_event_id=event_id)
        return event_id

    async def _inbound(self, batch: _Batch) -> SyncResult:
        result = SyncResult(provider_id=batch.provider_id, direction=INBOUND)
        now = self.clock()
        time_min = now - timedelta(days=app_settings.SYNC_PAST_DAYS) if batch.record.sync_past_events else now
        time_max = now + timedelta(days=batch.record.sync_future_days)
        calendar_id = batch.record.calendar_id

        try:
            events = await self._call(
                batch, "list_events",
                lambda token: self.client.list_events(token, calendar_id, time_min, time_max, self.tz),
            )
        except AuthExpired:
            raise
        except SchedulingError as e:
            logger.warning("inbound_listing_failed", error=e.message, code=e.code)
            result.add_failure(e)
            return result

        for event in events:
            if event.is_cancelled or event.all_day or event.source_appointment_id:
                result.skipped_count += 1
                continue
            try:
                if await self.appointments.find_by_external_event(batch.provider_id, event.id):
                    result.skipped_count += 1
                    continue
                await self._import(batch, event)
                result.imported_count += 1
            except SchedulingError as e:
                logger.warning("inbound_item_failed", event_id=event.id, error=e.message, code=e.code)
                result.add_failure(e, event_id=event.id)
        return result

    async def _import(self, batch: _Batch, event: CalendarEvent) -> Appointment:
        start = event.start.astimezone(self.tz)
        duration = event.duration_minutes
        if duration <= 0:
            raise ValidationError(f"External event {event.id} has no duration")
        span = TimeRange(start, start + timedelta(minutes=duration))

        holders = await self.appointments.list_slot_holders(batch.provider_id, start.date())
        conflict = find_overlap(span, holders, self.tz)
        if conflict:
            raise ScheduleConflict(conflict)

        appt = await self.appointments.import_external({
            "provider_id": batch.provider_id,
            "title": event.title or "External event",
            "description": event.description,
            "location": event.location,
            "appointment_date": start.date(),
            "appointment_time": start.time().replace(tzinfo=None, microsecond=0),
            "duration": duration,
            "type": DEFAULT_APPOINTMENT_TYPE,
            "status": DEFAULT_APPOINTMENT_STATUS,
            "external_event_id": event.id,
            "last_synced_at": utc_now(),
        })
        logger.info("external_event_imported", event_id=event.id, appointment_id=appt.id)
        return appt

    # ---------- single appointment mirroring ----------

    async def mirror_appointment(self, appointment_id: str) -> Optional[str]:
        """
        Push one appointment right after it was created or edited.

        Runs as a background task: failures are logged and recorded on the
        settings record, never raised.
        """
        try:
            async with self._lock_for_appointment(appointment_id) as (batch, appt):
                if batch is None:
                    return None
                if appt.external_event_id and not batch.record.auto_update_events:
                    return None
                if not appt.external_event_id and not batch.record.auto_create_events:
                    return None
                if appt.status.is_terminal:
                    return None
                await self._ensure_token(batch)
                return await self._push(batch, appt)
        except SchedulingError as e:
            log_error(e, {"operation": "mirror_appointment", "appointment_id": appointment_id})
            if isinstance(e, AuthExpired):
                await self._mark_auth_error(appointment_id, e)
            return None

    async def remove_mirrored_event(self, appointment_id: str) -> bool:
        """Delete the external event of a cancelled appointment; background task."""
        try:
            async with self._lock_for_appointment(appointment_id) as (batch, appt):
                if batch is None or not appt.external_event_id:
                    return False
                await self._ensure_token(batch)
                event_id = appt.external_event_id
                calendar_id = batch.record.calendar_id
                removed = await self._call(
                    batch, "delete_event",
                    lambda token: self.client.delete_event(token, calendar_id, event_id),
                )
                await self.appointments.record_sync(appt.id, synced_at=utc_now())
                return removed
        except SchedulingError as e:
            log_error(e, {"operation": "remove_mirrored_event", "appointment_id": appointment_id})
            if isinstance(e, AuthExpired):
                await self._mark_auth_error(appointment_id, e)
            return False

    @asynccontextmanager
    async def _lock_for_appointment(self, appointment_id: str):
        """Yield (batch, appointment) under the provider lock; batch is None when outbound is off."""
        appt = await self.appointments.get_appointment(appointment_id)
        set_work_context(provider_id=appt.provider_id, appointment_id=appt.id)
        async with self._lock_for(appt.provider_id):
            opened = await self._open_batch(appt.provider_id, OUTBOUND)
            if isinstance(opened, SyncResult) or not opened.record.sync_direction.allows_outbound:
                yield None, appt
            else:
                yield opened, appt

    async def _mark_auth_error(self, appointment_id: str, error: AuthExpired) -> None:
        try:
            appt = await self.appointments.get_appointment(appointment_id)
            await self._save(appt.provider_id, last_sync_status=SyncStatus.ERROR, last_sync_error=error.message)
        except SchedulingError as e:
            log_error(e, {"operation": "mark_auth_error", "appointment_id": appointment_id})

