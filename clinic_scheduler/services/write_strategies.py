# clinic_scheduler/services/write_strategies.py
"""
Write paths for new appointments.

``TransactionalWriteStrategy`` is the primary path: inside one transaction
it serializes on the provider/day (advisory lock on PostgreSQL, row locks
where supported), re-runs the overlap check against committed data and
inserts. It is the only linearization point for concurrent bookings.

``DirectInsertWriteStrategy`` is the degraded fallback used when the
primary path fails for infrastructure reasons. It re-applies the checks
that need no store access (required fields, duration defaulting) and
inserts without re-validating overlaps, so two concurrent bookings that
both land on the fallback can double-book. This is a known, accepted risk.
"""
from __future__ import annotations

import zlib
from contextlib import contextmanager
from typing import Any, Dict, Mapping, Optional, Protocol
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import (
    MissingRequiredField,
    ScheduleConflict,
    StoreUnavailable,
    ValidationError,
)
from clinic_scheduler.core.logging import get_logger
from clinic_scheduler.core.timerange import TimeRange, parse_date, parse_time
from clinic_scheduler.crud.appointment import insert_appointment, list_slot_holders
from clinic_scheduler.services.availability import find_overlap

logger = get_logger(__name__)

REQUIRED_FIELDS = ("provider_id", "patient_id", "appointment_date", "appointment_time", "title", "type")

# Failures that say nothing about the booking itself
INFRASTRUCTURE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    OSError,  # includes ConnectionError and TimeoutError
)


def apply_client_side_checks(values: Mapping[str, Any], default_duration: Optional[int] = None) -> Dict[str, Any]:
    """Required fields, date/time parsing and duration defaulting."""
    checked = dict(values)
    for field in REQUIRED_FIELDS:
        value = checked.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingRequiredField(field)

    checked["appointment_date"] = parse_date(checked["appointment_date"])
    checked["appointment_time"] = parse_time(checked["appointment_time"])

    duration = checked.get("duration")
    if duration is None:
        duration = default_duration or settings.DEFAULT_APPOINTMENT_DURATION
    if int(duration) <= 0:
        raise ValidationError("duration must be greater than zero", details={"field": "duration"})
    checked["duration"] = int(duration)
    return checked


@contextmanager
def store_errors(operation: str):
    """Translate driver/pool failures into StoreUnavailable."""
    try:
        yield
    except IntegrityError as e:
        raise ValidationError(f"{operation} rejected by the store: {e.orig}") from e
    except INFRASTRUCTURE_ERRORS as e:
        raise StoreUnavailable(f"{operation} failed: {e}") from e


def slot_lock_key(provider_id: str, day) -> int:
    return zlib.crc32(f"{provider_id}:{day.isoformat()}".encode())


class WriteStrategy(Protocol):
    name: str

    async def write(self, values: Mapping[str, Any]) -> str:
        """Insert the appointment and return its id; StoreUnavailable on infrastructure failure."""
        ...


class TransactionalWriteStrategy:
    name = "transactional"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], tz: Optional[ZoneInfo] = None):
        self.session_factory = session_factory
        self.tz = tz or settings.clinic_tz

    async def _lock_slot(self, db: AsyncSession, provider_id: str, day) -> None:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(sa.select(sa.func.pg_advisory_xact_lock(slot_lock_key(provider_id, day))))

    async def write(self, values: Mapping[str, Any]) -> str:
        with store_errors("transactional insert"):
            async with self.session_factory() as db:
                async with db.begin():
                    day = values["appointment_date"]
                    await self._lock_slot(db, values["provider_id"], day)
                    existing = await list_slot_holders(
                        db,
                        provider_id=values["provider_id"],
                        day=day,
                        for_update=True,
                    )
                    target = TimeRange.from_slot(day, values["appointment_time"], values["duration"], self.tz)
                    conflict = find_overlap(target, existing, self.tz)
                    if conflict:
                        raise ScheduleConflict(conflict)
                    return await insert_appointment(db, values)


class DirectInsertWriteStrategy:
    name = "direct_insert"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], default_duration: Optional[int] = None):
        self.session_factory = session_factory
        self.default_duration = default_duration

    async def write(self, values: Mapping[str, Any]) -> str:
        checked = apply_client_side_checks(values, self.default_duration)
        logger.warning(
            "degraded_write_path",
            appointment_id=checked.get("id"),
            provider_id=checked["provider_id"],
            appointment_date=checked["appointment_date"].isoformat(),
        )
        with store_errors("direct insert"):
            async with self.session_factory() as db:
                async with db.begin():
                    return await insert_appointment(db, checked)


def default_strategies(session_factory: async_sessionmaker[AsyncSession]) -> list:
    return [
        TransactionalWriteStrategy(session_factory),
        DirectInsertWriteStrategy(session_factory),
    ]
