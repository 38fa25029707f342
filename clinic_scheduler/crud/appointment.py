# clinic_scheduler/crud/appointment.py

from __future__ import annotations
from datetime import date
from typing import Any, Iterable, Mapping, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clinic_scheduler.db.base import Appointment
from clinic_scheduler.db.enums import (
    AppointmentStatus,
    AppointmentType,
    SLOT_RELEASING_STATUSES,
)

JOINED = (
    selectinload(Appointment.provider),
    selectinload(Appointment.patient),
    selectinload(Appointment.clinic),
)


async def get_appointment(
    db: AsyncSession,
    appointment_id: str,
    *,
    with_relations: bool = True,
) -> Optional[Appointment]:
    q = sa.select(Appointment).where(Appointment.id == appointment_id)
    if with_relations:
        q = q.options(*JOINED)
    res = await db.execute(q)
    return res.scalar_one_or_none()


async def get_by_external_event_id(
    db: AsyncSession,
    external_event_id: str,
    *,
    provider_id: Optional[str] = None,
) -> Optional[Appointment]:
    q = sa.select(Appointment).where(Appointment.external_event_id == external_event_id)
    if provider_id is not None:
        q = q.where(Appointment.provider_id == provider_id)
    res = await db.execute(q.limit(1))
    return res.scalars().first()


async def list_slot_holders(
    db: AsyncSession,
    *,
    provider_id: str,
    day: date,
    exclude_appointment_id: Optional[str] = None,
    for_update: bool = False,
) -> Sequence[Appointment]:
    """Appointments that still occupy time on the provider's calendar for ``day``."""
    q = sa.select(Appointment).where(
        Appointment.provider_id == provider_id,
        Appointment.appointment_date == day,
        Appointment.status.not_in(list(SLOT_RELEASING_STATUSES)),
    )
    if exclude_appointment_id:
        q = q.where(Appointment.id != exclude_appointment_id)
    if for_update:
        q = q.with_for_update()
    q = q.order_by(Appointment.appointment_time.asc())
    res = await db.execute(q)
    return res.scalars().all()


async def list_appointments(
    db: AsyncSession,
    *,
    provider_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status_in: Optional[Iterable[AppointmentStatus]] = None,
    type_in: Optional[Iterable[AppointmentType]] = None,
    text_search: Optional[str] = None,
    limit: Optional[int] = None,
    with_relations: bool = True,
) -> Sequence[Appointment]:
    q = sa.select(Appointment)
    if provider_id is not None:
        q = q.where(Appointment.provider_id == provider_id)
    if patient_id is not None:
        q = q.where(Appointment.patient_id == patient_id)
    if clinic_id is not None:
        q = q.where(Appointment.clinic_id == clinic_id)
    if date_from is not None:
        q = q.where(Appointment.appointment_date >= date_from)
    if date_to is not None:
        q = q.where(Appointment.appointment_date <= date_to)
    if status_in:
        q = q.where(Appointment.status.in_(list(status_in)))
    if type_in:
        q = q.where(Appointment.type.in_(list(type_in)))
    if text_search:
        pattern = f"%{text_search.strip()}%"
        q = q.where(sa.or_(Appointment.title.ilike(pattern), Appointment.description.ilike(pattern)))
    if with_relations:
        q = q.options(*JOINED)
    q = q.order_by(Appointment.appointment_date.asc(), Appointment.appointment_time.asc())
    if limit is not None:
        q = q.limit(limit)
    res = await db.execute(q)
    return res.scalars().all()


async def insert_appointment(db: AsyncSession, values: Mapping[str, Any]) -> str:
    """Stage a new row and flush it; the caller owns the transaction."""
    appt = Appointment(**values)
    db.add(appt)
    await db.flush()
    return appt.id


async def update_appointment_fields(
    db: AsyncSession,
    appointment_id: str,
    values: Mapping[str, Any],
) -> int:
    """Column-level update; returns the number of rows touched."""
    res = await db.execute(
        sa.update(Appointment)
        .where(Appointment.id == appointment_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount
