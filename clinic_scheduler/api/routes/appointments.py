# clinic_scheduler/api/routes/appointments.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from clinic_scheduler.api.deps import (
    get_appointment_service,
    get_calendar_sync_service,
    get_lifecycle,
)
from clinic_scheduler.core.config import settings
from clinic_scheduler.db.enums import AppointmentStatus, AppointmentType
from clinic_scheduler.schemas.appointment import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentOut,
    AppointmentStats,
    AppointmentUpdate,
    AvailabilityRequest,
    AvailabilityResponse,
    CancelRequest,
    StatusChange,
)
from clinic_scheduler.services.appointments import AppointmentService
from clinic_scheduler.services.calendar_sync import CalendarSyncService
from clinic_scheduler.services.lifecycle import AppointmentLifecycle

router = APIRouter(prefix="/appointments", tags=["appointments"])


def _mirror(background: BackgroundTasks, sync: CalendarSyncService, appointment: AppointmentOut) -> None:
    if not settings.google_calendar_configured:
        return
    if not appointment.status.is_terminal:
        background.add_task(sync.mirror_appointment, appointment.id)
    elif not appointment.status.blocks_slot and appointment.external_event_id:
        background.add_task(sync.remove_mirrored_event, appointment.id)


@router.post("/availability", response_model=AvailabilityResponse)
async def check_availability(
    payload: AvailabilityRequest,
    svc: AppointmentService = Depends(get_appointment_service),
):
    result = await svc.availability.check_availability(
        payload.provider_id,
        payload.appointment_date,
        payload.appointment_time,
        payload.duration,
        exclude_appointment_id=payload.exclude_appointment_id,
    )
    return result.to_dict()


@router.post("", response_model=AppointmentOut, status_code=201)
async def create_appointment(
    payload: AppointmentCreate,
    background: BackgroundTasks,
    svc: AppointmentService = Depends(get_appointment_service),
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    appt = AppointmentOut.model_validate(await svc.create_appointment(payload))
    _mirror(background, sync, appt)
    return appt


@router.get("", response_model=List[AppointmentOut])
async def list_appointments(
    provider_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[List[AppointmentStatus]] = Query(None),
    type: Optional[List[AppointmentType]] = Query(None),
    search: Optional[str] = None,
    svc: AppointmentService = Depends(get_appointment_service),
):
    filters = AppointmentFilters(
        provider_id=provider_id,
        patient_id=patient_id,
        clinic_id=clinic_id,
        date_from=date_from,
        date_to=date_to,
        status=status,
        type=type,
        search=search,
    )
    return await svc.get_appointments(filters)


@router.get("/stats", response_model=AppointmentStats)
async def appointment_stats(
    provider_id: Optional[str] = None,
    clinic_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    svc: AppointmentService = Depends(get_appointment_service),
):
    return await svc.get_appointment_stats(
        provider_id=provider_id, clinic_id=clinic_id, date_from=date_from, date_to=date_to,
    )


@router.get("/upcoming/{provider_id}", response_model=List[AppointmentOut])
async def upcoming_appointments(
    provider_id: str,
    limit: int = Query(10, ge=1, le=100),
    svc: AppointmentService = Depends(get_appointment_service),
):
    return await svc.get_upcoming_appointments(provider_id, limit=limit)


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: str,
    svc: AppointmentService = Depends(get_appointment_service),
):
    return await svc.get_appointment(appointment_id)


@router.patch("/{appointment_id}", response_model=AppointmentOut)
async def update_appointment(
    appointment_id: str,
    patch: AppointmentUpdate,
    background: BackgroundTasks,
    svc: AppointmentService = Depends(get_appointment_service),
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    appt = AppointmentOut.model_validate(await svc.update_appointment(appointment_id, patch))
    _mirror(background, sync, appt)
    return appt


@router.post("/{appointment_id}/status", response_model=AppointmentOut)
async def change_status(
    appointment_id: str,
    payload: StatusChange,
    background: BackgroundTasks,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    appt = AppointmentOut.model_validate(await lifecycle.transition(appointment_id, payload.status))
    _mirror(background, sync, appt)
    return appt


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    appointment_id: str,
    payload: CancelRequest,
    background: BackgroundTasks,
    lifecycle: AppointmentLifecycle = Depends(get_lifecycle),
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    appt = AppointmentOut.model_validate(await lifecycle.cancel(appointment_id, payload.cancelled_by))
    _mirror(background, sync, appt)
    return appt


@router.post("/{appointment_id}/reminder-sent", response_model=AppointmentOut)
async def mark_reminder_sent(
    appointment_id: str,
    svc: AppointmentService = Depends(get_appointment_service),
):
    return await svc.mark_reminder_sent(appointment_id)
