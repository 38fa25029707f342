# clinic_scheduler/api/deps.py
"""
Service singletons for the HTTP layer.

The throttle state and the per-provider sync locks live on these objects,
so one instance is shared by all requests of the process.
"""
from functools import lru_cache

from fastapi import Depends

from clinic_scheduler.db.session import AsyncSessionLocal
from clinic_scheduler.services.appointments import AppointmentService
from clinic_scheduler.services.calendar_sync import CalendarSyncService
from clinic_scheduler.services.lifecycle import AppointmentLifecycle


@lru_cache
def get_appointment_service() -> AppointmentService:
    return AppointmentService(AsyncSessionLocal)


@lru_cache
def get_calendar_sync_service() -> CalendarSyncService:
    return CalendarSyncService(AsyncSessionLocal, get_appointment_service())


def get_lifecycle(
    appointments: AppointmentService = Depends(get_appointment_service),
) -> AppointmentLifecycle:
    return AppointmentLifecycle(appointments)
