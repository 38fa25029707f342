# clinic_scheduler/api/routes/calendar_sync.py
from enum import Enum

from fastapi import APIRouter, Depends

from clinic_scheduler.api.deps import get_calendar_sync_service
from clinic_scheduler.core.errors import CalendarNotConnected
from clinic_scheduler.schemas.calendar import (
    CalendarConnect,
    CalendarSettingsOut,
    CalendarSettingsUpdate,
    SyncResult,
)
from clinic_scheduler.services.calendar_sync import CalendarSyncService

router = APIRouter(prefix="/calendar-sync", tags=["calendar-sync"])


class RunDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"
    BOTH = "both"


@router.put("/{provider_id}/settings", response_model=CalendarSettingsOut)
async def connect_calendar(
    provider_id: str,
    payload: CalendarConnect,
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    return await sync.connect_calendar(provider_id, payload)


@router.get("/{provider_id}/settings", response_model=CalendarSettingsOut)
async def get_settings(
    provider_id: str,
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    record = await sync.get_settings(provider_id)
    if record is None:
        raise CalendarNotConnected(provider_id)
    return record


@router.patch("/{provider_id}/settings", response_model=CalendarSettingsOut)
async def update_settings(
    provider_id: str,
    payload: CalendarSettingsUpdate,
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    return await sync.update_sync_settings(provider_id, payload)


@router.post("/{provider_id}/toggle", response_model=CalendarSettingsOut)
async def toggle_sync(
    provider_id: str,
    enabled: bool,
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    return await sync.toggle_sync(provider_id, enabled)


@router.post("/{provider_id}/run", response_model=SyncResult)
async def run_sync(
    provider_id: str,
    direction: RunDirection = RunDirection.BOTH,
    sync: CalendarSyncService = Depends(get_calendar_sync_service),
):
    if direction is RunDirection.OUTBOUND:
        return await sync.sync_outbound(provider_id)
    if direction is RunDirection.INBOUND:
        return await sync.sync_inbound(provider_id)
    return await sync.sync(provider_id)
