# clinic_scheduler/schemas/calendar.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from clinic_scheduler.db.enums import SyncDirection, SyncStatus


class CalendarConnect(BaseModel):
    """Tokens obtained by the OAuth flow, plus initial preferences."""
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    calendar_id: str = "primary"
    sync_direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    auto_create_events: bool = True
    auto_update_events: bool = True
    sync_past_events: bool = False
    sync_future_days: int = Field(30, gt=0, le=365)
    default_reminder_minutes: int = Field(60, ge=0)


class CalendarSettingsUpdate(BaseModel):
    calendar_id: Optional[str] = None
    sync_enabled: Optional[bool] = None
    sync_direction: Optional[SyncDirection] = None
    auto_create_events: Optional[bool] = None
    auto_update_events: Optional[bool] = None
    sync_past_events: Optional[bool] = None
    sync_future_days: Optional[int] = Field(None, gt=0, le=365)
    default_reminder_minutes: Optional[int] = Field(None, ge=0)


class CalendarSettingsOut(BaseModel):
    # tokens never leave the service
    model_config = ConfigDict(from_attributes=True)

    provider_id: str
    calendar_id: str
    sync_enabled: bool
    sync_direction: SyncDirection
    auto_create_events: bool
    auto_update_events: bool
    sync_past_events: bool
    sync_future_days: int
    default_reminder_minutes: int
    token_expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: SyncStatus
    last_sync_error: Optional[str] = None


class SyncFailure(BaseModel):
    code: str
    message: str
    appointment_id: Optional[str] = None
    event_id: Optional[str] = None


class SyncResult(BaseModel):
    provider_id: str
    direction: str
    synced_count: int = 0
    imported_count: int = 0
    skipped_count: int = 0
    errors: List[SyncFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_failure(self, error: Exception, *, appointment_id: Optional[str] = None,
                    event_id: Optional[str] = None) -> None:
        self.errors.append(SyncFailure(
            code=getattr(error, "code", type(error).__name__),
            message=getattr(error, "message", str(error)),
            appointment_id=appointment_id,
            event_id=event_id,
        ))

    def merge(self, other: "SyncResult") -> "SyncResult":
        return SyncResult(
            provider_id=self.provider_id,
            direction="bidirectional",
            synced_count=self.synced_count + other.synced_count,
            imported_count=self.imported_count + other.imported_count,
            skipped_count=self.skipped_count + other.skipped_count,
            errors=[*self.errors, *other.errors],
        )

    def error_summary(self) -> Optional[str]:
        if not self.errors:
            return None
        parts = []
        for failure in self.errors:
            ref = failure.appointment_id or failure.event_id
            parts.append(f"{ref}: {failure.message}" if ref else failure.message)
        return "; ".join(parts)
