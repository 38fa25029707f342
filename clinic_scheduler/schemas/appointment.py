# clinic_scheduler/schemas/appointment.py
from datetime import date as _Date, datetime as _Datetime, time as _Time
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_scheduler.db.enums import (
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
    CancelledBy,
)

DateLike = Union[_Date, str]
TimeLike = Union[_Time, str]


def _clean_text(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = " ".join(v.strip().split())
    return v or None


class AppointmentCreate(BaseModel):
    """
    Incoming booking payload.

    Required fields are checked by the service so that a missing one is
    reported as ``missing_required_field`` on every write path.
    """
    provider_id: Optional[str] = None
    patient_id: Optional[str] = None
    clinic_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    appointment_date: Optional[DateLike] = None
    appointment_time: Optional[TimeLike] = None
    duration: Optional[int] = None
    type: Optional[AppointmentType] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _clean_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_text(v)


class AppointmentUpdate(BaseModel):
    provider_id: Optional[str] = None
    clinic_id: Optional[str] = None
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    appointment_date: Optional[DateLike] = None
    appointment_time: Optional[TimeLike] = None
    duration: Optional[int] = None
    type: Optional[AppointmentType] = None
    status: Optional[AppointmentStatus] = None
    location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    reminder_sent: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def _clean_title(cls, v: Optional[str]) -> Optional[str]:
        v = _clean_text(v)
        if v is None:
            raise ValueError("title cannot be empty")
        return v


class AppointmentFilters(BaseModel):
    provider_id: Optional[str] = None
    patient_id: Optional[str] = None
    clinic_id: Optional[str] = None
    date_from: Optional[_Date] = None
    date_to: Optional[_Date] = None
    status: Optional[List[AppointmentStatus]] = None
    type: Optional[List[AppointmentType]] = None
    search: Optional[str] = None

    @property
    def throttle_key(self) -> str:
        return self.provider_id or "*"


class AvailabilityRequest(BaseModel):
    provider_id: str
    appointment_date: DateLike
    appointment_time: TimeLike
    duration: int = 30
    exclude_appointment_id: Optional[str] = None


class AvailabilityResponse(BaseModel):
    available: bool
    conflict: Optional[Dict[str, Any]] = None


class StatusChange(BaseModel):
    status: AppointmentStatus


class CancelRequest(BaseModel):
    cancelled_by: CancelledBy = CancelledBy.CLINIC


class ProviderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    specialty: Optional[str] = None
    phone: Optional[str] = None


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    birth_date: Optional[_Date] = None


class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    address: Optional[str] = None


class AppointmentOut(BaseModel):
    """Response model for reading an appointment with its joined projections."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: str
    patient_id: Optional[str] = None
    clinic_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    appointment_date: _Date
    appointment_time: _Time
    duration: int
    type: AppointmentType
    status: AppointmentStatus
    source: AppointmentSource
    location: Optional[str] = None
    notes: Optional[str] = None
    reminder_sent: bool = False
    external_event_id: Optional[str] = None
    sync_enabled: bool = True
    last_synced_at: Optional[_Datetime] = None
    created_at: _Datetime
    updated_at: _Datetime

    provider: Optional[ProviderOut] = None
    patient: Optional[PatientOut] = None
    clinic: Optional[ClinicOut] = None


class AppointmentStats(BaseModel):
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    today: int = 0
    this_week: int = 0
    this_month: int = 0
