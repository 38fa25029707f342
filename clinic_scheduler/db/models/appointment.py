# clinic_scheduler/db/models/appointment.py

from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_scheduler.core.timerange import TimeRange
from clinic_scheduler.db.enums import (
    AppointmentSource,
    AppointmentStatus,
    AppointmentType,
)
from clinic_scheduler.db.session import Base


def enum_column(enum_cls, length: int = 32) -> sa.Enum:
    # stored as plain strings so migrations don't need native enum types
    return sa.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        sa.Index("ix_appointments_provider_date", "provider_id", "appointment_date"),
        sa.Index("ix_appointments_patient_id", "patient_id"),
        sa.Index("ix_appointments_external_event_id", "external_event_id"),
        sa.CheckConstraint("duration > 0", name="ck_appointments_duration_positive"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    provider_id: Mapped[str] = mapped_column(sa.String(36), sa.ForeignKey("providers.id"), nullable=False)
    # imported calendar events carry no patient
    patient_id: Mapped[Optional[str]] = mapped_column(sa.String(36), sa.ForeignKey("patients.id"))
    clinic_id: Mapped[Optional[str]] = mapped_column(sa.String(36), sa.ForeignKey("clinics.id"))

    appointment_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    appointment_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    duration: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="30")

    type: Mapped[AppointmentType] = mapped_column(
        enum_column(AppointmentType), nullable=False, default=AppointmentType.CONSULTATION
    )
    title: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    location: Mapped[Optional[str]] = mapped_column(sa.String(255))
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    status: Mapped[AppointmentStatus] = mapped_column(
        enum_column(AppointmentStatus), nullable=False, default=AppointmentStatus.SCHEDULED
    )
    source: Mapped[AppointmentSource] = mapped_column(
        enum_column(AppointmentSource, length=16), nullable=False, default=AppointmentSource.INTERNAL
    )
    reminder_sent: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    # Calendar sync metadata (null external id = not mirrored yet)
    external_event_id: Mapped[Optional[str]] = mapped_column(sa.String(255))
    sync_enabled: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)

    # Joined projections
    provider: Mapped["Provider"] = relationship(back_populates="appointments")
    patient: Mapped[Optional["Patient"]] = relationship(back_populates="appointments")
    clinic: Mapped[Optional["Clinic"]] = relationship()

    def time_range(self, tz: ZoneInfo) -> TimeRange:
        return TimeRange.from_slot(self.appointment_date, self.appointment_time, self.duration, tz)

    def __repr__(self) -> str:
        return (
            f"<Appointment {self.id} provider={self.provider_id} "
            f"{self.appointment_date} {self.appointment_time} status={self.status}>"
        )
