# clinic_scheduler/db/models/patient.py

from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_scheduler.db.session import Base
from clinic_scheduler.db.models.appointment import Appointment


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(sa.String(255))
    phone: Mapped[Optional[str]] = mapped_column(sa.String(20))
    birth_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    appointments: Mapped[list["Appointment"]] = relationship(back_populates="patient")
