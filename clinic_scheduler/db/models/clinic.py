# clinic_scheduler/db/models/clinic.py

from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from clinic_scheduler.db.session import Base


class Clinic(Base):
    __tablename__ = "clinics"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(sa.Text)
