# clinic_scheduler/db/base.py

"""
This file imports all the ORM models so Alembic (and the mapper registry)
can discover them. Whenever you add a new model, import it here.
"""
from clinic_scheduler.db.models.appointment import Appointment
from clinic_scheduler.db.models.calendar_settings import CalendarSyncSettings
from clinic_scheduler.db.models.clinic import Clinic
from clinic_scheduler.db.models.patient import Patient
from clinic_scheduler.db.models.provider import Provider
from clinic_scheduler.db.session import engine, Base

__all__ = [
    "Appointment",
    "Base",
    "CalendarSyncSettings",
    "Clinic",
    "Patient",
    "Provider",
]


async def init_db(bind=None):
    """Create all tables (development and tests; production uses Alembic)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
