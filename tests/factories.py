"""Constants and payload builders shared by the test modules."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

CLINIC_TZ = ZoneInfo("America/Mexico_City")

# Monday morning; the sample scenarios are later that week
FIXED_NOW = datetime(2025, 9, 15, 8, 0, tzinfo=CLINIC_TZ)
FIXED_NOW_UTC = FIXED_NOW.astimezone(timezone.utc)

PROVIDER_ID = "prov-0001"
OTHER_PROVIDER_ID = "prov-0002"
PATIENT_ID = "pat-0001"
CLINIC_ID = "clinic-0001"


def fixed_clock() -> datetime:
    return FIXED_NOW


def booking(**overrides):
    """Valid create payload for PROVIDER_ID; override any field."""
    data = {
        "provider_id": PROVIDER_ID,
        "patient_id": PATIENT_ID,
        "clinic_id": CLINIC_ID,
        "title": "Checkup",
        "appointment_date": "2025-09-18",
        "appointment_time": "09:00",
        "duration": 30,
        "type": "consultation",
    }
    data.update(overrides)
    return data
