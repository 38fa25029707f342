#!/usr/bin/env python3
"""
Tests for slot availability: overlaps, adjacency, past dates, business
hours and fail-open behaviour when the store is down.
"""

import pytest
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from clinic_scheduler.core.errors import ValidationError
from clinic_scheduler.db.enums import AppointmentStatus
from clinic_scheduler.services.availability import AvailabilityChecker

from tests.factories import CLINIC_TZ, OTHER_PROVIDER_ID, PROVIDER_ID, booking, fixed_clock


class BrokenSessionFactory:
    """Session factory whose sessions cannot connect"""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("connection refused"))

    async def __aexit__(self, *exc):
        return False


@pytest.fixture
async def existing(appointment_service):
    return await appointment_service.create_appointment(booking(title="Checkup"))


@pytest.mark.integration
class TestOverlap:

    async def test_overlapping_slot_reports_conflict(self, checker, existing):
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:15", 30)

        assert result.available is False
        assert result.conflict.reason == "overlap"
        assert result.conflict.appointment_id == existing.id
        assert result.conflict.title == "Checkup"
        assert result.conflict.time_range.start.hour == 9
        assert result.conflict.time_range.start.minute == 0
        assert result.conflict.time_range.duration_minutes == 30

    async def test_adjacent_slot_is_available(self, checker, existing):
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:30", 30)
        assert result.available is True
        assert result.conflict is None

    async def test_slot_ending_at_existing_start_is_available(self, checker, existing):
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "08:30", 30)
        assert result.available is True

    async def test_other_provider_is_not_blocked(self, checker, existing):
        result = await checker.check_availability(OTHER_PROVIDER_ID, "2025-09-18", "09:00", 30)
        assert result.available is True

    async def test_excluded_appointment_is_ignored(self, checker, existing):
        result = await checker.check_availability(
            PROVIDER_ID, "2025-09-18", "09:15", 30, exclude_appointment_id=existing.id,
        )
        assert result.available is True

    @pytest.mark.parametrize("status", [
        AppointmentStatus.CANCELLED_BY_CLINIC,
        AppointmentStatus.CANCELLED_BY_PATIENT,
        AppointmentStatus.NO_SHOW,
    ])
    async def test_released_slots_do_not_block(self, checker, appointment_service, existing, status):
        await appointment_service.set_status(existing.id, status)
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:00", 30)
        assert result.available is True

    async def test_completed_appointment_still_blocks(self, checker, appointment_service, existing):
        await appointment_service.set_status(existing.id, AppointmentStatus.COMPLETED)
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:10", 10)
        assert result.available is False


@pytest.mark.integration
class TestRules:

    async def test_past_date_is_rejected(self, checker, seeded):
        result = await checker.check_availability(PROVIDER_ID, "2025-09-14", "10:00", 30)
        assert result.available is False
        assert result.conflict.reason == "past_date"

    async def test_earlier_today_is_rejected(self, checker, seeded):
        result = await checker.check_availability(PROVIDER_ID, "2025-09-15", "07:30", 30)
        assert result.conflict.reason == "past_date"

    async def test_malformed_input_raises(self, checker, seeded):
        with pytest.raises(ValidationError):
            await checker.check_availability(PROVIDER_ID, "18-09-2025", "09:00", 30)
        with pytest.raises(ValidationError):
            await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:00", 0)

    async def test_business_hours_enforced(self, session_factory, seeded):
        strict = AvailabilityChecker(session_factory, clock=fixed_clock, tz=CLINIC_TZ, enforce_business_hours=True)

        sunday = await strict.check_availability(PROVIDER_ID, "2025-09-21", "10:00", 30)
        assert sunday.conflict.reason == "outside_business_hours"
        assert "Sunday" in sunday.conflict.message

        evening = await strict.check_availability(PROVIDER_ID, "2025-09-18", "18:00", 30)
        assert evening.conflict.reason == "outside_business_hours"

        saturday = await strict.check_availability(PROVIDER_ID, "2025-09-20", "13:30", 30)
        assert saturday.available is True


@pytest.mark.unit
async def test_store_failure_fails_open():
    checker = AvailabilityChecker(BrokenSessionFactory(), clock=fixed_clock, tz=CLINIC_TZ)

    with capture_logs() as logs:
        result = await checker.check_availability(PROVIDER_ID, "2025-09-18", "09:00", 30)

    assert result.available is True
    assert result.conflict is None
    warnings = [e for e in logs if e["event"] == "availability_read_failed_open"]
    assert len(warnings) == 1
    assert warnings[0]["log_level"] == "warning"
    assert warnings[0]["provider_id"] == PROVIDER_ID
    assert warnings[0]["error_type"] == "OperationalError"
