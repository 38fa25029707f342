#!/usr/bin/env python3
"""
Shared fixtures: in-memory SQLite store, fixed clinic clock, seeded
provider/patient/clinic rows and a fake calendar provider.
"""

import os
import sys
import time
from datetime import date

import pytest
import pytest_asyncio

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Settings and the engine are built at import time, so the test environment
# has to be in place before anything from clinic_scheduler is imported.
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("CLINIC_TIMEZONE", "America/Mexico_City")
os.environ.setdefault("GOOGLE_CALENDAR_ENABLED", "false")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clinic_scheduler.db.base import Clinic, Patient, Provider, init_db
from clinic_scheduler.services.appointments import AppointmentService
from clinic_scheduler.services.availability import AvailabilityChecker
from clinic_scheduler.services.calendar_sync import CalendarSyncService
from clinic_scheduler.services.rate_limiter import MinIntervalThrottle
from tests.factories import CLINIC_ID, CLINIC_TZ, OTHER_PROVIDER_ID, PATIENT_ID, PROVIDER_ID, fixed_clock
from tests.mocks.external_services import FakeCalendarClient


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def seeded(session_factory):
    async with session_factory() as db:
        db.add_all([
            Provider(id=PROVIDER_ID, full_name="Dra. Ana Ruiz", specialty="Dermatology", email="ana@clinic.test"),
            Provider(id=OTHER_PROVIDER_ID, full_name="Dr. Luis Mora", specialty="Pediatrics"),
            Patient(id=PATIENT_ID, full_name="Maria Lopez", email="maria@example.com",
                    phone="+525512345678", birth_date=date(1990, 4, 2)),
            Clinic(id=CLINIC_ID, name="Clinica Centro", address="Av. Reforma 100"),
        ])
        await db.commit()
    return {"provider_id": PROVIDER_ID, "patient_id": PATIENT_ID, "clinic_id": CLINIC_ID}


@pytest.fixture
def checker(session_factory):
    return AvailabilityChecker(session_factory, clock=fixed_clock, tz=CLINIC_TZ, enforce_business_hours=False)


@pytest.fixture
def appointment_service(session_factory, checker, seeded):
    # throttle disabled; the throttle has its own tests
    return AppointmentService(
        session_factory,
        availability=checker,
        throttle=MinIntervalThrottle(0),
        clock=fixed_clock,
    )


@pytest.fixture
def fake_calendar():
    return FakeCalendarClient()


@pytest.fixture
def recorded_sleeps():
    return []


@pytest.fixture
def sync_service(session_factory, appointment_service, fake_calendar, recorded_sleeps):
    async def sleep(delay):
        recorded_sleeps.append(delay)

    return CalendarSyncService(
        session_factory,
        appointment_service,
        fake_calendar,
        clock=fixed_clock,
        tz=CLINIC_TZ,
        max_retries=2,
        retry_backoff=0.5,
        sleep=sleep,
    )


@pytest.fixture(autouse=True)
def monitor_test_performance(request):
    """Warn about slow tests"""
    start_time = time.time()
    yield
    duration = time.time() - start_time
    if not request.node.get_closest_marker("slow") and duration > 5.0:
        print(f"Test {request.node.name} took {duration:.2f}s (consider marking as @pytest.mark.slow)")


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Pure unit tests with no store access")
    config.addinivalue_line("markers", "integration: Tests against the in-memory store")
    config.addinivalue_line("markers", "slow: Long-running tests")
