#!/usr/bin/env python3
"""
Tests for the Google Calendar client: event body mapping, error mapping,
idempotent creates and token refresh.
"""

import asyncio
import re
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httplib2
import httpx
import pytest
from googleapiclient.errors import HttpError

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import AuthExpired, CalendarProviderError, ProviderUnavailable
from clinic_scheduler.services.google_calendar import (
    APPOINTMENT_ID_PROPERTY,
    VISIBILITY_PRIVATE,
    Attendee,
    CalendarEvent,
    GoogleCalendarClient,
    build_service,
    event_id_for_appointment,
    map_http_error,
)

from tests.factories import CLINIC_TZ
from tests.mocks.external_services import SlowCalendarService

APPOINTMENT_ID = "5f0c7e2a-1b9d-4c3e-8f6a-2d4b9e1c7a30"
EVENT_ID = "5f0c7e2a1b9d4c3e8f6a2d4b9e1c7a30"


def http_error(status, reason="error"):
    return HttpError(resp=httplib2.Response({"status": status, "reason": reason}), content=b"{}")


@pytest.fixture
def sample_event():
    """Event as pushed for a 30 minute appointment"""
    return CalendarEvent(
        title="Checkup",
        start=datetime(2025, 9, 18, 9, 0, tzinfo=CLINIC_TZ),
        end=datetime(2025, 9, 18, 9, 30, tzinfo=CLINIC_TZ),
        timezone="America/Mexico_City",
        description="Annual review",
        attendees=[Attendee(email="maria@example.com", display_name="Maria Lopez")],
        reminder_minutes=60,
        visibility=VISIBILITY_PRIVATE,
        source_appointment_id=APPOINTMENT_ID,
    )


@pytest.fixture
def mock_calendar_service():
    return MagicMock()


@pytest.fixture
def client(mock_calendar_service):
    return GoogleCalendarClient(
        client_id="cid",
        client_secret="secret",
        token_url="https://oauth2.example.test/token",
        timeout=2,
        service_factory=lambda token: mock_calendar_service,
    )


class TestCalendarEvent:
    """Test mapping between events and Google API bodies"""

    def test_body_contains_reminders_and_marker(self, sample_event):
        body = sample_event.to_google_body()

        assert body["summary"] == "Checkup"
        assert body["start"] == {"dateTime": "2025-09-18T09:00:00-06:00", "timeZone": "America/Mexico_City"}
        assert body["status"] == "confirmed"
        assert body["visibility"] == "private"
        assert body["description"] == "Annual review"
        assert body["attendees"] == [
            {"email": "maria@example.com", "displayName": "Maria Lopez", "responseStatus": "needsAction"},
        ]
        assert body["reminders"]["useDefault"] is False
        assert {"method": "email", "minutes": 60} in body["reminders"]["overrides"]
        assert {"method": "popup", "minutes": 15} in body["reminders"]["overrides"]
        assert body["extendedProperties"]["private"][APPOINTMENT_ID_PROPERTY] == APPOINTMENT_ID
        # patches never carry an id
        assert "id" not in body

    def test_insert_body_carries_stable_id(self, sample_event):
        assert sample_event.to_google_body(include_id=True)["id"] == EVENT_ID
        moved = replace(sample_event, title="Follow-up", start=sample_event.start + timedelta(days=1))
        assert moved.to_google_body(include_id=True)["id"] == EVENT_ID

    def test_event_id_for_non_uuid_appointment_ids(self):
        hashed = event_id_for_appointment("Appt_42")
        assert re.fullmatch(r"[a-v0-9]{5,1024}", hashed)
        assert hashed == event_id_for_appointment("Appt_42")
        assert event_id_for_appointment(APPOINTMENT_ID) == EVENT_ID

    def test_body_without_optional_fields(self):
        event = CalendarEvent(
            title="Block",
            start=datetime(2025, 9, 18, 9, 0, tzinfo=CLINIC_TZ),
            end=datetime(2025, 9, 18, 10, 0, tzinfo=CLINIC_TZ),
        )
        body = event.to_google_body()
        assert "reminders" not in body
        assert "attendees" not in body
        assert "extendedProperties" not in body
        assert "visibility" not in body
        assert "id" not in event.to_google_body(include_id=True)

    def test_from_google_timed_event(self):
        event = CalendarEvent.from_google({
            "id": "abc",
            "summary": "Hospital rounds",
            "status": "confirmed",
            "start": {"dateTime": "2025-09-18T18:00:00Z"},
            "end": {"dateTime": "2025-09-18T19:15:00Z"},
            "visibility": "private",
            "attendees": [
                {"email": "a@example.com", "displayName": "Ana", "responseStatus": "accepted"},
                {"displayName": "no email"},
            ],
        }, CLINIC_TZ)

        assert event.id == "abc"
        assert event.start == datetime(2025, 9, 18, 18, 0, tzinfo=timezone.utc)
        assert event.start.astimezone(CLINIC_TZ).hour == 12
        assert event.duration_minutes == 75
        assert event.attendees == [Attendee(email="a@example.com", display_name="Ana", response_status="accepted")]
        assert event.visibility == "private"
        assert event.all_day is False
        assert event.source_appointment_id is None

    def test_from_google_all_day_and_cancelled(self):
        event = CalendarEvent.from_google({
            "id": "day",
            "status": "cancelled",
            "start": {"date": "2025-09-19"},
            "end": {"date": "2025-09-20"},
        }, CLINIC_TZ)

        assert event.all_day is True
        assert event.is_cancelled is True
        assert event.start == datetime(2025, 9, 19, tzinfo=CLINIC_TZ)
        assert event.duration_minutes == 24 * 60

    def test_from_google_reads_marker(self):
        event = CalendarEvent.from_google({
            "id": "mine",
            "summary": "Checkup",
            "start": {"dateTime": "2025-09-18T09:00:00-06:00"},
            "end": {"dateTime": "2025-09-18T09:30:00-06:00"},
            "extendedProperties": {"private": {APPOINTMENT_ID_PROPERTY: "appt-1"}},
        }, CLINIC_TZ)
        assert event.source_appointment_id == "appt-1"


class TestErrorMapping:

    @pytest.mark.parametrize("status,expected", [
        (401, AuthExpired),
        (429, ProviderUnavailable),
        (500, ProviderUnavailable),
        (503, ProviderUnavailable),
        (400, CalendarProviderError),
        (403, CalendarProviderError),
        (404, CalendarProviderError),
    ])
    def test_status_mapping(self, status, expected):
        mapped = map_http_error(http_error(status), "create_event")
        assert type(mapped) is expected
        assert mapped.details == {"operation": "create_event", "status": status}


class TestCalendarEventOperations:
    """Test calendar event calls against a mocked discovery service"""

    async def test_create_event_success(self, client, mock_calendar_service, sample_event):
        mock_calendar_service.events().insert().execute.return_value = {"id": "test_event_123"}

        event_id = await client.create_event("tok", "primary", sample_event)

        assert event_id == "test_event_123"
        _, kwargs = mock_calendar_service.events().insert.call_args
        assert kwargs["calendarId"] == "primary"
        assert kwargs["body"]["summary"] == "Checkup"
        assert kwargs["body"]["id"] == EVENT_ID

    async def test_service_is_built_with_bearer_token(self, mock_calendar_service, sample_event):
        tokens = []

        def factory(token):
            tokens.append(token)
            return mock_calendar_service

        mock_calendar_service.events().insert().execute.return_value = {"id": "e1"}
        client = GoogleCalendarClient(client_id="cid", client_secret="s", timeout=2, service_factory=factory)

        await client.create_event("bearer-xyz", "primary", sample_event)
        assert tokens == ["bearer-xyz"]

    async def test_update_uses_patch(self, client, mock_calendar_service, sample_event):
        mock_calendar_service.events().patch().execute.return_value = {"id": "evt_9"}

        assert await client.update_event("tok", "primary", "evt_9", sample_event) == "evt_9"
        _, kwargs = mock_calendar_service.events().patch.call_args
        assert kwargs["eventId"] == "evt_9"

    @pytest.mark.parametrize("status,expected", [
        (401, AuthExpired),
        (503, ProviderUnavailable),
        (400, CalendarProviderError),
    ])
    async def test_api_errors_are_mapped(self, client, mock_calendar_service, sample_event, status, expected):
        mock_calendar_service.events().insert().execute.side_effect = http_error(status)

        with pytest.raises(expected) as exc:
            await client.create_event("tok", "primary", sample_event)
        assert exc.value.details["status"] == status

    async def test_transport_error_is_retryable(self, client, mock_calendar_service, sample_event):
        mock_calendar_service.events().insert().execute.side_effect = httplib2.ServerNotFoundError("dns")

        with pytest.raises(ProviderUnavailable):
            await client.create_event("tok", "primary", sample_event)

    async def test_slow_call_times_out(self, mock_calendar_service, sample_event):
        def slow(**kwargs):
            time.sleep(0.3)
            return {"id": "late"}

        mock_calendar_service.events().insert().execute.side_effect = slow
        client = GoogleCalendarClient(
            client_id="cid", client_secret="s", timeout=0.05,
            service_factory=lambda token: mock_calendar_service,
        )

        with pytest.raises(ProviderUnavailable) as exc:
            await client.create_event("tok", "primary", sample_event)
        assert "timed out" in exc.value.message

    async def test_insert_conflict_updates_existing_event(self, client, mock_calendar_service, sample_event):
        mock_calendar_service.events().insert().execute.side_effect = http_error(409, "duplicate")
        mock_calendar_service.events().patch().execute.return_value = {"id": EVENT_ID}

        assert await client.create_event("tok", "primary", sample_event) == EVENT_ID
        _, kwargs = mock_calendar_service.events().patch.call_args
        assert kwargs["eventId"] == EVENT_ID
        assert "id" not in kwargs["body"]

    async def test_insert_conflict_without_own_id_is_an_error(self, client, mock_calendar_service):
        mock_calendar_service.events().insert().execute.side_effect = http_error(409, "duplicate")
        event = CalendarEvent(
            title="Block",
            start=datetime(2025, 9, 18, 9, 0, tzinfo=CLINIC_TZ),
            end=datetime(2025, 9, 18, 10, 0, tzinfo=CLINIC_TZ),
        )

        with pytest.raises(CalendarProviderError) as exc:
            await client.create_event("tok", "primary", event)
        assert exc.value.details["status"] == 409

    async def test_retry_after_late_insert_keeps_one_event(self, sample_event):
        service = SlowCalendarService(delay=0.2, slow_inserts=1)
        client = GoogleCalendarClient(
            client_id="cid", client_secret="s", timeout=0.05,
            service_factory=lambda token: service,
        )

        with pytest.raises(ProviderUnavailable):
            await client.create_event("tok", "primary", sample_event)
        # the abandoned insert still lands in the worker thread
        await asyncio.sleep(0.3)

        event_id = await client.create_event("tok", "primary", sample_event)

        assert event_id == EVENT_ID
        assert list(service.stored) == [EVENT_ID]
        assert service.inserts == 2
        assert service.patches == 1

    async def test_delete_event_success(self, client, mock_calendar_service):
        mock_calendar_service.events().delete().execute.return_value = ""
        assert await client.delete_event("tok", "primary", "test_event_123") is True

    @pytest.mark.parametrize("status", [404, 410])
    async def test_delete_event_already_gone(self, client, mock_calendar_service, status):
        mock_calendar_service.events().delete().execute.side_effect = http_error(status, "Not Found")
        assert await client.delete_event("tok", "primary", "nonexistent_event") is False

    async def test_list_events_follows_pages(self, client, mock_calendar_service):
        mock_calendar_service.events().list().execute.side_effect = [
            {
                "items": [{
                    "id": "a", "summary": "One",
                    "start": {"dateTime": "2025-09-18T10:00:00-06:00"},
                    "end": {"dateTime": "2025-09-18T11:00:00-06:00"},
                }],
                "nextPageToken": "p2",
            },
            {
                "items": [{
                    "id": "b", "summary": "Two",
                    "start": {"dateTime": "2025-09-19T10:00:00-06:00"},
                    "end": {"dateTime": "2025-09-19T10:30:00-06:00"},
                }],
            },
        ]
        start = datetime(2025, 9, 15, tzinfo=CLINIC_TZ)

        events = await client.list_events("tok", "primary", start, start + timedelta(days=30), CLINIC_TZ)

        assert [e.id for e in events] == ["a", "b"]
        page_tokens = [c.kwargs.get("pageToken") for c in mock_calendar_service.events().list.call_args_list
                       if "calendarId" in c.kwargs]
        assert page_tokens == [None, "p2"]


class TestServiceFactory:
    """Discovery client construction; static discovery documents, no network"""

    def test_sockets_carry_the_call_timeout(self):
        service = build_service("bearer-xyz", timeout=7)

        assert service._http.http.timeout == 7
        assert service._http.credentials.token == "bearer-xyz"

    def test_client_default_factory_uses_its_timeout(self):
        client = GoogleCalendarClient(client_id="cid", client_secret="s", timeout=3)

        assert client.service_factory("tok")._http.http.timeout == 3


class TestConfiguration:

    def test_configured_with_credentials(self):
        client = GoogleCalendarClient(client_id="cid", client_secret="s", enabled=True)
        assert client.is_configured is True

    def test_disabled_integration(self):
        client = GoogleCalendarClient(client_id="cid", client_secret="s", enabled=False)
        assert client.is_configured is False

    def test_missing_client_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", None)
        client = GoogleCalendarClient(enabled=True)
        assert client.is_configured is False


class TestTokenRefresh:

    def make_client(self, handler):
        return GoogleCalendarClient(
            client_id="cid",
            client_secret="secret",
            token_url="https://oauth2.example.test/token",
            timeout=2,
            http_transport=httpx.MockTransport(handler),
        )

    async def test_refresh_success(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={"access_token": "new-token", "expires_in": 3599})

        before = datetime.now(timezone.utc)
        grant = await self.make_client(handler).refresh_token("refresh-1")

        assert grant.access_token == "new-token"
        assert grant.expires_at > before + timedelta(minutes=59)
        assert "grant_type=refresh_token" in seen["body"]
        assert "refresh_token=refresh-1" in seen["body"]

    async def test_revoked_grant_is_auth_expired(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(AuthExpired):
            await self.make_client(handler).refresh_token("refresh-1")

    async def test_server_error_is_retryable(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(ProviderUnavailable):
            await self.make_client(handler).refresh_token("refresh-1")

    async def test_connection_failure_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProviderUnavailable):
            await self.make_client(handler).refresh_token("refresh-1")

    async def test_missing_refresh_token(self):
        with pytest.raises(AuthExpired):
            await self.make_client(lambda request: httpx.Response(200)).refresh_token(None)
