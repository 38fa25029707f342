# clinic_scheduler/services/google_calendar.py
"""
Google Calendar client used by the calendar sync service.

Calls are made with the provider's own OAuth bearer token. Event calls go
through googleapiclient (run in a worker thread, the client is blocking);
token refresh posts to the OAuth token endpoint with httpx. Every call is
bounded by PROVIDER_CALL_TIMEOUT and failures are mapped onto the
scheduling error taxonomy:

- 401                          -> AuthExpired
- 429, 5xx, transport, timeout -> ProviderUnavailable (retryable)
- any other 4xx                -> CalendarProviderError

The asyncio timeout alone cannot stop a worker thread, so the underlying
httplib2 connection carries the same socket timeout. Creates are made
idempotent by sending a client-chosen event id derived from the
appointment id: a retried insert that collides (409) with an insert that
landed late is treated as success.
"""
from __future__ import annotations

import asyncio
import functools
import hashlib
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

import httplib2
import httpx
from google.auth.exceptions import TransportError as GoogleTransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from clinic_scheduler.core.config import settings
from clinic_scheduler.core.errors import (
    AuthExpired,
    CalendarProviderError,
    ProviderUnavailable,
)
from clinic_scheduler.core.logging import get_logger

logger = get_logger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]
POPUP_REMINDER_MINUTES = 15
EVENT_STATUS_CANCELLED = "cancelled"
APPOINTMENT_ID_PROPERTY = "clinicAppointmentId"
VISIBILITY_PRIVATE = "private"
RESPONSE_NEEDS_ACTION = "needsAction"

# Google event ids: base32hex digits (a-v, 0-9), 5 to 1024 characters
_EVENT_ID_RE = re.compile(r"^[a-v0-9]{5,1024}$")


def event_id_for_appointment(appointment_id: str) -> str:
    """Stable Google event id for an appointment, the same on every attempt."""
    candidate = appointment_id.replace("-", "").lower()
    if _EVENT_ID_RE.match(candidate):
        return candidate
    return hashlib.sha1(appointment_id.encode("utf-8")).hexdigest()


@dataclass
class TokenGrant:
    access_token: str
    expires_at: datetime


@dataclass
class Attendee:
    email: str
    display_name: Optional[str] = None
    response_status: str = RESPONSE_NEEDS_ACTION

    def to_google(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"email": self.email, "responseStatus": self.response_status}
        if self.display_name:
            entry["displayName"] = self.display_name
        return entry


@dataclass
class CalendarEvent:
    """Provider-neutral view of one calendar event."""

    title: str
    start: datetime
    end: datetime
    timezone: str = "UTC"
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[Attendee] = field(default_factory=list)
    reminder_minutes: Optional[int] = None
    status: str = "confirmed"
    visibility: Optional[str] = None
    id: Optional[str] = None
    all_day: bool = False
    # set on events pushed from this system
    source_appointment_id: Optional[str] = None

    @property
    def client_event_id(self) -> Optional[str]:
        """Id to request on insert: the known id, else one derived from the appointment."""
        if self.id:
            return self.id
        if self.source_appointment_id:
            return event_id_for_appointment(self.source_appointment_id)
        return None

    @property
    def is_cancelled(self) -> bool:
        return self.status == EVENT_STATUS_CANCELLED

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def to_google_body(self, include_id: bool = False) -> Dict[str, Any]:
        """Request body for insert (``include_id=True``) or patch."""
        body: Dict[str, Any] = {
            "summary": self.title,
            "start": {"dateTime": self.start.isoformat(), "timeZone": self.timezone},
            "end": {"dateTime": self.end.isoformat(), "timeZone": self.timezone},
            "status": self.status,
        }
        if include_id and self.client_event_id:
            body["id"] = self.client_event_id
        if self.visibility:
            body["visibility"] = self.visibility
        if self.description:
            body["description"] = self.description
        if self.location:
            body["location"] = self.location
        if self.attendees:
            body["attendees"] = [attendee.to_google() for attendee in self.attendees]
        if self.source_appointment_id:
            body["extendedProperties"] = {"private": {APPOINTMENT_ID_PROPERTY: self.source_appointment_id}}
        if self.reminder_minutes is not None:
            body["reminders"] = {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": self.reminder_minutes},
                    {"method": "popup", "minutes": POPUP_REMINDER_MINUTES},
                ],
            }
        return body

    @classmethod
    def from_google(cls, item: Dict[str, Any], tz: ZoneInfo) -> "CalendarEvent":
        start_raw = item.get("start") or {}
        end_raw = item.get("end") or {}
        all_day = "dateTime" not in start_raw

        if all_day:
            # all-day events only carry a date; pin them to local midnight
            start = datetime.combine(date.fromisoformat(start_raw.get("date", "1970-01-01")), time(0), tzinfo=tz)
            end_date = end_raw.get("date")
            end = (
                datetime.combine(date.fromisoformat(end_date), time(0), tzinfo=tz)
                if end_date else start + timedelta(days=1)
            )
        else:
            start = _parse_rfc3339(start_raw["dateTime"], tz)
            end = _parse_rfc3339(end_raw["dateTime"], tz) if end_raw.get("dateTime") else start

        return cls(
            id=item.get("id"),
            title=item.get("summary") or "",
            description=item.get("description"),
            location=item.get("location"),
            start=start,
            end=end,
            timezone=start_raw.get("timeZone") or str(tz),
            attendees=[
                Attendee(
                    email=a["email"],
                    display_name=a.get("displayName"),
                    response_status=a.get("responseStatus", RESPONSE_NEEDS_ACTION),
                )
                for a in item.get("attendees", []) if a.get("email")
            ],
            status=item.get("status", "confirmed"),
            visibility=item.get("visibility"),
            all_day=all_day,
            source_appointment_id=(item.get("extendedProperties") or {}).get("private", {}).get(APPOINTMENT_ID_PROPERTY),
        )


def _parse_rfc3339(value: str, tz: ZoneInfo) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def build_service(access_token: str, timeout: Optional[float] = None):
    """Discovery client whose sockets give up after ``timeout`` seconds."""
    credentials = Credentials(token=access_token, scopes=CALENDAR_SCOPES)
    http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
    return build("calendar", "v3", http=http, cache_discovery=False)


def map_http_error(e: HttpError, operation: str) -> Exception:
    status = int(getattr(e.resp, "status", 0) or 0)
    message = f"Google Calendar {operation} failed ({status}): {getattr(e, 'reason', '') or e}"
    details = {"operation": operation, "status": status}
    if status == 401:
        return AuthExpired(message, details=details)
    if status == 429 or status >= 500:
        return ProviderUnavailable(message, details=details)
    return CalendarProviderError(message, details=details)


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        timeout: Optional[float] = None,
        service_factory: Optional[Callable[[str], Any]] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        enabled: Optional[bool] = None,
    ):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.token_url = token_url or settings.GOOGLE_TOKEN_URL
        self.timeout = timeout or settings.PROVIDER_CALL_TIMEOUT
        self.service_factory = service_factory or functools.partial(build_service, timeout=self.timeout)
        self.http_transport = http_transport
        self.enabled = settings.GOOGLE_CALENDAR_ENABLED if enabled is None else enabled

    @property
    def is_configured(self) -> bool:
        """Integration switched on and OAuth client credentials present."""
        return bool(self.enabled and self.client_id and self.client_secret)

    # ---------- OAuth ----------

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        if not refresh_token:
            raise AuthExpired("No refresh token stored for this calendar")

        payload = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.http_transport) as client:
                response = await client.post(self.token_url, data=payload)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(f"Token refresh timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"Token refresh transport error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(
                f"Token endpoint returned {response.status_code}",
                details={"status": response.status_code},
            )
        if response.status_code != 200:
            # invalid_grant and friends: the user has to reconnect
            logger.warning("token_refresh_rejected", status=response.status_code, body=response.text[:200])
            raise AuthExpired(
                "Calendar authorization was revoked or expired; reconnect the calendar",
                details={"status": response.status_code},
            )

        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise AuthExpired("Token endpoint returned no access token")
        expires_in = int(data.get("expires_in", 3600))
        logger.info("token_refreshed", expires_in=expires_in)
        return TokenGrant(
            access_token=access_token,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    # ---------- events ----------

    async def _execute(self, operation: str, access_token: str, call: Callable[[Any], Any]) -> Any:
        def run():
            service = self.service_factory(access_token)
            return call(service).execute(num_retries=0)

        try:
            return await asyncio.wait_for(asyncio.to_thread(run), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderUnavailable(
                f"Google Calendar {operation} timed out after {self.timeout}s",
                details={"operation": operation},
            ) from e
        except HttpError as e:
            raise map_http_error(e, operation) from e
        except (httplib2.HttpLib2Error, GoogleTransportError, OSError) as e:
            raise ProviderUnavailable(
                f"Google Calendar {operation} transport error: {e}",
                details={"operation": operation},
            ) from e

    async def create_event(self, access_token: str, calendar_id: str, event: CalendarEvent) -> str:
        body = event.to_google_body(include_id=True)
        try:
            created = await self._execute(
                "create_event",
                access_token,
                lambda svc: svc.events().insert(calendarId=calendar_id, body=body),
            )
        except CalendarProviderError as e:
            if e.details.get("status") != 409 or "id" not in body:
                raise
            # an earlier attempt landed after we stopped waiting for it
            logger.warning("calendar_event_already_exists", event_id=body["id"], calendar_id=calendar_id)
            return await self.update_event(access_token, calendar_id, body["id"], event)
        logger.info("calendar_event_created", event_id=created.get("id"), calendar_id=calendar_id)
        return created["id"]

    async def update_event(self, access_token: str, calendar_id: str, event_id: str, event: CalendarEvent) -> str:
        updated = await self._execute(
            "update_event",
            access_token,
            lambda svc: svc.events().patch(calendarId=calendar_id, eventId=event_id, body=event.to_google_body()),
        )
        logger.info("calendar_event_updated", event_id=event_id, calendar_id=calendar_id)
        return updated.get("id", event_id)

    async def delete_event(self, access_token: str, calendar_id: str, event_id: str) -> bool:
        """Delete an event; returns False when it was already gone."""
        try:
            await self._execute(
                "delete_event",
                access_token,
                lambda svc: svc.events().delete(calendarId=calendar_id, eventId=event_id),
            )
        except CalendarProviderError as e:
            if e.details.get("status") in (404, 410):
                logger.warning("calendar_event_already_gone", event_id=event_id)
                return False
            raise
        logger.info("calendar_event_deleted", event_id=event_id, calendar_id=calendar_id)
        return True

    async def list_events(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        tz: Optional[ZoneInfo] = None,
    ) -> List[CalendarEvent]:
        tz = tz or settings.clinic_tz
        events: List[CalendarEvent] = []
        page_token: Optional[str] = None
        while True:
            page = await self._execute(
                "list_events",
                access_token,
                lambda svc, token=page_token: svc.events().list(
                    calendarId=calendar_id,
                    timeMin=time_min.isoformat(),
                    timeMax=time_max.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                    pageToken=token,
                ),
            )
            events.extend(CalendarEvent.from_google(item, tz) for item in page.get("items", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                break
        return events
