"""Appointment export to iCalendar, CalDAV (iCloud) and Google Calendar."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlencode

import requests
import structlog

from clinicdesk.config import Settings
from clinicdesk.errors import CollaboratorError, ValidationError
from clinicdesk.time_utils import ensure_utc, utc_now


logger = structlog.get_logger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
)
DEFAULT_REMINDERS = ({"method": "email", "minutes": 24 * 60}, {"method": "popup", "minutes": 60})

_PRODID = "-//ClinicDesk//Appointment System//EN"


@dataclass
class CalendarEvent:
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None
    attendees: List[Tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False


def event_uid(appointment_id: str, domain: str) -> str:
    return f"appointment-{appointment_id}@{domain}"


def format_appointment_event(appointment: Any, patient: Any, settings: Settings) -> CalendarEvent:
    """Build a provider-neutral event for ``appointment``."""

    attendees = [(patient.full_name, patient.email)] if getattr(patient, "email", None) else []
    return CalendarEvent(
        uid=appointment.calendar_uid or event_uid(appointment.id, settings.calendar_uid_domain),
        summary=appointment.title,
        start=ensure_utc(appointment.start_time),
        end=ensure_utc(appointment.end_time),
        description=appointment.description,
        location=appointment.location,
        organizer_name=settings.calendar_organizer_name,
        organizer_email=settings.calendar_organizer_email,
        attendees=attendees,
        cancelled=appointment.status == "CANCELLED",
    )


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _param(value: str) -> str:
    return '"' + value.replace('"', "'") + '"'


def _fold(line: str, limit: int = 75) -> str:
    encoded = line.encode("utf-8")
    if len(encoded) <= limit:
        return line
    parts: List[str] = []
    current = ""
    for char in line:
        width = limit if not parts else limit - 1
        if len((current + char).encode("utf-8")) > width:
            parts.append(current)
            current = char
        else:
            current += char
    parts.append(current)
    return "\r\n ".join(parts)


def _ics_time(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y%m%dT%H%M%SZ")


def build_ics(event: CalendarEvent, *, now: Optional[datetime] = None) -> str:
    """Return an RFC 5545 calendar containing ``event``."""

    stamp = _ics_time(now or utc_now())
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{_PRODID}",
        "CALSCALE:GREGORIAN",
        "BEGIN:VEVENT",
        f"UID:{event.uid}",
        f"DTSTAMP:{stamp}",
        f"CREATED:{stamp}",
        f"LAST-MODIFIED:{stamp}",
        f"DTSTART:{_ics_time(event.start)}",
        f"DTEND:{_ics_time(event.end)}",
        f"SUMMARY:{_escape(event.summary)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{_escape(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{_escape(event.location)}")
    lines.append(f"STATUS:{'CANCELLED' if event.cancelled else 'CONFIRMED'}")
    if event.organizer_email:
        lines.append(f"ORGANIZER;CN={_param(event.organizer_name or event.organizer_email)}:mailto:{event.organizer_email}")
    for name, email in event.attendees:
        lines.append(
            f"ATTENDEE;CN={_param(name)};ROLE=REQ-PARTICIPANT;PARTSTAT=NEEDS-ACTION;RSVP=TRUE:mailto:{email}"
        )
    lines.extend(["END:VEVENT", "END:VCALENDAR"])
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"


def google_event_body(event: CalendarEvent, timezone_name: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "summary": event.summary,
        "start": {"dateTime": ensure_utc(event.start).isoformat(), "timeZone": timezone_name},
        "end": {"dateTime": ensure_utc(event.end).isoformat(), "timeZone": timezone_name},
        "reminders": {"useDefault": False, "overrides": [dict(item) for item in DEFAULT_REMINDERS]},
        "iCalUID": event.uid,
    }
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location
    if event.attendees:
        body["attendees"] = [{"email": email, "displayName": name} for name, email in event.attendees]
    if event.cancelled:
        body["status"] = "cancelled"
    return body


class CalDAVClient:
    """Minimal CalDAV client storing one ``.ics`` resource per event."""

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        *,
        timeout: int = 15,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._auth = (username, password)
        self._timeout = timeout
        self._http = http or requests.Session()

    def _event_url(self, uid: str) -> str:
        return f"{self._url}/{quote(uid, safe='@.-_')}.ics"

    def put_event(self, uid: str, ics: str) -> None:
        try:
            resp = self._http.put(
                self._event_url(uid),
                data=ics.encode("utf-8"),
                headers={"Content-Type": "text/calendar; charset=utf-8"},
                auth=self._auth,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise CollaboratorError(f"CalDAV request failed: {exc}") from exc
        if not resp.ok:
            raise CollaboratorError(f"CalDAV error: {resp.status_code} {resp.reason}")
        logger.info("calendar.caldav_saved", uid=uid)

    def delete_event(self, uid: str) -> None:
        try:
            resp = self._http.delete(self._event_url(uid), auth=self._auth, timeout=self._timeout)
        except requests.RequestException as exc:
            raise CollaboratorError(f"CalDAV request failed: {exc}") from exc
        if not resp.ok and resp.status_code != 404:
            raise CollaboratorError(f"CalDAV error: {resp.status_code} {resp.reason}")
        logger.info("calendar.caldav_deleted", uid=uid, status=resp.status_code)


class GoogleCalendarClient:
    """Google Calendar REST client using the OAuth2 refresh-token flow."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: Optional[str] = None,
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
        calendar_id: str = "primary",
        timeout: int = 15,
        http: Optional[requests.Session] = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._refresh_token = refresh_token
        self._access_token = access_token
        self._expires_at = 0.0
        self._calendar_id = calendar_id
        self._timeout = timeout
        self._http = http or requests.Session()

    @property
    def can_sync(self) -> bool:
        return bool(self._refresh_token or self._access_token)

    def authorization_url(self, state: Optional[str] = None) -> str:
        if not self._redirect_uri:
            raise ValidationError("GOOGLE_REDIRECT_URI is not configured")
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization ``code`` for tokens and keep them for later calls."""

        data = self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri or "",
            }
        )
        if data.get("refresh_token"):
            self._refresh_token = data["refresh_token"]
        return {
            "access_token": data.get("access_token"),
            "refresh_token": data.get("refresh_token") or self._refresh_token,
            "expiry_date": int(self._expires_at * 1000),
        }

    def _token_request(self, payload: Dict[str, str]) -> Dict[str, Any]:
        payload = {**payload, "client_id": self._client_id, "client_secret": self._client_secret}
        try:
            resp = self._http.post(GOOGLE_TOKEN_URL, data=payload, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise CollaboratorError(f"Google OAuth token request failed: {exc}") from exc
        self._access_token = data.get("access_token")
        self._expires_at = time.time() + int(data.get("expires_in", 3600))
        return data

    def _token(self) -> str:
        if self._access_token and self._expires_at - 60 > time.time():
            return self._access_token
        if self._refresh_token:
            self._token_request({"grant_type": "refresh_token", "refresh_token": self._refresh_token})
        if not self._access_token:
            raise CollaboratorError("Google Calendar is not authorized")
        return self._access_token

    def _request(self, method: str, path: str = "", **kwargs: Any) -> requests.Response:
        url = GOOGLE_EVENTS_URL.format(calendar_id=quote(self._calendar_id, safe="")) + path
        headers = {"Authorization": f"Bearer {self._token()}"}
        try:
            return self._http.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise CollaboratorError(f"Google Calendar request failed: {exc}") from exc

    @staticmethod
    def _check(resp: requests.Response, action: str) -> None:
        if not resp.ok:
            raise CollaboratorError(f"Google Calendar {action} failed: {resp.status_code} {resp.text[:200]}")

    def insert_event(self, body: Dict[str, Any]) -> str:
        resp = self._request("POST", json=body)
        self._check(resp, "insert")
        event_id = resp.json().get("id")
        logger.info("calendar.google_created", event_id=event_id)
        return event_id

    def update_event(self, event_id: str, body: Dict[str, Any]) -> str:
        resp = self._request("PUT", f"/{quote(event_id, safe='')}", json=body)
        self._check(resp, "update")
        logger.info("calendar.google_updated", event_id=event_id)
        return event_id

    def delete_event(self, event_id: str) -> None:
        resp = self._request("DELETE", f"/{quote(event_id, safe='')}")
        if resp.status_code in (404, 410):
            logger.info("calendar.google_already_deleted", event_id=event_id)
            return
        self._check(resp, "delete")
        logger.info("calendar.google_deleted", event_id=event_id)

    def list_events(self, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
        resp = self._request(
            "GET",
            params={
                "timeMin": ensure_utc(time_min).isoformat(),
                "timeMax": ensure_utc(time_max).isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        self._check(resp, "list")
        return list(resp.json().get("items") or [])


@dataclass
class SyncResult:
    google_event_id: Optional[str] = None
    calendar_uid: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)
    synced: List[str] = field(default_factory=list)

    @property
    def error_text(self) -> Optional[str]:
        if not self.errors:
            return None
        return "; ".join(f"{provider}: {message}" for provider, message in sorted(self.errors.items()))


class CalendarSync:
    """Push appointments to every configured calendar provider."""

    def __init__(
        self,
        settings: Settings,
        *,
        google: Optional[GoogleCalendarClient] = None,
        caldav: Optional[CalDAVClient] = None,
    ) -> None:
        self._settings = settings
        self.google = google
        self.caldav = caldav

    @classmethod
    def from_settings(cls, settings: Settings) -> "CalendarSync":
        google = None
        if settings.google_client_id and settings.google_client_secret:
            google = GoogleCalendarClient(
                client_id=settings.google_client_id,
                client_secret=settings.google_client_secret,
                redirect_uri=settings.google_redirect_uri,
                refresh_token=settings.google_refresh_token,
                access_token=settings.google_access_token,
                calendar_id=settings.google_calendar_id,
                timeout=settings.calendar_http_timeout,
            )
        caldav = None
        if settings.caldav_configured:
            caldav = CalDAVClient(
                settings.caldav_url or "",
                settings.caldav_username or "",
                settings.caldav_password or "",
                timeout=settings.calendar_http_timeout,
            )
        return cls(settings, google=google, caldav=caldav)

    @property
    def providers(self) -> List[str]:
        names = []
        if self.google is not None and self.google.can_sync:
            names.append("google")
        if self.caldav is not None:
            names.append("caldav")
        return names

    def push(self, event: CalendarEvent, *, google_event_id: Optional[str] = None) -> SyncResult:
        """Create or update ``event`` everywhere; per-provider failures are collected."""

        if not self.providers:
            raise ValidationError("No calendar provider is configured")
        result = SyncResult(google_event_id=google_event_id)
        if "google" in self.providers:
            body = google_event_body(event, self._settings.calendar_timezone)
            try:
                if google_event_id:
                    result.google_event_id = self.google.update_event(google_event_id, body)
                else:
                    result.google_event_id = self.google.insert_event(body)
                result.synced.append("google")
            except CollaboratorError as exc:
                logger.warning("calendar.google_sync_failed", uid=event.uid, error=exc.message)
                result.errors["google"] = exc.message
        if "caldav" in self.providers:
            try:
                self.caldav.put_event(event.uid, build_ics(event))
                result.calendar_uid = event.uid
                result.synced.append("caldav")
            except CollaboratorError as exc:
                logger.warning("calendar.caldav_sync_failed", uid=event.uid, error=exc.message)
                result.errors["caldav"] = exc.message
        return result

    def remove(self, *, google_event_id: Optional[str], calendar_uid: Optional[str]) -> Dict[str, str]:
        """Delete previously synced events and return any per-provider errors."""

        errors: Dict[str, str] = {}
        if google_event_id and self.google is not None and self.google.can_sync:
            try:
                self.google.delete_event(google_event_id)
            except CollaboratorError as exc:
                errors["google"] = exc.message
        if calendar_uid and self.caldav is not None:
            try:
                self.caldav.delete_event(calendar_uid)
            except CollaboratorError as exc:
                errors["caldav"] = exc.message
        if errors:
            logger.warning("calendar.remove_failed", errors=errors)
        return errors


__all__ = [
    "CalDAVClient",
    "CalendarEvent",
    "CalendarSync",
    "GoogleCalendarClient",
    "SyncResult",
    "build_ics",
    "event_uid",
    "format_appointment_event",
    "google_event_body",
]
