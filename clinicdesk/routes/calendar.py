"""Google Calendar authorization."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from clinicdesk.calendar_sync import GoogleCalendarClient
from clinicdesk.errors import ValidationError, require
from clinicdesk.services import Services, get_services
from clinicdesk.time_utils import parse_datetime, utc_now


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


def _google(services: Services) -> GoogleCalendarClient:
    if services.calendar.google is None:
        raise ValidationError("Google Calendar is not configured")
    return services.calendar.google


@router.get("/google/auth-url")
def google_auth_url(state: Optional[str] = None, services: Services = Depends(get_services)):
    return {"authUrl": _google(services).authorization_url(state)}


@router.get("/google/callback")
async def google_callback(code: Optional[str] = None, services: Services = Depends(get_services)):
    """Exchange the OAuth code; the refresh token must be copied into GOOGLE_REFRESH_TOKEN."""

    require(code, "code")
    tokens = await asyncio.to_thread(_google(services).exchange_code, code)
    logger.info("calendar.google_authorized", has_refresh_token=bool(tokens.get("refresh_token")))
    return {
        "message": "Google Calendar authorized",
        "refreshToken": tokens.get("refresh_token"),
        "expiryDate": tokens.get("expiry_date"),
    }


@router.get("/google/events")
async def google_events(
    time_min: Optional[str] = Query(None, alias="timeMin"),
    time_max: Optional[str] = Query(None, alias="timeMax"),
    services: Services = Depends(get_services),
):
    start = parse_datetime(time_min) if time_min else utc_now()
    end = parse_datetime(time_max) if time_max else start + timedelta(days=30)
    if start is None or end is None:
        raise ValidationError("timeMin and timeMax must be ISO-8601 datetimes")
    events = await asyncio.to_thread(_google(services).list_events, start, end)
    return {"events": events}


__all__ = ["router"]
