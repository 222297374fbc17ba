"""Appointment scheduling and calendar export."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from clinicdesk.calendar_sync import build_ics, format_appointment_event
from clinicdesk.db.models import Appointment, AppointmentStatus, Patient
from clinicdesk.db.session import get_session
from clinicdesk.errors import CollaboratorError
from clinicdesk.routes.deps import get_or_404, resolve_user
from clinicdesk.sanitizer import sanitize_fields, sanitize_optional
from clinicdesk.scheduling import (
    appointment_filters,
    duration_minutes,
    normalise_status,
    normalise_type,
    require_datetime,
)
from clinicdesk.schemas import (
    AppointmentCancel,
    AppointmentCreate,
    AppointmentOut,
    AppointmentUpdate,
    CalendarSyncOut,
    DeleteResult,
)
from clinicdesk.services import Services, get_services
from clinicdesk.time_utils import utc_now


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])

_TEXT_FIELDS = ("title", "description", "location", "notes")


@router.get("", response_model=List[AppointmentOut])
def list_appointments(
    patient_id: Optional[str] = Query(None, alias="patientId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    status: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    session: Session = Depends(get_session),
):
    query = appointment_filters(
        patient_id=patient_id,
        user_id=user_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    return [AppointmentOut.model_validate(item) for item in session.execute(query).scalars()]


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_appointment(appointment_id: str, session: Session = Depends(get_session)):
    return AppointmentOut.model_validate(get_or_404(session, Appointment, appointment_id, "Appointment"))


@router.post("", status_code=201, response_model=AppointmentOut)
def create_appointment(
    payload: AppointmentCreate,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    start = require_datetime(payload.start_time, "startTime")
    end = require_datetime(payload.end_time, "endTime")
    duration = duration_minutes(start, end)
    get_or_404(session, Patient, payload.patient_id, "Patient")
    user = resolve_user(session, services.settings, payload.user_id)
    text = sanitize_fields({name: getattr(payload, name) for name in _TEXT_FIELDS})
    appointment = Appointment(
        patient_id=payload.patient_id,
        user_id=user.id,
        start_time=start,
        end_time=end,
        duration=duration,
        type=normalise_type(payload.type),
        status=normalise_status(payload.status),
        is_online=payload.is_online,
        **text,
    )
    session.add(appointment)
    session.commit()
    logger.info("appointments.created", appointment_id=appointment.id, patient_id=payload.patient_id)
    return AppointmentOut.model_validate(appointment)


@router.put("/{appointment_id}", response_model=AppointmentOut)
def update_appointment(
    appointment_id: str, payload: AppointmentUpdate, session: Session = Depends(get_session)
):
    appointment = get_or_404(session, Appointment, appointment_id, "Appointment")
    changes = payload.model_dump(exclude_unset=True)
    start = appointment.start_time
    end = appointment.end_time
    if changes.get("start_time") is not None:
        start = require_datetime(changes["start_time"], "startTime")
    if changes.get("end_time") is not None:
        end = require_datetime(changes["end_time"], "endTime")
    appointment.duration = duration_minutes(start, end)
    appointment.start_time = start
    appointment.end_time = end
    if "type" in changes:
        appointment.type = normalise_type(changes["type"])
    if "status" in changes:
        appointment.status = normalise_status(changes["status"])
    if changes.get("is_online") is not None:
        appointment.is_online = changes["is_online"]
    for name in _TEXT_FIELDS:
        if name in changes:
            setattr(appointment, name, sanitize_optional(changes[name]))
    session.commit()
    return AppointmentOut.model_validate(appointment)


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    appointment_id: str,
    payload: Optional[AppointmentCancel] = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Cancel an appointment and mark already-synced calendar events as cancelled."""

    appointment = get_or_404(session, Appointment, appointment_id, "Appointment")
    appointment.status = AppointmentStatus.CANCELLED.value
    appointment.cancellation_reason = sanitize_optional(payload.reason if payload else None)
    synced = appointment.google_event_id or appointment.calendar_uid
    if synced and services.calendar.providers:
        event = format_appointment_event(appointment, appointment.patient, services.settings)
        result = await asyncio.to_thread(
            services.calendar.push, event, google_event_id=appointment.google_event_id
        )
        appointment.calendar_sync_error = result.error_text
    session.commit()
    logger.info("appointments.cancelled", appointment_id=appointment_id)
    return AppointmentOut.model_validate(appointment)


@router.delete("/{appointment_id}", response_model=DeleteResult)
async def delete_appointment(
    appointment_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    appointment = get_or_404(session, Appointment, appointment_id, "Appointment")
    if appointment.google_event_id or appointment.calendar_uid:
        await asyncio.to_thread(
            services.calendar.remove,
            google_event_id=appointment.google_event_id,
            calendar_uid=appointment.calendar_uid,
        )
    session.delete(appointment)
    session.commit()
    return DeleteResult(message="Appointment deleted successfully")


@router.get("/{appointment_id}/ics")
def download_ics(
    appointment_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    appointment = get_or_404(session, Appointment, appointment_id, "Appointment")
    event = format_appointment_event(appointment, appointment.patient, services.settings)
    return Response(
        content=build_ics(event),
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="appointment-{appointment.id}.ics"'},
    )


@router.post("/{appointment_id}/sync", response_model=CalendarSyncOut)
async def sync_appointment(
    appointment_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Push the appointment to every configured calendar.

    Per-provider failures are stored on the appointment; when no provider
    accepted the event the call fails with 502.
    """

    appointment = get_or_404(session, Appointment, appointment_id, "Appointment")
    event = format_appointment_event(appointment, appointment.patient, services.settings)
    result = await asyncio.to_thread(
        services.calendar.push, event, google_event_id=appointment.google_event_id
    )
    if result.google_event_id:
        appointment.google_event_id = result.google_event_id
    if result.calendar_uid:
        appointment.calendar_uid = result.calendar_uid
    if result.synced:
        appointment.calendar_synced_at = utc_now()
    appointment.calendar_sync_error = result.error_text
    session.commit()
    logger.info(
        "appointments.synced",
        appointment_id=appointment_id,
        synced=result.synced,
        errors=sorted(result.errors),
    )
    if not result.synced:
        raise CollaboratorError(result.error_text or "Calendar sync failed", details=result.errors)
    return CalendarSyncOut(
        appointment=AppointmentOut.model_validate(appointment),
        synced=result.synced,
        errors=result.errors,
    )


__all__ = ["router"]
