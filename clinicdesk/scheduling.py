"""Appointment scheduling helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa

from clinicdesk.db.models import Appointment, AppointmentStatus, AppointmentType
from clinicdesk.errors import ValidationError
from clinicdesk.time_utils import ensure_utc, parse_datetime


_STATUS_REMAP = {
    "booked": AppointmentStatus.SCHEDULED.value,
    "scheduled": AppointmentStatus.SCHEDULED.value,
    "confirmed": AppointmentStatus.CONFIRMED.value,
    "done": AppointmentStatus.COMPLETED.value,
    "completed": AppointmentStatus.COMPLETED.value,
    "canceled": AppointmentStatus.CANCELLED.value,
    "cancelled": AppointmentStatus.CANCELLED.value,
    "no-show": AppointmentStatus.NO_SHOW.value,
    "no_show": AppointmentStatus.NO_SHOW.value,
    "noshow": AppointmentStatus.NO_SHOW.value,
}

_TYPE_REMAP = {
    "consultation": AppointmentType.CONSULTATION.value,
    "follow-up": AppointmentType.FOLLOW_UP.value,
    "follow_up": AppointmentType.FOLLOW_UP.value,
    "followup": AppointmentType.FOLLOW_UP.value,
    "return": AppointmentType.FOLLOW_UP.value,
    "exam": AppointmentType.EXAM.value,
    "other": AppointmentType.OTHER.value,
}


def require_datetime(value: Any, field: str) -> datetime:
    if value in (None, ""):
        raise ValidationError(f"{field} is required", details={"field": field})
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})
    return parsed


def duration_minutes(start: datetime, end: datetime) -> int:
    """Return the whole minutes between ``start`` and ``end``; end must follow start."""

    start, end = ensure_utc(start), ensure_utc(end)
    if end <= start:
        raise ValidationError("endTime must be after startTime", details={"field": "endTime"})
    return int((end - start).total_seconds() // 60)


def normalise_status(value: Optional[str]) -> str:
    if not value:
        return AppointmentStatus.SCHEDULED.value
    normalised = value.strip().lower().replace(" ", "-")
    status = _STATUS_REMAP.get(normalised)
    if status is None:
        raise ValidationError(f"Unknown appointment status: {value}", details={"field": "status"})
    return status


def normalise_type(value: Optional[str]) -> str:
    if not value:
        return AppointmentType.CONSULTATION.value
    normalised = value.strip().lower().replace(" ", "-")
    kind = _TYPE_REMAP.get(normalised)
    if kind is None:
        raise ValidationError(f"Unknown appointment type: {value}", details={"field": "type"})
    return kind


def appointment_filters(
    *,
    patient_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> sa.Select:
    """Build the appointment list query for the supplied filters."""

    query = sa.select(Appointment)
    if patient_id:
        query = query.where(Appointment.patient_id == patient_id)
    if user_id:
        query = query.where(Appointment.user_id == user_id)
    if status:
        query = query.where(Appointment.status == normalise_status(status))
    if start_date:
        query = query.where(Appointment.start_time >= require_datetime(start_date, "startDate"))
    if end_date:
        query = query.where(Appointment.start_time <= require_datetime(end_date, "endDate"))
    return query.order_by(Appointment.start_time.asc())


__all__ = [
    "appointment_filters",
    "duration_minutes",
    "normalise_status",
    "normalise_type",
    "require_datetime",
]
