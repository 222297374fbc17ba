"""Patient records."""

from __future__ import annotations

from typing import List

import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinicdesk.db.models import Consultation, Exam, Patient, Report
from clinicdesk.db.session import get_session
from clinicdesk.errors import ValidationError
from clinicdesk.routes.deps import get_or_404
from clinicdesk.sanitizer import sanitize_fields
from clinicdesk.schemas import (
    ConsultationOut,
    DeleteResult,
    ExamOut,
    PatientCreate,
    PatientDetail,
    PatientOut,
    PatientSummary,
    PatientUpdate,
    ReportOut,
)
from clinicdesk.services import Services, get_services
from clinicdesk.time_utils import utc_now


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/patients", tags=["patients"])

RECENT_LIMIT = 5


def _count(session: Session, model, patient_id: str) -> int:
    return session.execute(
        sa.select(sa.func.count()).select_from(model).where(model.patient_id == patient_id)
    ).scalar_one()


def _ensure_unique_cpf(session: Session, cpf: str | None, patient_id: str | None = None) -> None:
    if not cpf:
        return
    query = sa.select(Patient.id).where(Patient.cpf == cpf)
    if patient_id:
        query = query.where(Patient.id != patient_id)
    if session.execute(query).first() is not None:
        raise ValidationError("A patient with this CPF already exists", details={"field": "cpf"})


@router.get("", response_model=List[PatientSummary])
def list_patients(session: Session = Depends(get_session)):
    patients = session.execute(sa.select(Patient).order_by(Patient.full_name.asc())).scalars().all()
    summaries = []
    for patient in patients:
        summary = PatientSummary.model_validate(patient)
        summary.consultations_count = _count(session, Consultation, patient.id)
        summary.exams_count = _count(session, Exam, patient.id)
        summary.reports_count = _count(session, Report, patient.id)
        summaries.append(summary)
    return summaries


@router.get("/{patient_id}", response_model=PatientDetail)
def get_patient(patient_id: str, session: Session = Depends(get_session)):
    patient = get_or_404(session, Patient, patient_id, "Patient")
    consultations = session.execute(
        sa.select(Consultation)
        .where(Consultation.patient_id == patient_id)
        .order_by(Consultation.date.desc())
        .limit(RECENT_LIMIT)
    ).scalars()
    reports = session.execute(
        sa.select(Report)
        .where(Report.patient_id == patient_id)
        .order_by(Report.created_at.desc())
        .limit(RECENT_LIMIT)
    ).scalars()
    exams = session.execute(
        sa.select(Exam).where(Exam.patient_id == patient_id).order_by(Exam.created_at.desc())
    ).scalars()
    detail = PatientDetail.model_validate(PatientOut.model_validate(patient).model_dump())
    detail.consultations = [ConsultationOut.model_validate(item) for item in consultations]
    detail.reports = [ReportOut.model_validate(item) for item in reports]
    detail.exams = [ExamOut.model_validate(item) for item in exams]
    return detail


@router.post("", status_code=201, response_model=PatientOut)
def create_patient(payload: PatientCreate, session: Session = Depends(get_session)):
    fields = sanitize_fields(payload.model_dump())
    _ensure_unique_cpf(session, fields.get("cpf"))
    patient = Patient(**fields)
    if patient.consent_given:
        patient.consent_date = utc_now()
    session.add(patient)
    session.commit()
    logger.info("patients.created", patient_id=patient.id)
    return PatientOut.model_validate(patient)


@router.put("/{patient_id}", response_model=PatientOut)
def update_patient(patient_id: str, payload: PatientUpdate, session: Session = Depends(get_session)):
    patient = get_or_404(session, Patient, patient_id, "Patient")
    changes = sanitize_fields(payload.model_dump(exclude_unset=True))
    if "cpf" in changes:
        _ensure_unique_cpf(session, changes["cpf"], patient_id)
    if changes.get("consent_given") and not patient.consent_given:
        patient.consent_date = utc_now()
    for key, value in changes.items():
        setattr(patient, key, value)
    session.commit()
    logger.info("patients.updated", patient_id=patient_id, fields=sorted(changes))
    return PatientOut.model_validate(patient)


@router.delete("/{patient_id}", response_model=DeleteResult)
def delete_patient(
    patient_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Delete a patient with everything it owns, then their stored files."""

    patient = get_or_404(session, Patient, patient_id, "Patient")
    paths = [exam.file_url for exam in patient.exams]
    for consultation in patient.consultations:
        paths.extend(audio.file_url for audio in consultation.audios)
    session.delete(patient)
    session.commit()
    removed = services.storage.delete_many(paths)
    logger.info("patients.deleted", patient_id=patient_id, files=len(paths), files_removed=removed)
    return DeleteResult(message="Patient deleted successfully", files_removed=removed)


__all__ = ["router"]
