"""AI generated reports and their review workflow."""

from __future__ import annotations

import functools
from typing import List, Optional

import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinicdesk.db.models import Consultation, ConsultationStatus, Patient, Report, ReportReviewStatus
from clinicdesk.db.session import get_session
from clinicdesk.errors import CollaboratorError, NotFoundError
from clinicdesk.jobs import JobKind, JobStatus, reset_for_processing
from clinicdesk.report_generation import report_job
from clinicdesk.routes.deps import get_or_404, resolve_user
from clinicdesk.sanitizer import sanitize_fields
from clinicdesk.schemas import DeleteResult, JobAccepted, ReportGenerateRequest, ReportOut, ReportReviewUpdate
from clinicdesk.services import Services, get_services
from clinicdesk.time_utils import utc_now


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])

DEFAULT_CHIEF_COMPLAINT = "Live blood analysis and general assessment"


def _report_work(services: Services, report: Report):
    return functools.partial(
        report_job,
        services.report_generator,
        services.session_factory,
        report.patient_id,
        report.consultation_id,
    )


def _create_report(session: Session, services: Services, payload: ReportGenerateRequest) -> Report:
    """Validate the request and persist a PROCESSING report for it."""

    get_or_404(session, Patient, payload.patient_id, "Patient")
    user = resolve_user(session, services.settings, payload.conducted_by)
    consultation_id: Optional[str] = payload.consultation_id
    if consultation_id:
        consultation = session.get(Consultation, consultation_id)
        if consultation is None or consultation.patient_id != payload.patient_id:
            raise NotFoundError.for_entity("Consultation", consultation_id)
    else:
        consultation = Consultation(
            patient_id=payload.patient_id,
            conducted_by=user.id,
            status=ConsultationStatus.COMPLETED.value,
            chief_complaint=DEFAULT_CHIEF_COMPLAINT,
        )
        session.add(consultation)
        session.flush()
        consultation_id = consultation.id

    report = Report(
        patient_id=payload.patient_id,
        consultation_id=consultation_id,
        generated_by=user.id,
        ai_generated=True,
        status=ReportReviewStatus.PENDING_REVIEW.value,
    )
    reset_for_processing(report, JobKind.REPORT)
    session.add(report)
    session.commit()
    logger.info("reports.created", report_id=report.id, patient_id=payload.patient_id)
    return report


@router.get("", response_model=List[ReportOut])
def list_reports(session: Session = Depends(get_session)):
    reports = session.execute(sa.select(Report).order_by(Report.created_at.desc())).scalars()
    return [ReportOut.model_validate(report) for report in reports]


@router.get("/patient/{patient_id}", response_model=List[ReportOut])
def list_patient_reports(patient_id: str, session: Session = Depends(get_session)):
    get_or_404(session, Patient, patient_id, "Patient")
    reports = session.execute(
        sa.select(Report).where(Report.patient_id == patient_id).order_by(Report.created_at.desc())
    ).scalars()
    return [ReportOut.model_validate(report) for report in reports]


@router.get("/{report_id}", response_model=ReportOut)
def get_report(report_id: str, session: Session = Depends(get_session)):
    return ReportOut.model_validate(get_or_404(session, Report, report_id, "Report"))


@router.post("/generate", status_code=202, response_model=JobAccepted)
async def generate_report(
    payload: ReportGenerateRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    report = _create_report(session, services, payload)
    services.jobs.launch(JobKind.REPORT, report.id, _report_work(services, report))
    return JobAccepted(
        id=report.id,
        kind=JobKind.REPORT.value,
        status=report.processing_status,
        message="Report generation started",
    )


@router.post("/generate/sync", status_code=201, response_model=ReportOut)
async def generate_report_sync(
    payload: ReportGenerateRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Generate a report and wait for the result.

    The record goes through the same runner as the detached variant; a
    failed generation is left as ``FAILED`` and reported as 502.
    """

    report = _create_report(session, services, payload)
    await services.jobs.run(JobKind.REPORT, report.id, _report_work(services, report))
    session.refresh(report)
    if report.processing_status == JobStatus.FAILED.value:
        raise CollaboratorError(report.processing_error or "Report generation failed", details={"id": report.id})
    return ReportOut.model_validate(report)


@router.post("/{report_id}/regenerate", status_code=202, response_model=JobAccepted)
async def regenerate_report(
    report_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    report = get_or_404(session, Report, report_id, "Report")
    reset_for_processing(report, JobKind.REPORT)
    report.status = ReportReviewStatus.PENDING_REVIEW.value
    report.reviewed_at = None
    session.commit()
    services.jobs.launch(JobKind.REPORT, report.id, _report_work(services, report))
    return JobAccepted(
        id=report.id,
        kind=JobKind.REPORT.value,
        status=report.processing_status,
        message="Report regeneration started",
    )


@router.put("/{report_id}", response_model=ReportOut)
def review_report(report_id: str, payload: ReportReviewUpdate, session: Session = Depends(get_session)):
    report = get_or_404(session, Report, report_id, "Report")
    changes = sanitize_fields(payload.model_dump(exclude_unset=True))
    for key, value in changes.items():
        setattr(report, key, value)
    if changes.get("status") == ReportReviewStatus.APPROVED.value:
        report.reviewed_at = utc_now()
    session.commit()
    logger.info("reports.reviewed", report_id=report_id, status=report.status)
    return ReportOut.model_validate(report)


@router.delete("/{report_id}", response_model=DeleteResult)
def delete_report(report_id: str, session: Session = Depends(get_session)):
    report = get_or_404(session, Report, report_id, "Report")
    session.delete(report)
    session.commit()
    return DeleteResult(message="Report deleted successfully")


__all__ = ["router"]
