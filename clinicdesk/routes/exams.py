"""Lab exam uploads and their AI analysis."""

from __future__ import annotations

import functools
from typing import List, Optional

import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from clinicdesk.db.models import Exam, Patient
from clinicdesk.db.session import get_session
from clinicdesk.errors import ValidationError, require
from clinicdesk.exam_analysis import ALLOWED_EXAM_TYPES, exam_analysis_job
from clinicdesk.jobs import JobKind, reset_for_processing
from clinicdesk.routes.deps import get_or_404, read_upload
from clinicdesk.schemas import DeleteResult, ExamOut, JobAccepted
from clinicdesk.services import Services, get_services


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/exams", tags=["exams"])


def _launch_analysis(services: Services, exam: Exam) -> None:
    services.jobs.launch(
        JobKind.EXAM_ANALYSIS,
        exam.id,
        functools.partial(exam_analysis_job, services.exam_analyzer, exam.file_url, exam.file_type),
    )


@router.post("/upload", status_code=201, response_model=ExamOut)
async def upload_exam(
    file: Optional[UploadFile] = File(None),
    patient_id: Optional[str] = Form(None, alias="patientId"),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Store an exam document and analyse it in the background.

    The response carries the new exam in ``PROCESSING``; clients poll
    ``GET /api/exams/{id}`` until it reaches ``COMPLETED`` or ``FAILED``.
    """

    require(patient_id, "patientId")
    data = await read_upload(
        file,
        field="file",
        allowed_types=ALLOWED_EXAM_TYPES,
        max_size=services.settings.max_exam_file_size,
    )
    get_or_404(session, Patient, patient_id, "Patient")
    stored = services.storage.save(data, file.filename, "exams")
    exam = Exam(
        patient_id=patient_id,
        file_name=file.filename,
        file_url=str(stored.path),
        file_type="pdf" if file.content_type == "application/pdf" else "image",
        file_size=stored.size,
    )
    reset_for_processing(exam, JobKind.EXAM_ANALYSIS)
    session.add(exam)
    session.commit()
    logger.info("exams.uploaded", exam_id=exam.id, patient_id=patient_id, size=stored.size)
    _launch_analysis(services, exam)
    return ExamOut.model_validate(exam)


@router.post("/{exam_id}/reprocess", status_code=202, response_model=JobAccepted)
async def reprocess_exam(
    exam_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    exam = get_or_404(session, Exam, exam_id, "Exam")
    if not exam.file_url:
        raise ValidationError("Exam file is missing", details={"id": exam_id})
    reset_for_processing(exam, JobKind.EXAM_ANALYSIS)
    session.commit()
    logger.info("exams.reprocess_requested", exam_id=exam_id)
    _launch_analysis(services, exam)
    return JobAccepted(
        id=exam.id,
        kind=JobKind.EXAM_ANALYSIS.value,
        status=exam.processing_status,
        message="Exam reprocessing started",
    )


@router.get("/patient/{patient_id}", response_model=List[ExamOut])
def list_patient_exams(patient_id: str, session: Session = Depends(get_session)):
    get_or_404(session, Patient, patient_id, "Patient")
    exams = session.execute(
        sa.select(Exam).where(Exam.patient_id == patient_id).order_by(Exam.created_at.desc())
    ).scalars()
    return [ExamOut.model_validate(exam) for exam in exams]


@router.get("/{exam_id}", response_model=ExamOut)
def get_exam(exam_id: str, session: Session = Depends(get_session)):
    return ExamOut.model_validate(get_or_404(session, Exam, exam_id, "Exam"))


@router.delete("/{exam_id}", response_model=DeleteResult)
def delete_exam(
    exam_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    exam = get_or_404(session, Exam, exam_id, "Exam")
    path = exam.file_url
    session.delete(exam)
    session.commit()
    removed = services.storage.delete_many([path])
    logger.info("exams.deleted", exam_id=exam_id, files_removed=removed)
    return DeleteResult(message="Exam deleted successfully", files_removed=removed)


__all__ = ["router"]
