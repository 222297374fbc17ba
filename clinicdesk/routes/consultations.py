"""Consultations and their audio recordings."""

from __future__ import annotations

import functools
from typing import List, Optional

import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from clinicdesk.db.models import Consultation, ConsultationAudio, ConsultationStatus, Patient
from clinicdesk.db.session import get_session
from clinicdesk.errors import NotFoundError, ValidationError
from clinicdesk.jobs import JobKind, reset_for_processing
from clinicdesk.routes.deps import get_or_404, read_upload, resolve_user
from clinicdesk.sanitizer import sanitize_fields
from clinicdesk.schemas import (
    AudioOut,
    ConsultationCreate,
    ConsultationOut,
    ConsultationUpdate,
    DeleteResult,
    JobAccepted,
)
from clinicdesk.services import Services, get_services
from clinicdesk.transcription import ALLOWED_AUDIO_TYPES, transcription_job


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/consultations", tags=["consultations"])


def _get_audio(session: Session, consultation_id: str, audio_id: str) -> ConsultationAudio:
    audio = session.get(ConsultationAudio, audio_id)
    if audio is None or audio.consultation_id != consultation_id:
        raise NotFoundError.for_entity("Audio", audio_id)
    return audio


def _launch_transcription(services: Services, audio: ConsultationAudio) -> None:
    services.jobs.launch(
        JobKind.TRANSCRIPTION,
        audio.id,
        functools.partial(transcription_job, services.transcriber, audio.file_url),
    )


@router.get("", response_model=List[ConsultationOut])
def list_consultations(session: Session = Depends(get_session)):
    consultations = session.execute(
        sa.select(Consultation).order_by(Consultation.date.desc())
    ).scalars()
    return [ConsultationOut.model_validate(item) for item in consultations]


@router.get("/patient/{patient_id}", response_model=List[ConsultationOut])
def list_patient_consultations(patient_id: str, session: Session = Depends(get_session)):
    get_or_404(session, Patient, patient_id, "Patient")
    consultations = session.execute(
        sa.select(Consultation)
        .where(Consultation.patient_id == patient_id)
        .order_by(Consultation.date.desc())
    ).scalars()
    return [ConsultationOut.model_validate(item) for item in consultations]


@router.get("/{consultation_id}", response_model=ConsultationOut)
def get_consultation(consultation_id: str, session: Session = Depends(get_session)):
    consultation = get_or_404(session, Consultation, consultation_id, "Consultation")
    return ConsultationOut.model_validate(consultation)


@router.post("", status_code=201, response_model=ConsultationOut)
def create_consultation(
    payload: ConsultationCreate,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    get_or_404(session, Patient, payload.patient_id, "Patient")
    user = resolve_user(session, services.settings, payload.conducted_by)
    fields = sanitize_fields(payload.model_dump(exclude={"conducted_by", "date", "status"}))
    consultation = Consultation(
        **fields,
        conducted_by=user.id,
        status=payload.status or ConsultationStatus.IN_PROGRESS.value,
    )
    if payload.date is not None:
        consultation.date = payload.date
    session.add(consultation)
    session.commit()
    logger.info("consultations.created", consultation_id=consultation.id, patient_id=payload.patient_id)
    return ConsultationOut.model_validate(consultation)


@router.put("/{consultation_id}", response_model=ConsultationOut)
def update_consultation(
    consultation_id: str, payload: ConsultationUpdate, session: Session = Depends(get_session)
):
    consultation = get_or_404(session, Consultation, consultation_id, "Consultation")
    changes = sanitize_fields(payload.model_dump(exclude_unset=True))
    for key, value in changes.items():
        setattr(consultation, key, value)
    session.commit()
    return ConsultationOut.model_validate(consultation)


@router.post("/{consultation_id}/upload-audio", status_code=201, response_model=AudioOut)
async def upload_audio(
    consultation_id: str,
    audio: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """Store a recording and start transcribing it in the background."""

    data = await read_upload(
        audio,
        field="audio",
        allowed_types=ALLOWED_AUDIO_TYPES,
        max_size=services.settings.max_audio_file_size,
    )
    get_or_404(session, Consultation, consultation_id, "Consultation")
    stored = services.storage.save(data, audio.filename, "audio")
    record = ConsultationAudio(
        consultation_id=consultation_id,
        file_url=str(stored.path),
        file_name=audio.filename,
        file_size=stored.size,
    )
    reset_for_processing(record, JobKind.TRANSCRIPTION)
    session.add(record)
    session.commit()
    _launch_transcription(services, record)
    return AudioOut.model_validate(record)


@router.get("/{consultation_id}/audios/{audio_id}", response_model=AudioOut)
def get_audio(consultation_id: str, audio_id: str, session: Session = Depends(get_session)):
    return AudioOut.model_validate(_get_audio(session, consultation_id, audio_id))


@router.post("/{consultation_id}/audios/{audio_id}/retranscribe", status_code=202, response_model=JobAccepted)
async def retranscribe_audio(
    consultation_id: str,
    audio_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    audio = _get_audio(session, consultation_id, audio_id)
    if not audio.file_url:
        raise ValidationError("Audio file is missing", details={"id": audio_id})
    reset_for_processing(audio, JobKind.TRANSCRIPTION)
    session.commit()
    _launch_transcription(services, audio)
    return JobAccepted(
        id=audio.id,
        kind=JobKind.TRANSCRIPTION.value,
        status=audio.transcription_status,
        message="Transcription restarted",
    )


@router.delete("/{consultation_id}/audios/{audio_id}", response_model=DeleteResult)
def delete_audio(
    consultation_id: str,
    audio_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    audio = _get_audio(session, consultation_id, audio_id)
    path = audio.file_url
    session.delete(audio)
    session.commit()
    removed = services.storage.delete_many([path])
    return DeleteResult(message="Audio deleted successfully", files_removed=removed)


@router.delete("/{consultation_id}", response_model=DeleteResult)
def delete_consultation(
    consultation_id: str,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    consultation = get_or_404(session, Consultation, consultation_id, "Consultation")
    paths = [audio.file_url for audio in consultation.audios]
    session.delete(consultation)
    session.commit()
    removed = services.storage.delete_many(paths)
    logger.info("consultations.deleted", consultation_id=consultation_id, files_removed=removed)
    return DeleteResult(message="Consultation deleted successfully", files_removed=removed)


__all__ = ["router"]
