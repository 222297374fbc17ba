"""Request and response models for the REST API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, StringConstraints
from pydantic.alias_generators import to_camel


NonBlank = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class PatientCreate(ApiModel):
    full_name: NonBlank
    phone: NonBlank
    email: Optional[str] = None
    birth_date: Optional[date] = None
    cpf: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None
    medical_history: Optional[str] = None
    consent_given: bool = False
    consent_version: Optional[str] = None


class PatientUpdate(ApiModel):
    full_name: Optional[NonBlank] = None
    phone: Optional[NonBlank] = None
    email: Optional[str] = None
    birth_date: Optional[date] = None
    cpf: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None
    medical_history: Optional[str] = None
    consent_given: Optional[bool] = None
    consent_version: Optional[str] = None


ConsultationStatusName = Literal["SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]


class ConsultationCreate(ApiModel):
    patient_id: NonBlank
    conducted_by: Optional[str] = None
    date: Optional[datetime] = None
    status: Optional[ConsultationStatusName] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None


class ConsultationUpdate(ApiModel):
    date: Optional[datetime] = None
    status: Optional[ConsultationStatusName] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    transcription: Optional[str] = None


class ReportGenerateRequest(ApiModel):
    patient_id: NonBlank
    consultation_id: Optional[str] = None
    conducted_by: Optional[str] = None


class ReportReviewUpdate(ApiModel):
    red_blood_cells: Optional[str] = None
    white_blood_cells: Optional[str] = None
    platelets: Optional[str] = None
    plasma: Optional[str] = None
    supplementation: Optional[str] = None
    phytotherapy: Optional[str] = None
    nutritional_guidance: Optional[str] = None
    status: Optional[Literal["PENDING_REVIEW", "APPROVED", "REJECTED"]] = None


class AppointmentCreate(ApiModel):
    patient_id: NonBlank
    title: NonBlank
    start_time: Any = None
    end_time: Any = None
    user_id: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    is_online: bool = False
    notes: Optional[str] = None
    status: Optional[str] = None


class AppointmentUpdate(ApiModel):
    title: Optional[NonBlank] = None
    start_time: Any = None
    end_time: Any = None
    description: Optional[str] = None
    type: Optional[str] = None
    location: Optional[str] = None
    is_online: Optional[bool] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class AppointmentCancel(ApiModel):
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class PatientBrief(ApiModel):
    id: str
    full_name: str
    phone: str
    email: Optional[str] = None


class PatientSummary(PatientBrief):
    birth_date: Optional[date] = None
    city: Optional[str] = None
    state: Optional[str] = None
    created_at: datetime
    consultations_count: int = 0
    exams_count: int = 0
    reports_count: int = 0


class AudioOut(ApiModel):
    id: str
    consultation_id: str
    file_name: str
    file_url: str
    file_size: Optional[int] = None
    transcription_status: str
    transcription: Optional[str] = None
    duration: Optional[int] = None
    language: Optional[str] = None
    segments: Optional[List[Dict[str, Any]]] = None
    transcription_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConsultationOut(ApiModel):
    id: str
    patient_id: str
    conducted_by: str
    date: datetime
    status: str
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    transcription: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    patient: Optional[PatientBrief] = None
    audios: List[AudioOut] = []


class ExamOut(ApiModel):
    id: str
    patient_id: str
    file_name: str
    file_url: Optional[str] = None
    file_type: str
    file_size: Optional[int] = None
    processing_status: str
    category: Optional[str] = None
    sub_category: Optional[str] = None
    exam_type: Optional[str] = None
    exam_date: Optional[date] = None
    extracted_data: Optional[Dict[str, Any]] = None
    key_findings: Optional[List[Dict[str, Any]]] = None
    abnormal_values: Optional[List[Dict[str, Any]]] = None
    recommendations: Optional[List[str]] = None
    ai_summary: Optional[str] = None
    ai_model: Optional[str] = None
    confidence: Optional[float] = None
    processing_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReportOut(ApiModel):
    id: str
    patient_id: str
    consultation_id: Optional[str] = None
    generated_by: str
    processing_status: str
    processing_error: Optional[str] = None
    full_report_content: Optional[str] = None
    summary: Optional[str] = None
    main_findings: Optional[List[str]] = None
    recommendations: Optional[List[str]] = None
    red_blood_cells: Optional[str] = None
    white_blood_cells: Optional[str] = None
    platelets: Optional[str] = None
    plasma: Optional[str] = None
    supplementation: Optional[str] = None
    phytotherapy: Optional[str] = None
    nutritional_guidance: Optional[str] = None
    ai_generated: bool
    ai_model: Optional[str] = None
    status: str
    reviewed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    patient: Optional[PatientBrief] = None


class PatientOut(PatientBrief):
    birth_date: Optional[date] = None
    cpf: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None
    medical_history: Optional[str] = None
    consent_given: bool
    consent_date: Optional[datetime] = None
    consent_version: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class PatientDetail(PatientOut):
    consultations: List[ConsultationOut] = []
    exams: List[ExamOut] = []
    reports: List[ReportOut] = []


class AppointmentOut(ApiModel):
    id: str
    patient_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration: int
    type: str
    location: Optional[str] = None
    is_online: bool
    notes: Optional[str] = None
    status: str
    cancellation_reason: Optional[str] = None
    google_event_id: Optional[str] = None
    calendar_uid: Optional[str] = None
    calendar_synced_at: Optional[datetime] = None
    calendar_sync_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    patient: Optional[PatientBrief] = None


class JobAccepted(ApiModel):
    id: str
    kind: str
    status: str
    message: str


class JobStatusOut(ApiModel):
    id: str
    kind: str
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    updated_at: Optional[datetime] = None


class CalendarSyncOut(ApiModel):
    appointment: AppointmentOut
    synced: List[str]
    errors: Dict[str, str]


class DashboardStats(ApiModel):
    total_patients: int
    consultations_this_month: int
    reports_generated: int
    exams_analyzed: int


class DeleteResult(ApiModel):
    success: bool = True
    message: str
    files_removed: int = 0


