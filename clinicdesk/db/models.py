"""SQLAlchemy models for the clinic schema."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


class ConsultationStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ReportReviewStatus(str, enum.Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class AppointmentType(str, enum.Enum):
    CONSULTATION = "CONSULTATION"
    FOLLOW_UP = "FOLLOW_UP"
    EXAM = "EXAM"
    OTHER = "OTHER"


class User(Base):
    __tablename__ = "users"

    id = sa.Column(String, primary_key=True, default=_new_id)
    email = sa.Column(String, nullable=False, unique=True)
    name = sa.Column(String, nullable=False)
    role = sa.Column(String, nullable=False, default=UserRole.STAFF.value)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Patient(Base):
    __tablename__ = "patients"

    id = sa.Column(String, primary_key=True, default=_new_id)
    full_name = sa.Column(String, nullable=False, index=True)
    phone = sa.Column(String, nullable=False)
    email = sa.Column(String, nullable=True)
    birth_date = sa.Column(Date, nullable=True)
    cpf = sa.Column(String, nullable=True, unique=True)
    city = sa.Column(String, nullable=True)
    state = sa.Column(String, nullable=True)
    blood_type = sa.Column(String, nullable=True)
    allergies = sa.Column(Text, nullable=True)
    current_medications = sa.Column(Text, nullable=True)
    medical_history = sa.Column(Text, nullable=True)
    consent_given = sa.Column(Boolean, nullable=False, default=False)
    consent_date = sa.Column(DateTime(timezone=True), nullable=True)
    consent_version = sa.Column(String, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    consultations = relationship(
        "Consultation", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )
    exams = relationship("Exam", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    reports = relationship("Report", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True)
    appointments = relationship(
        "Appointment", back_populates="patient", cascade="all, delete-orphan", passive_deletes=True
    )


class Consultation(Base):
    __tablename__ = "consultations"

    id = sa.Column(String, primary_key=True, default=_new_id)
    patient_id = sa.Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    conducted_by = sa.Column(String, ForeignKey("users.id"), nullable=False)
    date = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    status = sa.Column(String, nullable=False, default=ConsultationStatus.SCHEDULED.value)
    chief_complaint = sa.Column(Text, nullable=True)
    symptoms = sa.Column(Text, nullable=True)
    medical_history = sa.Column(Text, nullable=True)
    current_medications = sa.Column(Text, nullable=True)
    transcription = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient", back_populates="consultations")
    user = relationship("User")
    audios = relationship(
        "ConsultationAudio",
        back_populates="consultation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ConsultationAudio.created_at",
    )
    reports = relationship("Report", back_populates="consultation")


class ConsultationAudio(Base):
    __tablename__ = "consultation_audios"

    id = sa.Column(String, primary_key=True, default=_new_id)
    consultation_id = sa.Column(
        String, ForeignKey("consultations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_url = sa.Column(String, nullable=False)
    file_name = sa.Column(String, nullable=False)
    file_size = sa.Column(Integer, nullable=True)
    transcription_status = sa.Column(String, nullable=False, default="PENDING")
    transcription = sa.Column(Text, nullable=True)
    duration = sa.Column(Integer, nullable=True)
    language = sa.Column(String, nullable=True)
    segments = sa.Column(sa.JSON, nullable=True)
    transcription_error = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    consultation = relationship("Consultation", back_populates="audios")


class Exam(Base):
    __tablename__ = "exams"

    id = sa.Column(String, primary_key=True, default=_new_id)
    patient_id = sa.Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = sa.Column(String, nullable=False)
    file_url = sa.Column(String, nullable=True)
    file_type = sa.Column(String, nullable=False)
    file_size = sa.Column(Integer, nullable=True)
    processing_status = sa.Column(String, nullable=False, default="PENDING", index=True)
    category = sa.Column(String, nullable=True)
    sub_category = sa.Column(String, nullable=True)
    exam_type = sa.Column(String, nullable=True)
    exam_date = sa.Column(Date, nullable=True)
    extracted_data = sa.Column(sa.JSON, nullable=True)
    key_findings = sa.Column(sa.JSON, nullable=True)
    abnormal_values = sa.Column(sa.JSON, nullable=True)
    recommendations = sa.Column(sa.JSON, nullable=True)
    ai_summary = sa.Column(Text, nullable=True)
    ai_model = sa.Column(String, nullable=True)
    confidence = sa.Column(Float, nullable=True)
    processing_error = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient", back_populates="exams")


class Report(Base):
    __tablename__ = "reports"

    id = sa.Column(String, primary_key=True, default=_new_id)
    patient_id = sa.Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    consultation_id = sa.Column(
        String, ForeignKey("consultations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    generated_by = sa.Column(String, ForeignKey("users.id"), nullable=False)
    processing_status = sa.Column(String, nullable=False, default="PENDING", index=True)
    processing_error = sa.Column(Text, nullable=True)
    full_report_content = sa.Column(Text, nullable=True)
    summary = sa.Column(Text, nullable=True)
    main_findings = sa.Column(sa.JSON, nullable=True)
    recommendations = sa.Column(sa.JSON, nullable=True)
    red_blood_cells = sa.Column(Text, nullable=True)
    white_blood_cells = sa.Column(Text, nullable=True)
    platelets = sa.Column(Text, nullable=True)
    plasma = sa.Column(Text, nullable=True)
    supplementation = sa.Column(Text, nullable=True)
    phytotherapy = sa.Column(Text, nullable=True)
    nutritional_guidance = sa.Column(Text, nullable=True)
    ai_generated = sa.Column(Boolean, nullable=False, default=True)
    ai_model = sa.Column(String, nullable=True)
    status = sa.Column(String, nullable=False, default=ReportReviewStatus.PENDING_REVIEW.value)
    reviewed_at = sa.Column(DateTime(timezone=True), nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient", back_populates="reports")
    consultation = relationship("Consultation", back_populates="reports")
    user = relationship("User")


class Appointment(Base):
    __tablename__ = "appointments"

    id = sa.Column(String, primary_key=True, default=_new_id)
    patient_id = sa.Column(String, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = sa.Column(String, ForeignKey("users.id"), nullable=False, index=True)
    title = sa.Column(String, nullable=False)
    description = sa.Column(Text, nullable=True)
    start_time = sa.Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = sa.Column(DateTime(timezone=True), nullable=False)
    duration = sa.Column(Integer, nullable=False)
    type = sa.Column(String, nullable=False, default=AppointmentType.CONSULTATION.value)
    location = sa.Column(String, nullable=True)
    is_online = sa.Column(Boolean, nullable=False, default=False)
    notes = sa.Column(Text, nullable=True)
    status = sa.Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value, index=True)
    cancellation_reason = sa.Column(Text, nullable=True)
    google_event_id = sa.Column(String, nullable=True)
    calendar_uid = sa.Column(String, nullable=True)
    calendar_synced_at = sa.Column(DateTime(timezone=True), nullable=True)
    calendar_sync_error = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    patient = relationship("Patient", back_populates="appointments")
    user = relationship("User")

    __table_args__ = (
        sa.Index("idx_appointments_user_start", "user_id", "start_time"),
    )


__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "Base",
    "Consultation",
    "ConsultationAudio",
    "ConsultationStatus",
    "Exam",
    "Patient",
    "Report",
    "ReportReviewStatus",
    "User",
    "UserRole",
]
