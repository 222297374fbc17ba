"""Process-wide service container shared by the HTTP handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.engine import Engine

from clinicdesk.calendar_sync import CalendarSync
from clinicdesk.config import Settings
from clinicdesk.db.session import SessionFactory, create_db_engine, make_session_factory
from clinicdesk.exam_analysis import ExamAnalyzer
from clinicdesk.file_storage import LocalFileStorage
from clinicdesk.jobs import JobRunner
from clinicdesk.report_generation import ReportGenerator
from clinicdesk.transcription import AudioTranscriber


@dataclass
class Services:
    settings: Settings
    session_factory: SessionFactory
    storage: LocalFileStorage
    jobs: JobRunner
    transcriber: AudioTranscriber
    exam_analyzer: ExamAnalyzer
    report_generator: ReportGenerator
    calendar: CalendarSync
    engine: Optional[Engine] = None


def build_services(
    settings: Settings,
    *,
    session_factory: Optional[SessionFactory] = None,
    transcriber: Optional[AudioTranscriber] = None,
    exam_analyzer: Optional[ExamAnalyzer] = None,
    report_generator: Optional[ReportGenerator] = None,
    calendar: Optional[CalendarSync] = None,
) -> Services:
    """Wire the real collaborators; any of them can be replaced by the caller."""

    engine = None
    if session_factory is None:
        engine = create_db_engine(settings)
        session_factory = make_session_factory(engine)
    return Services(
        settings=settings,
        session_factory=session_factory,
        storage=LocalFileStorage(settings.upload_dir),
        jobs=JobRunner(session_factory),
        transcriber=transcriber
        or AudioTranscriber.from_api_key(
            settings.openai_api_key,
            model=settings.whisper_model,
            language=settings.transcription_language,
        ),
        exam_analyzer=exam_analyzer
        or ExamAnalyzer.from_api_key(
            settings.anthropic_api_key,
            model=settings.exam_analysis_model,
            log_dir=settings.anthropic_log_dir,
        ),
        report_generator=report_generator
        or ReportGenerator.from_api_key(settings.anthropic_api_key, model=settings.report_model),
        calendar=calendar or CalendarSync.from_settings(settings),
        engine=engine,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


__all__ = ["Services", "build_services", "get_services"]
