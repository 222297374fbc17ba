"""Dashboard counters."""

from __future__ import annotations

import sqlalchemy as sa
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinicdesk.db.models import Consultation, Exam, Patient, Report
from clinicdesk.db.session import get_session
from clinicdesk.jobs import JobStatus
from clinicdesk.schemas import DashboardStats
from clinicdesk.time_utils import start_of_month, utc_now


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def _count(session: Session, model, *criteria) -> int:
    return session.execute(sa.select(sa.func.count()).select_from(model).where(*criteria)).scalar_one()


@router.get("/stats", response_model=DashboardStats)
def dashboard_stats(session: Session = Depends(get_session)):
    month_start = start_of_month(utc_now())
    return DashboardStats(
        total_patients=_count(session, Patient),
        consultations_this_month=_count(session, Consultation, Consultation.date >= month_start),
        reports_generated=_count(session, Report, Report.processing_status == JobStatus.COMPLETED.value),
        exams_analyzed=_count(session, Exam, Exam.processing_status == JobStatus.COMPLETED.value),
    )


__all__ = ["router"]
