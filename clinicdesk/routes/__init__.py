"""HTTP routers."""

from clinicdesk.routes import (
    appointments,
    calendar,
    consultations,
    dashboard,
    exams,
    jobs,
    patients,
    reports,
)

ROUTERS = (
    patients.router,
    consultations.router,
    exams.router,
    reports.router,
    appointments.router,
    calendar.router,
    jobs.router,
    dashboard.router,
)

__all__ = ["ROUTERS"]
