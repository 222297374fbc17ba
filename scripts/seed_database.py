#!/usr/bin/env python3
"""Seed the ClinicDesk database with an administrator and sample patients."""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import sqlalchemy as sa  # noqa: E402

from clinicdesk.config import get_settings  # noqa: E402
from clinicdesk.db.models import (  # noqa: E402
    Appointment,
    Consultation,
    ConsultationAudio,
    ConsultationStatus,
    Exam,
    Patient,
    Report,
    User,
    UserRole,
)
from clinicdesk.db.session import create_db_engine, init_schema, make_session_factory, session_scope  # noqa: E402
from clinicdesk.time_utils import utc_now  # noqa: E402


SAMPLE_PATIENTS = (
    {
        "full_name": "Ana Paula Costa Silva",
        "email": "anapaula@example.com",
        "phone": "(61) 98765-4321",
        "birth_date": date(1982, 3, 15),
        "cpf": "123.456.789-00",
        "city": "Brasília",
        "state": "DF",
        "blood_type": "O+",
        "current_medications": "Omeprazol 20mg",
        "medical_history": "Gastritis for 3 years",
    },
    {
        "full_name": "Carlos Eduardo Santos",
        "email": "carlos@example.com",
        "phone": "(61) 99876-5432",
        "birth_date": date(1975, 7, 22),
        "cpf": "987.654.321-00",
        "city": "Brasília",
        "state": "DF",
        "blood_type": "A+",
        "allergies": "Dipyrone",
    },
    {
        "full_name": "Maria Oliveira",
        "email": "maria@example.com",
        "phone": "(61) 97654-3210",
        "birth_date": date(1990, 11, 8),
        "city": "São Paulo",
        "state": "SP",
        "blood_type": "B+",
    },
)

# Child tables first so the deletes do not depend on FK cascades.
_RESET_ORDER = (Report, Exam, ConsultationAudio, Consultation, Appointment, Patient, User)


def reset_data(session) -> None:
    for model in _RESET_ORDER:
        session.execute(sa.delete(model))


def seed(session, admin_email: str, admin_name: str) -> List[str]:
    """Create the admin and sample data; returns the names of created rows."""

    created: List[str] = []
    admin = session.execute(sa.select(User).where(User.email == admin_email)).scalar_one_or_none()
    if admin is None:
        admin = User(email=admin_email, name=admin_name, role=UserRole.ADMIN.value)
        session.add(admin)
        session.flush()
        created.append(f"user {admin_email}")

    for sample in SAMPLE_PATIENTS:
        exists = session.execute(
            sa.select(Patient.id).where(Patient.full_name == sample["full_name"])
        ).first()
        if exists is not None:
            continue
        patient = Patient(**sample, consent_given=True, consent_date=utc_now(), consent_version="1.0")
        session.add(patient)
        session.flush()
        created.append(f"patient {patient.full_name}")
        if sample is SAMPLE_PATIENTS[0]:
            session.add(
                Consultation(
                    patient_id=patient.id,
                    conducted_by=admin.id,
                    status=ConsultationStatus.COMPLETED.value,
                    chief_complaint="Constant tiredness for 6 months",
                    symptoms="Chronic fatigue, insomnia, joint pain in the hands, constipation",
                    medical_history=sample.get("medical_history"),
                    current_medications=sample.get("current_medications"),
                )
            )
            created.append("sample consultation")
    return created


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        description="Create the ClinicDesk tables and seed an administrator with sample patients.",
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        help="SQLAlchemy database URL (default: %(default)s)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete every existing row before seeding.",
    )
    parser.add_argument("--admin-email", default=settings.default_user_email)
    parser.add_argument("--admin-name", default=settings.default_user_name)
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    settings = get_settings()
    if args.database_url.startswith("sqlite:///"):
        Path(args.database_url[len("sqlite:///"):]).expanduser().parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(replace(settings, database_url=args.database_url))
    try:
        init_schema(engine)
        with session_scope(make_session_factory(engine)) as session:
            if args.reset:
                reset_data(session)
            created = seed(session, args.admin_email, args.admin_name)
    finally:
        engine.dispose()

    print(f"Database ready at {args.database_url}")
    if args.reset:
        print("Existing rows were removed.")
    if created:
        print("Created:")
        for item in created:
            print(f"  - {item}")
    else:
        print("Sample data already present; nothing was created.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
