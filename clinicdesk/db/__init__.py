"""Persistence layer for ClinicDesk."""

from clinicdesk.db import models
from clinicdesk.db.session import (
    SessionFactory,
    create_db_engine,
    get_session,
    init_schema,
    make_session_factory,
    session_scope,
)

__all__ = [
    "SessionFactory",
    "create_db_engine",
    "get_session",
    "init_schema",
    "make_session_factory",
    "models",
    "session_scope",
]
