"""Engine and session helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterator

import sqlalchemy as sa
import structlog
from fastapi import Request
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from clinicdesk.config import Settings
from clinicdesk.db.models import Base


logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], Session]


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_db_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine described by ``settings``."""

    engine = sa.create_engine(settings.database_url, future=True, **settings.engine_options())
    if settings.is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def init_schema(engine: Engine) -> None:
    """Create any missing tables."""

    Base.metadata.create_all(engine)
    logger.info("database.schema_ready", url=engine.url.render_as_string(hide_password=True))


@contextmanager
def session_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session bound to the app's factory."""

    factory: SessionFactory = request.app.state.services.session_factory
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "SessionFactory",
    "create_db_engine",
    "get_session",
    "init_schema",
    "make_session_factory",
    "session_scope",
]
