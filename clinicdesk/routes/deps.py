"""Lookup helpers shared by the routers."""

from __future__ import annotations

from typing import Optional, Type, TypeVar

import sqlalchemy as sa
import structlog
from fastapi import UploadFile
from sqlalchemy.orm import Session

from clinicdesk.config import Settings
from clinicdesk.db.models import User, UserRole
from clinicdesk.errors import NotFoundError, ValidationError
from clinicdesk.file_storage import validate_file_size, validate_file_type


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")


def get_or_404(session: Session, model: Type[ModelT], identifier: str, label: str) -> ModelT:
    instance = session.get(model, identifier)
    if instance is None:
        raise NotFoundError.for_entity(label, identifier)
    return instance


def resolve_user(session: Session, settings: Settings, user_id: Optional[str]) -> User:
    """Return ``user_id`` or, when omitted, the clinic's default user.

    The default user is created on first use so a fresh install can accept
    consultations and appointments before anyone is provisioned.
    """

    if user_id:
        return get_or_404(session, User, user_id, "User")
    user = session.execute(
        sa.select(User).where(User.email == settings.default_user_email)
    ).scalar_one_or_none()
    if user is None:
        user = session.execute(sa.select(User).order_by(User.created_at).limit(1)).scalar_one_or_none()
    if user is None:
        user = User(
            email=settings.default_user_email,
            name=settings.default_user_name,
            role=UserRole.ADMIN.value,
        )
        session.add(user)
        session.flush()
        logger.info("users.default_created", user_id=user.id)
    return user


async def read_upload(
    upload: Optional[UploadFile], *, field: str, allowed_types: tuple, max_size: int
) -> bytes:
    """Validate an uploaded file and return its bytes."""

    if upload is None or not upload.filename:
        raise ValidationError(f"{field} is required", details={"field": field})
    if not validate_file_type(upload.content_type, allowed_types):
        raise ValidationError(
            f"Unsupported file type: {upload.content_type}",
            details={"field": field, "allowed": list(allowed_types)},
        )
    data = await upload.read()
    if not validate_file_size(len(data), max_size):
        raise ValidationError(
            "File is empty or exceeds the maximum size",
            details={"field": field, "maxSize": max_size},
        )
    return data


__all__ = ["get_or_404", "read_upload", "resolve_user"]
