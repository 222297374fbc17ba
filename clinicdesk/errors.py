"""Domain exceptions shared by services and HTTP handlers."""

from __future__ import annotations

from typing import Any, Optional


class ClinicDeskError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ClinicDeskError):
    """Caller supplied missing or malformed input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ClinicDeskError):
    """A referenced entity does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity: str, identifier: Any) -> "NotFoundError":
        return cls(f"{entity} not found", details={"id": identifier})


class CollaboratorError(ClinicDeskError):
    """An external API (speech-to-text, LLM, calendar) failed."""

    status_code = 502
    code = "COLLABORATOR_ERROR"


def require(value: Any, field: str) -> Any:
    """Return ``value`` or raise :class:`ValidationError` when it is blank."""

    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required", details={"field": field})
    return value


__all__ = [
    "ClinicDeskError",
    "CollaboratorError",
    "NotFoundError",
    "ValidationError",
    "require",
]
