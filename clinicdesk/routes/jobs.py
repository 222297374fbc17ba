"""Generic status reads for background jobs."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from clinicdesk.db.session import get_session
from clinicdesk.jobs import binding_for, describe
from clinicdesk.routes.deps import get_or_404
from clinicdesk.schemas import JobStatusOut


router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.get("/{kind}/{job_id}", response_model=JobStatusOut)
def job_status(kind: str, job_id: str, session: Session = Depends(get_session)):
    binding = binding_for(kind)
    record = get_or_404(session, binding.model, job_id, binding.label)
    payload = describe(record, kind)
    if payload.get("result") is not None:
        payload["result"] = {to_camel(key): value for key, value in payload["result"].items()}
    return JobStatusOut.model_validate(payload)


__all__ = ["router"]
