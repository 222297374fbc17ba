"""Detached background jobs for transcription, exam analysis and reports.

A job is a persisted row (``ConsultationAudio``, ``Exam`` or ``Report``)
with a status column, a set of result columns and an error column. HTTP
triggers put the row into ``PROCESSING`` and hand a ``work`` coroutine
factory to :class:`JobRunner`, which runs it exactly once on the event loop
and writes either the full result set or the error back to the same row.

Every terminal write touches the status, every result column and the error
column together. Two overlapping runs for the same row (a reprocess racing
an in-flight attempt) therefore leave the row exactly as the last writer
left it and never mix fields from both attempts.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Tuple

import structlog

from clinicdesk.db.models import ConsultationAudio, Exam, Report
from clinicdesk.db.session import SessionFactory, session_scope
from clinicdesk.errors import ClinicDeskError, NotFoundError
from clinicdesk.observability import JOB_TRANSITIONS


logger = structlog.get_logger(__name__)


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobKind(str, enum.Enum):
    TRANSCRIPTION = "transcription"
    EXAM_ANALYSIS = "exam_analysis"
    REPORT = "report"


@dataclass(frozen=True)
class JobBinding:
    """Column layout of the row backing one job kind."""

    model: type
    label: str
    status_attr: str
    error_attr: str
    result_attrs: Tuple[str, ...]


JOB_BINDINGS: Dict[JobKind, JobBinding] = {
    JobKind.TRANSCRIPTION: JobBinding(
        model=ConsultationAudio,
        label="Audio",
        status_attr="transcription_status",
        error_attr="transcription_error",
        result_attrs=("transcription", "duration", "language", "segments"),
    ),
    JobKind.EXAM_ANALYSIS: JobBinding(
        model=Exam,
        label="Exam",
        status_attr="processing_status",
        error_attr="processing_error",
        result_attrs=(
            "category",
            "sub_category",
            "exam_type",
            "exam_date",
            "extracted_data",
            "key_findings",
            "abnormal_values",
            "recommendations",
            "ai_summary",
            "ai_model",
            "confidence",
        ),
    ),
    JobKind.REPORT: JobBinding(
        model=Report,
        label="Report",
        status_attr="processing_status",
        error_attr="processing_error",
        result_attrs=(
            "full_report_content",
            "summary",
            "main_findings",
            "recommendations",
            "red_blood_cells",
            "white_blood_cells",
            "platelets",
            "plasma",
            "supplementation",
            "phytotherapy",
            "nutritional_guidance",
            "ai_model",
        ),
    ),
}

JobWork = Callable[[], Awaitable[Mapping[str, Any]]]


def binding_for(kind: JobKind | str) -> JobBinding:
    try:
        return JOB_BINDINGS[JobKind(kind)]
    except ValueError as exc:
        raise NotFoundError(f"Unknown job kind: {kind}") from exc


def reset_for_processing(record: Any, kind: JobKind) -> None:
    """Clear result and error columns and mark ``record`` as PROCESSING."""

    binding = binding_for(kind)
    for attr in binding.result_attrs:
        setattr(record, attr, None)
    setattr(record, binding.error_attr, None)
    setattr(record, binding.status_attr, JobStatus.PROCESSING.value)


def _apply_success(record: Any, binding: JobBinding, values: Mapping[str, Any]) -> None:
    unknown = set(values) - set(binding.result_attrs)
    if unknown:
        raise ValueError(f"Unexpected result fields for {binding.label}: {sorted(unknown)}")
    for attr in binding.result_attrs:
        setattr(record, attr, values.get(attr))
    setattr(record, binding.error_attr, None)
    setattr(record, binding.status_attr, JobStatus.COMPLETED.value)


def _apply_failure(record: Any, binding: JobBinding, message: str) -> None:
    for attr in binding.result_attrs:
        setattr(record, attr, None)
    setattr(record, binding.error_attr, message)
    setattr(record, binding.status_attr, JobStatus.FAILED.value)


def error_message(exc: BaseException) -> str:
    if isinstance(exc, ClinicDeskError):
        return exc.message
    text = str(exc).strip()
    return text or exc.__class__.__name__


def describe(record: Any, kind: JobKind) -> Dict[str, Any]:
    """Return the polling payload for ``record``."""

    binding = binding_for(kind)
    status = getattr(record, binding.status_attr)
    payload: Dict[str, Any] = {"id": record.id, "kind": JobKind(kind).value, "status": status}
    if status == JobStatus.COMPLETED.value:
        payload["result"] = {attr: getattr(record, attr) for attr in binding.result_attrs}
    elif status == JobStatus.FAILED.value:
        payload["error"] = getattr(record, binding.error_attr)
    payload["updatedAt"] = record.updated_at
    return payload


class JobRunner:
    """Launch and track detached job coroutines."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def launch(self, kind: JobKind, job_id: str, work: JobWork) -> asyncio.Task:
        """Start ``work`` for ``job_id`` without waiting for it."""

        task = asyncio.create_task(self.run(kind, job_id, work), name=f"{kind.value}:{job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        logger.info("job.launched", kind=kind.value, job_id=job_id)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("job.cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job.unhandled_exception", task=task.get_name(), error=str(exc), exc_info=exc)

    async def run(self, kind: JobKind, job_id: str, work: JobWork) -> Optional[JobStatus]:
        """Run ``work`` once and persist the terminal state.

        Returns the status written, or ``None`` when the row disappeared
        while the collaborator was running.
        """

        log = logger.bind(kind=kind.value, job_id=job_id)
        log.info("job.started")
        try:
            values = await work()
        except Exception as exc:
            message = error_message(exc)
            log.warning("job.collaborator_failed", error=message, error_type=exc.__class__.__name__)
            return self._write_terminal(kind, job_id, JobStatus.FAILED, error=message)
        return self._write_terminal(kind, job_id, JobStatus.COMPLETED, values=values)

    def _write_terminal(
        self,
        kind: JobKind,
        job_id: str,
        status: JobStatus,
        *,
        values: Optional[Mapping[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[JobStatus]:
        binding = binding_for(kind)
        log = logger.bind(kind=kind.value, job_id=job_id)
        try:
            with session_scope(self._session_factory) as session:
                record = session.get(binding.model, job_id)
                if record is None:
                    log.warning("job.record_missing", status=status.value)
                    return None
                if status is JobStatus.COMPLETED:
                    _apply_success(record, binding, values or {})
                else:
                    _apply_failure(record, binding, error or "Unknown error")
        except Exception as exc:
            if status is JobStatus.COMPLETED:
                log.exception("job.result_write_failed", error=str(exc))
                return self._write_terminal(
                    kind, job_id, JobStatus.FAILED, error=f"Failed to store result: {error_message(exc)}"
                )
            log.exception("job.error_write_failed", error=str(exc))
            raise
        JOB_TRANSITIONS.labels(kind=kind.value, status=status.value).inc()
        log.info("job.finished", status=status.value)
        return status

    async def wait_idle(self) -> None:
        """Wait until every launched job has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def drain(self) -> None:
        if self._tasks:
            logger.info("job.draining", in_flight=len(self._tasks))
        await self.wait_idle()


__all__ = [
    "JOB_BINDINGS",
    "JobBinding",
    "JobKind",
    "JobRunner",
    "JobStatus",
    "JobWork",
    "binding_for",
    "describe",
    "error_message",
    "reset_for_processing",
]
