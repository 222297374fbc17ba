"""AI-assisted clinical report generation."""

from __future__ import annotations

import asyncio
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
import structlog
from anthropic import Anthropic
from sqlalchemy.orm import Session

from clinicdesk.db.models import Consultation, Exam, Patient
from clinicdesk.db.session import SessionFactory, session_scope
from clinicdesk.errors import CollaboratorError, NotFoundError
from clinicdesk.exam_analysis import OTHER_CATEGORY, response_text
from clinicdesk.jobs import JobStatus
from clinicdesk.time_utils import utc_now


logger = structlog.get_logger(__name__)

MAX_CONTEXT_EXAMS = 10

_SECTION_ALIASES = {
    "executive summary": "summary",
    "resumo executivo": "summary",
    "main findings": "findings",
    "achados principais": "findings",
    "detailed analysis": "analysis",
    "analise detalhada": "analysis",
    "clinical correlation": "correlation",
    "correlacao clinica": "correlation",
    "therapeutic guidance": "therapy",
    "orientacoes terapeuticas": "therapy",
    "follow-up": "follow_up",
    "follow up": "follow_up",
    "acompanhamento": "follow_up",
}

_MICROSCOPY_FIELDS = {
    "red blood cells": "red_blood_cells",
    "hemacias": "red_blood_cells",
    "white blood cells": "white_blood_cells",
    "leucocitos": "white_blood_cells",
    "platelets": "platelets",
    "plaquetas": "platelets",
    "plasma": "plasma",
}

_THERAPY_FIELDS = {
    "supplementation": "supplementation",
    "suplementacao": "supplementation",
    "phytotherapy": "phytotherapy",
    "fitoterapia": "phytotherapy",
    "nutritional guidance": "nutritional_guidance",
    "orientacoes nutricionais": "nutritional_guidance",
}

_SECTION_RE = re.compile(r"^###\s+(?!#)(.+?)\s*$")
_SUBSECTION_RE = re.compile(r"^####\s+(.+?)\s*$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.*\S)\s*$")
_LABELLED_BULLET_RE = re.compile(r"^\s*[-*]\s+\*\*(.+?)\*\*\s*:?\s*(.*)$")


def _fold(text: str) -> str:
    """Lower-case ``text`` and strip accents and trailing colons."""

    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip().rstrip(":").strip().lower()


@dataclass
class ExamDigest:
    category: str
    exam_date: Optional[date] = None
    summary: Optional[str] = None
    key_findings: List[Dict[str, Any]] = field(default_factory=list)
    abnormal_values: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ReportContext:
    full_name: str
    phone: str
    age: Optional[int] = None
    blood_type: Optional[str] = None
    email: Optional[str] = None
    allergies: Optional[str] = None
    current_medications: Optional[str] = None
    medical_history: Optional[str] = None
    consultation_date: Optional[datetime] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    transcription: Optional[str] = None
    exams: List[ExamDigest] = field(default_factory=list)


@dataclass
class ParsedReport:
    full_report_content: str
    summary: str
    main_findings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    red_blood_cells: Optional[str] = None
    white_blood_cells: Optional[str] = None
    platelets: Optional[str] = None
    plasma: Optional[str] = None
    supplementation: Optional[str] = None
    phytotherapy: Optional[str] = None
    nutritional_guidance: Optional[str] = None

    def record_fields(self, model: Optional[str]) -> Dict[str, Any]:
        return {
            "full_report_content": self.full_report_content,
            "summary": self.summary,
            "main_findings": self.main_findings,
            "recommendations": self.recommendations,
            "red_blood_cells": self.red_blood_cells,
            "white_blood_cells": self.white_blood_cells,
            "platelets": self.platelets,
            "plasma": self.plasma,
            "supplementation": self.supplementation,
            "phytotherapy": self.phytotherapy,
            "nutritional_guidance": self.nutritional_guidance,
            "ai_model": model,
        }


def _age(birth_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if birth_date is None:
        return None
    today = today or utc_now().date()
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def load_report_context(
    session: Session, patient_id: str, consultation_id: Optional[str] = None
) -> ReportContext:
    """Collect the patient, consultation and exam data a report is built from."""

    patient = session.get(Patient, patient_id)
    if patient is None:
        raise NotFoundError.for_entity("Patient", patient_id)

    if consultation_id:
        consultation = session.get(Consultation, consultation_id)
        if consultation is None or consultation.patient_id != patient_id:
            raise NotFoundError.for_entity("Consultation", consultation_id)
    else:
        consultation = session.execute(
            sa.select(Consultation)
            .where(Consultation.patient_id == patient_id)
            .order_by(Consultation.date.desc())
            .limit(1)
        ).scalar_one_or_none()

    exams = session.execute(
        sa.select(Exam)
        .where(Exam.patient_id == patient_id, Exam.processing_status == JobStatus.COMPLETED.value)
        .order_by(Exam.exam_date.desc().nulls_last(), Exam.created_at.desc())
        .limit(MAX_CONTEXT_EXAMS)
    ).scalars()

    return ReportContext(
        full_name=patient.full_name,
        phone=patient.phone,
        age=_age(patient.birth_date),
        blood_type=patient.blood_type,
        email=patient.email,
        allergies=patient.allergies,
        current_medications=patient.current_medications,
        medical_history=patient.medical_history,
        consultation_date=consultation.date if consultation else None,
        chief_complaint=consultation.chief_complaint if consultation else None,
        symptoms=consultation.symptoms if consultation else None,
        transcription=consultation.transcription if consultation else None,
        exams=[
            ExamDigest(
                category=exam.category or OTHER_CATEGORY,
                exam_date=exam.exam_date,
                summary=exam.ai_summary,
                key_findings=list(exam.key_findings or []),
                abnormal_values=list(exam.abnormal_values or []),
            )
            for exam in exams
        ],
    )


def _format_finding(entry: Dict[str, Any]) -> str:
    text = str(entry.get("parameter") or entry.get("description") or "")
    if entry.get("value"):
        text += f": {entry['value']}"
    if entry.get("reference"):
        text += f" (reference {entry['reference']})"
    if entry.get("status"):
        text += f" [{entry['status']}]"
    return f"- {text}"


def build_report_prompt(context: ReportContext) -> str:
    lines = [
        "You are an assistant specialised in live blood analysis and integrative medicine.",
        "",
        "Write a complete professional report for the attending clinician based on the information below.",
        "",
        "## PATIENT INFORMATION",
        f"- Name: {context.full_name}",
        f"- Age: {f'{context.age} years' if context.age is not None else 'Not informed'}",
        f"- Blood type: {context.blood_type or 'Not informed'}",
        f"- Contact: {context.phone}{f' | {context.email}' if context.email else ''}",
    ]
    for title, value in (
        ("Allergies", context.allergies),
        ("Current Medications", context.current_medications),
        ("Medical History", context.medical_history),
    ):
        if value:
            lines.extend(["", f"### {title}", value])

    if context.consultation_date is not None:
        lines.extend(["", f"## CONSULTATION ({context.consultation_date:%d/%m/%Y})"])
        for title, value in (
            ("Chief Complaint", context.chief_complaint),
            ("Symptoms", context.symptoms),
            ("Consultation Transcript", context.transcription),
        ):
            if value:
                lines.extend(["", f"### {title}", value])

    if context.exams:
        lines.extend(["", "## ANALYSED EXAMS"])
        for index, exam in enumerate(context.exams, start=1):
            lines.extend(["", f"### Exam {index}: {exam.category}"])
            if exam.exam_date:
                lines.append(f"Date: {exam.exam_date:%d/%m/%Y}")
            if exam.summary:
                lines.extend(["", exam.summary])
            if exam.key_findings:
                lines.extend(["", "**Key findings:**"])
                lines.extend(_format_finding(entry) for entry in exam.key_findings)
            if exam.abnormal_values:
                lines.extend(["", "**Abnormal values:**"])
                lines.extend(_format_finding(entry) for entry in exam.abnormal_values)

    lines.extend(["", REPORT_INSTRUCTIONS])
    return "\n".join(lines)


REPORT_INSTRUCTIONS = """## REPORT INSTRUCTIONS

Write the report in Markdown following this EXACT structure:

### EXECUTIVE SUMMARY
[Overall picture of the patient's health in 2-3 paragraphs]

### MAIN FINDINGS
- [Finding 1]
- [Finding 2]

### DETAILED ANALYSIS

#### Microscopy - Bright Field
- **Red blood cells:** [description]
- **White blood cells:** [description]
- **Platelets:** [description]
- **Plasma:** [description]

#### Microscopy - Dark Field
- **Microbial activity:** [description]
- **Crystallisations:** [description]
- **Cellular debris:** [description]

### CLINICAL CORRELATION
[Integrative analysis connecting findings with symptoms and history]

### THERAPEUTIC GUIDANCE

#### Supplementation
- [Supplement] - [dosage] - [rationale]

#### Phytotherapy
- [Herbal remedy] - [usage] - [benefits]

#### Nutritional Guidance
- [Guidance]

#### Lifestyle
- [Recommendation]

### FOLLOW-UP
- Suggested return: [period]
- Complementary exams: [if needed]

Reply ONLY with the formatted report, without any text before or after it."""


def _split_sections(text: str) -> Dict[str, List[str]]:
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            current = _SECTION_ALIASES.get(_fold(match.group(1)), _fold(match.group(1)))
            sections.setdefault(current, [])
            continue
        if current is not None:
            sections[current].append(line)
    return sections


def _bullets(lines: List[str]) -> List[str]:
    return [match.group(1) for match in map(_BULLET_RE.match, lines) if match]


def _subsections(lines: List[str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for line in lines:
        match = _SUBSECTION_RE.match(line)
        if match:
            current = _fold(match.group(1))
            grouped.setdefault(current, [])
        elif current is not None:
            grouped[current].append(line)
    return grouped


def _first_paragraph(text: str) -> str:
    for block in re.split(r"\n\s*\n", text):
        block = block.strip()
        if block and not block.startswith("#"):
            return block
    return text.strip()


def parse_report_response(text: str) -> ParsedReport:
    """Split a Markdown report into the structured report columns."""

    sections = _split_sections(text)
    summary = "\n".join(sections.get("summary", [])).strip() or _first_paragraph(text)
    parsed = ParsedReport(
        full_report_content=text,
        summary=summary,
        main_findings=_bullets(sections.get("findings", [])),
        recommendations=_bullets(sections.get("therapy", [])),
    )

    for line in sections.get("analysis", []):
        match = _LABELLED_BULLET_RE.match(line)
        if not match:
            continue
        attr = _MICROSCOPY_FIELDS.get(_fold(match.group(1)))
        if attr and match.group(2).strip():
            setattr(parsed, attr, match.group(2).strip())

    for title, lines in _subsections(sections.get("therapy", [])).items():
        attr = _THERAPY_FIELDS.get(title)
        items = _bullets(lines)
        if attr and items:
            setattr(parsed, attr, "\n".join(items))

    return parsed


class ReportGenerator:
    """Generate report text with an Anthropic text model."""

    def __init__(self, client: Any, *, model: str, max_tokens: int = 4096, temperature: float = 0.3) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @classmethod
    def from_api_key(cls, api_key: Optional[str], **kwargs: Any) -> "ReportGenerator":
        return cls(Anthropic(api_key=api_key) if api_key else None, **kwargs)

    @property
    def model(self) -> str:
        return self._model

    def generate(self, context: ReportContext) -> ParsedReport:
        if self._client is None:
            raise CollaboratorError("Report generation failed: ANTHROPIC_API_KEY is not configured")
        prompt = build_report_prompt(context)
        try:
            message = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            logger.warning("report_generation.request_failed", error=str(exc))
            raise CollaboratorError(f"Report generation failed: {exc}") from exc

        text = response_text(message).strip()
        if not text:
            raise CollaboratorError("Report generation failed: empty response")
        parsed = parse_report_response(text)
        logger.info(
            "report_generation.completed",
            exams=len(context.exams),
            findings=len(parsed.main_findings),
            recommendations=len(parsed.recommendations),
        )
        return parsed


async def report_job(
    generator: ReportGenerator,
    session_factory: SessionFactory,
    patient_id: str,
    consultation_id: Optional[str],
) -> Dict[str, Any]:
    with session_scope(session_factory) as session:
        context = load_report_context(session, patient_id, consultation_id)
    parsed = await asyncio.to_thread(generator.generate, context)
    return parsed.record_fields(generator.model)


__all__ = [
    "ExamDigest",
    "ParsedReport",
    "ReportContext",
    "ReportGenerator",
    "build_report_prompt",
    "load_report_context",
    "parse_report_response",
    "report_job",
]
