"""Lab exam analysis with Anthropic's document and vision models.

The model is asked for JSON but answers in whatever shape it prefers:
English keys, the Portuguese keys used on Brazilian lab reports, prose
with an embedded object, or prose only. :func:`normalize_analysis` maps
all of these onto :class:`ExamAnalysis` and never raises; unusable
responses degrade to an ``"Other"`` result carrying the raw text.
"""

from __future__ import annotations

import asyncio
import base64
import json
import math
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog
from anthropic import Anthropic

from clinicdesk.errors import CollaboratorError
from clinicdesk.time_utils import parse_date, utc_now


logger = structlog.get_logger(__name__)

EXAM_CATEGORIES: Dict[str, str] = {
    "CBC": "Complete Blood Count",
    "LIPIDS": "Lipid Panel",
    "GLUCOSE": "Glucose",
    "HORMONES": "Hormones",
    "THYROID": "Thyroid",
    "LIVER": "Liver Function",
    "KIDNEY": "Kidney Function",
    "VITAMINS": "Vitamins and Minerals",
    "URINE": "Urinalysis",
    "STOOL": "Stool Test",
    "IMAGING": "Imaging",
    "OTHER": "Other",
}

OTHER_CATEGORY = EXAM_CATEGORIES["OTHER"]
NOT_IDENTIFIED = "Not identified"
ANALYSIS_NOT_AVAILABLE = "Analysis not available"
FALLBACK_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.9
CRITICAL_DEVIATION = 0.3

ALLOWED_EXAM_TYPES = ("application/pdf", "image/*")

_IMAGE_MEDIA_TYPES = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

EXAM_ANALYSIS_PROMPT = f"""You are a specialist in laboratory exam analysis assisting a clinical pharmacist.

Analyse the attached exam and return a single JSON object with these keys:

- "category": one of {", ".join(EXAM_CATEGORIES.values())}
- "subCategory": the specific panel or sub-type
- "examType": the exam name as printed on the report
- "examDate": collection date in YYYY-MM-DD, if visible
- "extractedData": every parameter with its value, unit and reference range
- "keyFindings": list of {{"parameter", "value", "reference", "status", "description"}}
- "abnormalValues": list of {{"parameter", "value", "reference", "status"}} where status is HIGH, LOW or CRITICAL
- "summary": a short clinical summary of the exam
- "recommendations": list of follow-up suggestions
- "confidence": a number between 0 and 1

Be precise with numbers and units, flag every value outside its reference range
and write "{NOT_IDENTIFIED}" for anything you cannot read."""

SUMMARY_NOT_AVAILABLE = "Consolidated summary not available."

EXAMS_SUMMARY_PROMPT = """Based on these {count} laboratory exams, write a consolidated summary:

{exams}

The clinical summary must cover:
1. Overview of the exams performed
2. Main abnormalities found
3. Relevant patterns or correlations
4. General recommendations

Use technical but accessible language."""


# ---------------------------------------------------------------------------
# Helpers shared by the extractor tables
# ---------------------------------------------------------------------------

Extractor = Callable[[Mapping[str, Any]], Any]
NamedExtractor = Tuple[str, Extractor]


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def _ensure_list(value: Any) -> List[Any]:
    if not _is_present(value) and value != 0:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _path(*keys: str) -> Extractor:
    def extract(payload: Mapping[str, Any]) -> Any:
        node: Any = payload
        for key in keys:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        return node

    return extract


def _text(extractor: Extractor) -> Extractor:
    def extract(payload: Mapping[str, Any]) -> Optional[str]:
        value = extractor(payload)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    return extract


def _joined(extractor: Extractor) -> Extractor:
    """Accept either a string or a list of strings and return one string."""

    def extract(payload: Mapping[str, Any]) -> Optional[str]:
        value = extractor(payload)
        if isinstance(value, str):
            return value.strip() or None
        if isinstance(value, (list, tuple)):
            parts = [str(part).strip() for part in value if isinstance(part, (str, int, float)) and str(part).strip()]
            return " ".join(parts) or None
        return None

    return extract


def first_present(payload: Mapping[str, Any], extractors: Sequence[NamedExtractor]) -> Any:
    """Return the first non-empty value produced by ``extractors``."""

    for _name, extractor in extractors:
        value = extractor(payload)
        if _is_present(value):
            return value
    return None


def _item_field(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if _is_present(value) or value == 0:
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _compact(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in entry.items() if value is not None}


# ---------------------------------------------------------------------------
# Reference ranges
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")
_RANGE_RE = re.compile(
    r"(-?\d+(?:[.,]\d+)?)\s*(?:-|–|a|to|até)\s*(-?\d+(?:[.,]\d+)?)",
    re.IGNORECASE,
)


def _parse_number(value: Any) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str):
        return None
    match = _NUMBER_RE.search(value)
    if not match:
        return None
    return float(match.group(0).replace(",", "."))


def parse_reference_range(reference: Any) -> Optional[Tuple[float, float]]:
    if not isinstance(reference, str):
        return None
    match = _RANGE_RE.search(reference)
    if not match:
        return None
    low, high = (float(part.replace(",", ".")) for part in match.groups())
    if low > high:
        return None
    return low, high


def compare_with_reference(value: float, min_ref: float, max_ref: float) -> str:
    """Classify ``value`` against a reference interval.

    Values more than 30% beyond a limit are critical.
    """

    if value < min_ref:
        if min_ref <= 0:
            return "LOW"
        deviation = (min_ref - value) / min_ref
        return "CRITICAL_LOW" if deviation > CRITICAL_DEVIATION else "LOW"
    if value > max_ref:
        if max_ref <= 0:
            return "CRITICAL_HIGH"
        deviation = (value - max_ref) / max_ref
        return "CRITICAL_HIGH" if deviation > CRITICAL_DEVIATION else "HIGH"
    return "NORMAL"


def _derive_status(value: Any, reference: Any) -> Optional[str]:
    number = _parse_number(value)
    bounds = parse_reference_range(reference)
    if number is None or bounds is None:
        return None
    return compare_with_reference(number, *bounds)


def estimate_analysis_cost(input_tokens: int, output_tokens: int) -> float:
    """Approximate USD cost of one document analysis."""

    base_cost = 0.05
    input_cost = (input_tokens / 1_000_000) * 3
    output_cost = (output_tokens / 1_000_000) * 15
    return base_cost + input_cost + output_cost


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

_FENCED_RE = re.compile(r"```(?:json)?[ \t]*\n?([\s\S]*?)```", re.IGNORECASE)


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_payload(text: str) -> Optional[Dict[str, Any]]:
    """Return the JSON object embedded in ``text`` or ``None``.

    Fenced code blocks win; otherwise the first object in the prose is used.
    """

    for match in _FENCED_RE.finditer(text):
        parsed = _loads_object(match.group(1).strip())
        if parsed is not None:
            return parsed

    start = text.find("{")
    if start == -1:
        return None
    try:
        parsed, _end = json.JSONDecoder().raw_decode(text, start)
    except (ValueError, RecursionError):
        parsed = None
    if isinstance(parsed, dict):
        return parsed
    end = text.rfind("}")
    if end > start:
        return _loads_object(text[start : end + 1])
    return None


# ---------------------------------------------------------------------------
# Extractor tables
# ---------------------------------------------------------------------------

_CLASSIFICATION = ("categorizacao",)
_CLINICAL = ("resumo_clinico",)
_FINDINGS = ("achados_principais",)

CATEGORY_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("category", _text(_path("category"))),
    ("categorizacao.tipo_exame", _text(_path(*_CLASSIFICATION, "tipo_exame"))),
    ("categorizacao.area", _text(_path(*_CLASSIFICATION, "area"))),
    ("categorizacao.grupo", _text(_path(*_CLASSIFICATION, "grupo"))),
)

SUB_CATEGORY_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("subCategory", _text(_path("subCategory"))),
    ("sub_category", _text(_path("sub_category"))),
    ("categorizacao.subtipo", _text(_path(*_CLASSIFICATION, "subtipo"))),
    ("categorizacao.subcategoria", _text(_path(*_CLASSIFICATION, "subcategoria"))),
)

EXAM_TYPE_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("examType", _text(_path("examType"))),
    ("exam_type", _text(_path("exam_type"))),
    ("categorizacao.tipo_exame", _text(_path(*_CLASSIFICATION, "tipo_exame"))),
)

EXAM_DATE_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("examDate", _path("examDate")),
    ("exam_date", _path("exam_date")),
    ("categorizacao.data_coleta", _path(*_CLASSIFICATION, "data_coleta")),
    ("categorizacao.data", _path(*_CLASSIFICATION, "data")),
    ("categorizacao.data_liberacao", _path(*_CLASSIFICATION, "data_liberacao")),
)

CONFIDENCE_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("confidence", _path("confidence")),
    ("resumo_clinico.confianca", _path(*_CLINICAL, "confianca")),
)

EXTRACTED_DATA_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("extractedData", _path("extractedData")),
    ("extracted_data", _path("extracted_data")),
    ("dados_extraidos", _path("dados_extraidos")),
)

_SERIES_KEYS = (
    "serie_vermelha",
    "serie_branca",
    "serie_plaquetaria",
    "serie_plaq",
    "serie_vermelha_plaquetas",
)


def _section_interpretations(payload: Mapping[str, Any]) -> Optional[str]:
    parts: List[str] = []
    clinical = _path(*_CLINICAL)(payload)
    if isinstance(clinical, Mapping):
        status = clinical.get("status_geral")
        if isinstance(status, str) and status.strip():
            parts.append(status.strip())
        for key in _SERIES_KEYS:
            section = clinical.get(key)
            if isinstance(section, Mapping):
                text = section.get("interpretacao")
                if isinstance(text, str) and text.strip():
                    parts.append(text.strip())
    for section in _ensure_list(payload.get("sections")):
        if isinstance(section, Mapping):
            text = section.get("interpretation")
            if isinstance(text, str) and text.strip():
                parts.append(text.strip())
    return " ".join(parts) or None


def _abnormal_finding_descriptions(payload: Mapping[str, Any]) -> Optional[str]:
    described: List[str] = []
    findings = _path(*_FINDINGS)(payload)
    if isinstance(findings, Mapping):
        sources = (
            (findings.get("valores_alterados"), ("significado", "observacao", "status", "classificacao")),
            (findings.get("valores_limites"), ("observacao", "significado", "status")),
        )
        for items, text_keys in sources:
            for item in _ensure_list(items):
                if not isinstance(item, Mapping):
                    continue
                parameter = _item_field(item, "parametro", "nome")
                text = _item_field(item, *text_keys)
                if parameter and text:
                    described.append(f"{parameter}: {text}")
    for item in _ensure_list(payload.get("abnormalValues")):
        if isinstance(item, Mapping):
            parameter = _item_field(item, "parameter", "parametro")
            text = _item_field(item, "description", "descricao", "significado")
            if parameter and text:
                described.append(f"{parameter}: {text}")
    if not described:
        return None
    return "Main findings: " + "; ".join(described)


SUMMARY_EXTRACTORS: Tuple[NamedExtractor, ...] = (
    ("summary", _text(_path("summary"))),
    ("resumo_clinico.resumo_geral", _text(_path(*_CLINICAL, "resumo_geral"))),
    ("resumo_clinico.status_geral", _text(_path(*_CLINICAL, "status_geral"))),
    ("resumo_clinico.interpretacao_geral", _text(_path(*_CLINICAL, "interpretacao_geral"))),
    ("resumo_clinico.conclusao", _text(_path(*_CLINICAL, "conclusao"))),
    ("resumo_clinico.resumo", _text(_path(*_CLINICAL, "resumo"))),
    ("clinicalCorrelation", _joined(_path("clinicalCorrelation"))),
    ("resumo_clinico.interpretacao_achados", _joined(_path(*_CLINICAL, "interpretacao_achados"))),
    ("section_interpretations", _section_interpretations),
    ("abnormal_findings", _abnormal_finding_descriptions),
)


# ---------------------------------------------------------------------------
# List normalizers
# ---------------------------------------------------------------------------

def _finding(item: Any, *, default_status: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if isinstance(item, str):
        return {"description": item.strip()} if item.strip() else None
    if not isinstance(item, Mapping):
        return None
    entry = _compact(
        {
            "parameter": _as_text(_item_field(item, "parameter", "parametro", "nome", "achado")),
            "value": _as_text(_item_field(item, "value", "valor", "valor_atual")),
            "reference": _as_text(_item_field(item, "reference", "referencia", "intervalo_referencia")),
            "status": _as_text(_item_field(item, "status", "classificacao")) or default_status,
            "description": _as_text(
                _item_field(item, "description", "descricao", "significado", "observacao", "interpretacao")
            ),
        }
    )
    if "parameter" not in entry and "description" not in entry:
        return None
    return entry


def _key_findings(payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
    groups: List[Tuple[Iterable[Any], Optional[str]]] = [(_ensure_list(payload.get("keyFindings")), None)]
    findings = _path(*_FINDINGS)(payload)
    if isinstance(findings, Mapping):
        groups.extend(
            [
                (_ensure_list(findings.get("valores_alterados")), None),
                (_ensure_list(findings.get("valores_limites")), "Borderline"),
                (_ensure_list(findings.get("valores_normais_relevantes")), "Normal"),
            ]
        )
    groups.append((_ensure_list(_path(*_CLINICAL, "correlacoes_clinicas")(payload)), None))

    results: List[Dict[str, Any]] = []
    for items, default_status in groups:
        for item in items:
            entry = _finding(item, default_status=default_status)
            if entry is not None:
                results.append(entry)
    return results


def _abnormal_values(payload: Mapping[str, Any]) -> List[Dict[str, Any]]:
    items = payload.get("abnormalValues")
    if not isinstance(items, list):
        items = _ensure_list(_path(*_FINDINGS, "valores_alterados")(payload))

    results: List[Dict[str, Any]] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        value = _as_text(_item_field(item, "value", "valor", "valor_atual")) or ""
        reference = _as_text(_item_field(item, "reference", "referencia", "intervalo_referencia")) or ""
        status = _as_text(_item_field(item, "status", "classificacao"))
        if status is None:
            status = _derive_status(value, reference) or "ABNORMAL"
        results.append(
            _compact(
                {
                    "parameter": _as_text(_item_field(item, "parameter", "parametro", "nome", "campo"))
                    or "Unidentified parameter",
                    "value": value,
                    "reference": reference,
                    "status": status.upper(),
                    "severity": _as_text(_item_field(item, "severity", "gravidade")),
                }
            )
        )
    return results


def _recommendations(payload: Mapping[str, Any]) -> List[str]:
    source = payload.get("recommendations")
    if not _is_present(source):
        source = []
        for item in _ensure_list(_path(*_CLINICAL, "correlacoes_clinicas")(payload)):
            if isinstance(item, Mapping):
                source.extend(_ensure_list(item.get("recomendacoes")))
        source.extend(_ensure_list(_path(*_CLINICAL, "recomendacoes")(payload)))
    return [text for text in (_as_text(item) for item in _ensure_list(source)) if text]


def _extracted_data(payload: Mapping[str, Any]) -> Dict[str, Any]:
    value = first_present(payload, EXTRACTED_DATA_EXTRACTORS)
    if value is None:
        return dict(payload)
    if isinstance(value, str):
        parsed = _loads_object(value)
        return parsed if parsed is not None else {"raw": value}
    if isinstance(value, Mapping):
        return dict(value)
    return {"values": value}


def _confidence(payload: Mapping[str, Any]) -> float:
    raw = first_present(payload, CONFIDENCE_EXTRACTORS)
    if raw is None:
        return DEFAULT_CONFIDENCE
    number = _parse_number(raw)
    if number is None or not math.isfinite(number):
        return DEFAULT_CONFIDENCE
    if 1 < number <= 100:
        number = number / 100
    return min(max(number, 0.0), 1.0)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@dataclass
class ExamAnalysis:
    category: str
    exam_type: str
    summary: str
    confidence: float
    ai_model: Optional[str] = None
    sub_category: Optional[str] = None
    exam_date: Optional[date] = None
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    key_findings: List[Dict[str, Any]] = field(default_factory=list)
    abnormal_values: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def record_fields(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "sub_category": self.sub_category,
            "exam_type": self.exam_type,
            "exam_date": self.exam_date,
            "extracted_data": self.extracted_data,
            "key_findings": self.key_findings,
            "abnormal_values": self.abnormal_values,
            "recommendations": self.recommendations,
            "ai_summary": self.summary,
            "ai_model": self.ai_model,
            "confidence": self.confidence,
        }


def normalize_analysis(raw_text: str, *, model: Optional[str] = None) -> ExamAnalysis:
    """Convert a raw model response into an :class:`ExamAnalysis`."""

    text = (raw_text or "").strip()
    payload = extract_json_payload(text) if text else None
    if payload is None:
        logger.info("exam_analysis.unstructured_response", characters=len(text))
        return ExamAnalysis(
            category=OTHER_CATEGORY,
            exam_type=NOT_IDENTIFIED,
            summary=raw_text if text else ANALYSIS_NOT_AVAILABLE,
            confidence=FALLBACK_CONFIDENCE,
            ai_model=model,
            extracted_data={"rawText": text},
        )

    return ExamAnalysis(
        category=first_present(payload, CATEGORY_EXTRACTORS) or OTHER_CATEGORY,
        sub_category=first_present(payload, SUB_CATEGORY_EXTRACTORS),
        exam_type=first_present(payload, EXAM_TYPE_EXTRACTORS) or NOT_IDENTIFIED,
        exam_date=parse_date(first_present(payload, EXAM_DATE_EXTRACTORS)),
        extracted_data=_extracted_data(payload),
        key_findings=_key_findings(payload),
        abnormal_values=_abnormal_values(payload),
        summary=first_present(payload, SUMMARY_EXTRACTORS) or ANALYSIS_NOT_AVAILABLE,
        recommendations=_recommendations(payload),
        confidence=_confidence(payload),
        ai_model=model,
    )


def resolve_media_type(path: str | Path, file_type: str) -> str:
    if file_type == "pdf":
        return "application/pdf"
    return _IMAGE_MEDIA_TYPES.get(Path(path).suffix.lower(), "image/jpeg")


def _file_block(data: bytes, media_type: str, file_type: str) -> Dict[str, Any]:
    return {
        "type": "document" if file_type == "pdf" else "image",
        "source": {
            "type": "base64",
            "media_type": media_type,
            "data": base64.b64encode(data).decode("ascii"),
        },
    }


def _collaborator_error(exc: Exception) -> CollaboratorError:
    message = str(exc) or exc.__class__.__name__
    if "credit balance" in message.lower():
        return CollaboratorError(
            "Analysis failed: insufficient Anthropic credits. "
            "Top up the Anthropic account before trying again."
        )
    return CollaboratorError(f"Analysis failed: {message}")


def response_text(response: Any) -> str:
    """Return the text of the first text block in an Anthropic message."""

    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            return getattr(block, "text", "") or ""
    raise CollaboratorError("Unexpected response from the Anthropic API: no text content")


class ExamAnalyzer:
    """Send one exam file to Anthropic and normalize the answer."""

    def __init__(
        self,
        client: Any,
        *,
        model: str,
        log_dir: Optional[Path] = None,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> None:
        self._client = client
        self._model = model
        self._log_dir = Path(log_dir) if log_dir else None
        self._max_tokens = max_tokens
        self._temperature = temperature

    @classmethod
    def from_api_key(cls, api_key: Optional[str], **kwargs: Any) -> "ExamAnalyzer":
        return cls(Anthropic(api_key=api_key) if api_key else None, **kwargs)

    @property
    def model(self) -> str:
        return self._model

    def analyze(self, path: str | Path, file_type: str) -> ExamAnalysis:
        if self._client is None:
            raise CollaboratorError("Analysis failed: ANTHROPIC_API_KEY is not configured")
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise CollaboratorError(f"Analysis failed: cannot read exam file ({exc})") from exc

        block = _file_block(data, resolve_media_type(file_path, file_type), file_type)
        logger.info("exam_analysis.request", file=file_path.name, file_type=file_type, size=len(data))
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
                messages=[
                    {
                        "role": "user",
                        "content": [block, {"type": "text", "text": EXAM_ANALYSIS_PROMPT}],
                    }
                ],
            )
        except Exception as exc:
            logger.warning("exam_analysis.request_failed", file=file_path.name, error=str(exc))
            raise _collaborator_error(exc) from exc

        self._log_response(file_path.name, response)
        analysis = normalize_analysis(response_text(response), model=self._model)
        logger.info(
            "exam_analysis.completed",
            file=file_path.name,
            category=analysis.category,
            abnormal=len(analysis.abnormal_values),
        )
        return analysis

    def analyze_batch(self, files: Iterable[Tuple[str | Path, str]]) -> List[ExamAnalysis]:
        """Analyze each ``(path, file_type)`` pair, skipping files that fail."""

        results: List[ExamAnalysis] = []
        for path, file_type in files:
            try:
                results.append(self.analyze(path, file_type))
            except CollaboratorError as exc:
                logger.warning("exam_analysis.batch_item_failed", file=Path(path).name, error=exc.message)
        return results

    def summarize_exams(self, analyses: Sequence[ExamAnalysis]) -> str:
        """Ask the model for one clinical summary across several analyses.

        Any failure yields :data:`SUMMARY_NOT_AVAILABLE`.
        """

        if self._client is None or not analyses:
            return SUMMARY_NOT_AVAILABLE
        exams = [
            {**analysis.record_fields(), "exam_date": analysis.exam_date.isoformat() if analysis.exam_date else None}
            for analysis in analyses
        ]
        prompt = EXAMS_SUMMARY_PROMPT.format(
            count=len(exams), exams=json.dumps(exams, indent=2, ensure_ascii=False, default=str)
        )
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=2048,
                messages=[{"role": "user", "content": prompt}],
            )
            text = response_text(response)
        except Exception as exc:
            logger.warning("exam_analysis.summary_failed", exams=len(exams), error=str(exc))
            return SUMMARY_NOT_AVAILABLE
        return text.strip() or SUMMARY_NOT_AVAILABLE

    def _log_response(self, name: str, response: Any) -> None:
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "input_tokens", 0) or 0
        output_tokens = getattr(usage, "output_tokens", 0) or 0
        logger.info(
            "exam_analysis.response",
            file=name,
            model=getattr(response, "model", self._model),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=round(estimate_analysis_cost(input_tokens, output_tokens), 4),
        )
        if self._log_dir is None or not hasattr(response, "model_dump_json"):
            return
        stamp = utc_now().strftime("%Y%m%dT%H%M%S%f")
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            (self._log_dir / f"{name}-{stamp}.json").write_text(response.model_dump_json(indent=2), "utf-8")
        except OSError as exc:
            logger.warning("exam_analysis.raw_log_failed", file=name, error=str(exc))


async def exam_analysis_job(analyzer: ExamAnalyzer, path: str | Path, file_type: str) -> Dict[str, Any]:
    analysis = await asyncio.to_thread(analyzer.analyze, path, file_type)
    return analysis.record_fields()


__all__ = [
    "ALLOWED_EXAM_TYPES",
    "ANALYSIS_NOT_AVAILABLE",
    "CATEGORY_EXTRACTORS",
    "EXAM_CATEGORIES",
    "ExamAnalysis",
    "ExamAnalyzer",
    "OTHER_CATEGORY",
    "SUMMARY_EXTRACTORS",
    "SUMMARY_NOT_AVAILABLE",
    "compare_with_reference",
    "estimate_analysis_cost",
    "exam_analysis_job",
    "extract_json_payload",
    "first_present",
    "normalize_analysis",
    "parse_reference_range",
    "resolve_media_type",
    "response_text",
]
