"""Consultation audio transcription through OpenAI's Whisper API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from openai import OpenAI

from clinicdesk.errors import CollaboratorError


logger = structlog.get_logger(__name__)

AUDIO_MIME_TYPES: Dict[str, str] = {
    ".mp3": "audio/mpeg",
    ".mp4": "audio/mp4",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".mpeg": "audio/mpeg",
    ".mpga": "audio/mpeg",
}

ALLOWED_AUDIO_TYPES = ("audio/*", "video/webm", "video/mp4")


def audio_mime_type(path: str | Path) -> str:
    return AUDIO_MIME_TYPES.get(Path(path).suffix.lower(), "audio/mpeg")


@dataclass
class TranscriptionResult:
    text: str
    duration: Optional[float] = None
    language: Optional[str] = None
    segments: List[Dict[str, Any]] = field(default_factory=list)

    def record_fields(self) -> Dict[str, Any]:
        return {
            "transcription": self.text,
            "duration": int(round(self.duration)) if self.duration is not None else None,
            "language": self.language,
            "segments": self.segments,
        }


def _segment_dict(segment: Any) -> Dict[str, Any]:
    if hasattr(segment, "model_dump"):
        segment = segment.model_dump()
    elif not isinstance(segment, dict):
        segment = dict(getattr(segment, "__dict__", {}))
    return {
        "id": segment.get("id"),
        "start": segment.get("start"),
        "end": segment.get("end"),
        "text": (segment.get("text") or "").strip(),
    }


class AudioTranscriber:
    """Wrap a Whisper-capable OpenAI client."""

    def __init__(self, client: Any, *, model: str = "whisper-1", language: Optional[str] = "pt") -> None:
        self._client = client
        self._model = model
        self._language = language

    @classmethod
    def from_api_key(cls, api_key: Optional[str], **kwargs: Any) -> "AudioTranscriber":
        return cls(OpenAI(api_key=api_key) if api_key else None, **kwargs)

    def transcribe(self, path: str | Path) -> TranscriptionResult:
        """Transcribe the audio file at ``path``; failures raise :class:`CollaboratorError`."""

        if self._client is None:
            raise CollaboratorError("Audio transcription failed: OPENAI_API_KEY is not configured")
        audio_path = Path(path)
        if not audio_path.is_file():
            raise CollaboratorError(f"Audio transcription failed: file not found ({audio_path.name})")
        try:
            with audio_path.open("rb") as handle:
                resp = self._client.audio.transcriptions.create(
                    model=self._model,
                    file=(audio_path.name, handle, audio_mime_type(audio_path)),
                    language=self._language,
                    response_format="verbose_json",
                    temperature=0.2,
                )
        except Exception as exc:
            logger.warning("transcription.request_failed", file=audio_path.name, error=str(exc))
            raise CollaboratorError(f"Audio transcription failed: {exc}") from exc

        text = (getattr(resp, "text", "") or "").strip()
        duration = getattr(resp, "duration", None)
        segments = [_segment_dict(segment) for segment in (getattr(resp, "segments", None) or [])]
        logger.info(
            "transcription.completed",
            file=audio_path.name,
            characters=len(text),
            duration=duration,
            segments=len(segments),
        )
        return TranscriptionResult(
            text=text,
            duration=float(duration) if duration is not None else None,
            language=getattr(resp, "language", None) or self._language,
            segments=segments,
        )


async def transcription_job(transcriber: AudioTranscriber, path: str | Path) -> Dict[str, Any]:
    result = await asyncio.to_thread(transcriber.transcribe, path)
    return result.record_fields()


__all__ = [
    "ALLOWED_AUDIO_TYPES",
    "AudioTranscriber",
    "TranscriptionResult",
    "audio_mime_type",
    "transcription_job",
]
