"""Application configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv
from platformdirs import user_data_dir

# Load environment variables from a .env file if present
load_dotenv()


APP_NAME = "clinicdesk"

DEFAULT_MAX_EXAM_FILE_SIZE = 50 * 1024 * 1024
DEFAULT_MAX_AUDIO_FILE_SIZE = 100 * 1024 * 1024


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration for the application."""

    database_url: str
    upload_dir: Path
    db_echo: bool = False
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("http://localhost:3000",)
    max_exam_file_size: int = DEFAULT_MAX_EXAM_FILE_SIZE
    max_audio_file_size: int = DEFAULT_MAX_AUDIO_FILE_SIZE

    openai_api_key: Optional[str] = None
    whisper_model: str = "whisper-1"
    transcription_language: str = "pt"

    anthropic_api_key: Optional[str] = None
    exam_analysis_model: str = "claude-sonnet-4-5-20250929"
    report_model: str = "claude-sonnet-4-5-20250929"
    anthropic_log_dir: Optional[Path] = None

    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_redirect_uri: Optional[str] = None
    google_access_token: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_calendar_id: str = "primary"

    caldav_url: Optional[str] = None
    caldav_username: Optional[str] = None
    caldav_password: Optional[str] = None

    calendar_timezone: str = "America/Sao_Paulo"
    calendar_organizer_email: Optional[str] = None
    calendar_organizer_name: str = "ClinicDesk"
    calendar_uid_domain: str = "clinicdesk.local"
    calendar_http_timeout: int = 15

    default_user_email: str = "admin@clinicdesk.local"
    default_user_name: str = "Clinic Administrator"

    def engine_options(self) -> Dict[str, object]:
        """Return keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.db_echo}
        if self.is_sqlite:
            options["connect_args"] = {"check_same_thread": False}
        else:
            pool_size = _get_int_env("DB_POOL_SIZE")
            if pool_size is not None:
                options["pool_size"] = pool_size
        return options

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def google_calendar_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret and self.google_refresh_token)

    @property
    def caldav_configured(self) -> bool:
        return bool(self.caldav_url and self.caldav_username and self.caldav_password)


def _default_data_dir() -> Path:
    override = os.getenv("CLINICDESK_DATA_DIR")
    data_dir = Path(override).expanduser() if override else Path(user_data_dir(APP_NAME, APP_NAME))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _get_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


def _get_bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def load_settings() -> Settings:
    """Build :class:`Settings` from the current environment."""

    data_dir = _default_data_dir()
    database_url = os.getenv("CLINICDESK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{data_dir / 'clinicdesk.db'}"

    upload_override = _get_optional("CLINICDESK_UPLOAD_DIR")
    upload_dir = Path(upload_override).expanduser() if upload_override else data_dir / "uploads"

    log_dir = _get_optional("ANTHROPIC_LOG_DIR")
    origins = tuple(
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    )

    defaults = Settings(database_url=database_url, upload_dir=upload_dir)
    return Settings(
        database_url=database_url,
        upload_dir=upload_dir,
        db_echo=_get_bool_env("DB_ECHO"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=origins,
        max_exam_file_size=_get_int_env("MAX_EXAM_FILE_SIZE") or DEFAULT_MAX_EXAM_FILE_SIZE,
        max_audio_file_size=_get_int_env("MAX_AUDIO_FILE_SIZE") or DEFAULT_MAX_AUDIO_FILE_SIZE,
        openai_api_key=_get_optional("OPENAI_API_KEY"),
        whisper_model=os.getenv("WHISPER_API_MODEL", defaults.whisper_model),
        transcription_language=os.getenv("TRANSCRIPTION_LANGUAGE", defaults.transcription_language),
        anthropic_api_key=_get_optional("ANTHROPIC_API_KEY"),
        exam_analysis_model=os.getenv("EXAM_ANALYSIS_MODEL", defaults.exam_analysis_model),
        report_model=os.getenv("REPORT_MODEL", defaults.report_model),
        anthropic_log_dir=Path(log_dir).expanduser() if log_dir else None,
        google_client_id=_get_optional("GOOGLE_CLIENT_ID"),
        google_client_secret=_get_optional("GOOGLE_CLIENT_SECRET"),
        google_redirect_uri=_get_optional("GOOGLE_REDIRECT_URI"),
        google_access_token=_get_optional("GOOGLE_ACCESS_TOKEN"),
        google_refresh_token=_get_optional("GOOGLE_REFRESH_TOKEN"),
        google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", defaults.google_calendar_id),
        caldav_url=_get_optional("APPLE_CALDAV_URL"),
        caldav_username=_get_optional("APPLE_CALDAV_USERNAME"),
        caldav_password=_get_optional("APPLE_CALDAV_PASSWORD"),
        calendar_timezone=os.getenv("CALENDAR_TIMEZONE", defaults.calendar_timezone),
        calendar_organizer_email=_get_optional("CALENDAR_ORGANIZER_EMAIL"),
        calendar_organizer_name=os.getenv("CALENDAR_ORGANIZER_NAME", defaults.calendar_organizer_name),
        calendar_uid_domain=os.getenv("CALENDAR_UID_DOMAIN", defaults.calendar_uid_domain),
        calendar_http_timeout=_get_int_env("CALENDAR_HTTP_TIMEOUT") or defaults.calendar_http_timeout,
        default_user_email=os.getenv("DEFAULT_USER_EMAIL", defaults.default_user_email),
        default_user_name=os.getenv("DEFAULT_USER_NAME", defaults.default_user_name),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the active settings derived from the environment."""

    return load_settings()


__all__ = ["APP_NAME", "Settings", "get_settings", "load_settings"]
