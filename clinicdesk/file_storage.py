"""Local storage for uploaded exam documents and consultation audio."""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import structlog

from clinicdesk.errors import ValidationError


logger = structlog.get_logger(__name__)

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredFile:
    path: Path
    name: str
    size: int


def _path_within(base: Path, candidate: Path) -> bool:
    try:
        candidate.relative_to(base)
    except ValueError:
        return False
    return True


def sanitize_filename(original_name: Optional[str]) -> str:
    """Return a filesystem-safe representation of ``original_name``.

    Only the final path component is retained and characters outside a
    conservative whitelist are replaced with underscores.
    """

    raw_name = Path(original_name or "").name.strip()
    sanitized = _SAFE_FILENAME_RE.sub("_", raw_name).strip("._")
    if not sanitized:
        return uuid.uuid4().hex
    return sanitized[:128]


def generate_unique_filename(original_name: Optional[str]) -> str:
    """Prefix the sanitized name with a timestamp and random token."""

    sanitized = sanitize_filename(original_name)
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}-{sanitized}"


def validate_file_type(mimetype: Optional[str], allowed: Iterable[str]) -> bool:
    """Return whether ``mimetype`` matches one of ``allowed`` (``type/*`` wildcards)."""

    if not mimetype:
        return False
    mimetype = mimetype.lower()
    for pattern in allowed:
        pattern = pattern.lower()
        if pattern.endswith("/*"):
            if mimetype.startswith(pattern[:-1]):
                return True
        elif mimetype == pattern:
            return True
    return False


def validate_file_size(size: int, max_size: int) -> bool:
    return 0 < size <= max_size


class LocalFileStorage:
    """Persist uploads below ``root`` and remove them on record deletion."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def save(self, data: bytes, original_name: Optional[str], folder: str) -> StoredFile:
        base_dir = (self._root / folder).resolve()
        base_dir.mkdir(parents=True, exist_ok=True)
        name = generate_unique_filename(original_name)
        destination = (base_dir / name).resolve()
        if not _path_within(base_dir, destination):
            logger.warning("file_storage.rejected", name=name, reason="outside_upload_dir")
            raise ValidationError("Resolved upload path escapes upload directory")
        destination.write_bytes(data)
        logger.info("file_storage.persisted", folder=folder, name=name, size=len(data))
        return StoredFile(path=destination, name=name, size=len(data))

    def delete(self, path: Optional[str | Path]) -> bool:
        """Delete ``path``; a missing file is logged and reported as ``False``."""

        if not path:
            return False
        target = Path(path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.info("file_storage.already_absent", path=str(target))
            return False
        except OSError as exc:
            logger.warning("file_storage.delete_failed", path=str(target), error=str(exc))
            return False
        logger.info("file_storage.deleted", path=str(target))
        return True

    def delete_many(self, paths: Iterable[Optional[str | Path]]) -> int:
        return sum(1 for path in paths if self.delete(path))


__all__ = [
    "LocalFileStorage",
    "StoredFile",
    "generate_unique_filename",
    "sanitize_filename",
    "validate_file_size",
    "validate_file_type",
]
