from typing import Any, Mapping, Optional

import bleach


def sanitize_text(value: str) -> str:
    """Return a sanitized version of *value* with HTML stripped.

    Free-text clinical fields end up in generated reports and calendar
    invites, so tags are removed before they are stored.
    """
    return bleach.clean(value, tags=[], attributes={}, strip=True)


def sanitize_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = sanitize_text(value).strip()
    return cleaned or None


def sanitize_fields(payload: Mapping[str, Any]) -> dict:
    """Sanitize every string value in ``payload`` and return a new dict."""

    return {
        key: sanitize_optional(value) if isinstance(value, str) else value
        for key, value in payload.items()
    }
