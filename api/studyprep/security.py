"""Helpers for keeping credentials and user text out of logs."""

from __future__ import annotations

import re

# Google API keys are 39 chars starting with "AIza".
_GOOGLE_KEY = re.compile(r"\bAIza[0-9A-Za-z_-]{35}\b")
_OPENAI_KEY = re.compile(r"\bsk-[a-zA-Z0-9]{40,}\b")
_BEARER = re.compile(r"\bBearer\s+[a-zA-Z0-9._-]+")
_KEY_QUERY_PARAM = re.compile(r"([?&]key=)[^&\s]+")


def sanitize_for_logging(value: str, max_length: int = 200) -> str:
    """
    Sanitize a value for safe logging (truncate, remove sensitive patterns).

    Args:
        value: Value to sanitize
        max_length: Maximum length to log

    Returns:
        Sanitized value safe for logging
    """
    if not value:
        return ""

    value = _GOOGLE_KEY.sub("[REDACTED_API_KEY]", value)
    value = _OPENAI_KEY.sub("[REDACTED_API_KEY]", value)
    value = _BEARER.sub("Bearer [REDACTED]", value)
    value = _KEY_QUERY_PARAM.sub(r"\1[REDACTED]", value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value
