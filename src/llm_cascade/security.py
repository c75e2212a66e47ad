"""Credential redaction for error messages and log records."""

from __future__ import annotations

import re
from typing import Any

REDACTED_KEY = "[API_KEY_REDACTED]"
REDACTED = "[REDACTED]"

# Order matters: provider-shaped keys first, then any long opaque token.
_KEY_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"sk-[A-Za-z0-9_-]{20,}"),
    re.compile(r"xai-[A-Za-z0-9-]{32,}"),
    re.compile(r"gsk_[A-Za-z0-9]{32,}"),
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/-]{16,}=*"),
    re.compile(r"\b[A-Za-z0-9]{32,64}\b"),
]

SENSITIVE_KEYS: tuple[str, ...] = (
    "authorization",
    "x-api-key",
    "x-openai-key",
    "api-key",
    "api_key",
    "bearer",
    "credential",
    "groq_key",
    "anthropic_key",
    "openai_key",
    "password",
    "secret",
    "token",
)


def redact_secrets(message: object) -> str:
    """Replace anything shaped like a provider key with a placeholder."""
    if message is None:
        return "Unknown error"
    text = str(message)
    for pattern in _KEY_PATTERNS:
        text = pattern.sub(REDACTED_KEY, text)
    return text


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(s in lowered for s in SENSITIVE_KEYS)


def sanitize_for_logging(data: Any) -> Any:
    """Deep-copy ``data`` with sensitive keys masked and key-shaped strings redacted.

    Token *counts* (``prompt_tokens``, ``max_tokens``...) are numbers and are kept;
    only string values under a sensitive key are masked.
    """
    if isinstance(data, dict):
        clean: dict[str, Any] = {}
        for key, value in data.items():
            if _is_sensitive(str(key)) and isinstance(value, str):
                clean[key] = REDACTED
            else:
                clean[key] = sanitize_for_logging(value)
        return clean
    if isinstance(data, list | tuple):
        return [sanitize_for_logging(v) for v in data]
    if isinstance(data, str):
        return redact_secrets(data)
    return data
