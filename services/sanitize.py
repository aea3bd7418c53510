"""Escaping and redaction for anything sent to the client."""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

MAX_RESULT_LENGTH = 200
REDACTED = "[REDACTED]"
GENERIC_ERROR = "An unexpected error occurred. Please try again later."

_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_ESCAPE_RE = re.compile(r"[&<>\"'/]")

SENSITIVE_FIELDS = ("password", "token", "secret", "key", "apiKey", "api_key", "credentials")

SAFE_ERROR_PATTERNS = [
    re.compile(r"rate limit", re.I),
    re.compile(r"validation error", re.I),
    re.compile(r"invalid (url|youtube|video)", re.I),
    re.compile(r"not found", re.I),
    re.compile(r"timeout", re.I),
    re.compile(r"too (long|large|many)", re.I),
]


def escape_markup(value: Any) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(0)], str(value))


def sanitize_object(obj: Any, max_depth: int = 5) -> Any:
    """Escape every string inside ``obj``, keys included."""
    if max_depth <= 0:
        return "[Max depth reached]"
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return escape_markup(obj)
    if isinstance(obj, (list, tuple)):
        return [sanitize_object(item, max_depth - 1) for item in obj]
    if isinstance(obj, dict):
        return {escape_markup(k): sanitize_object(v, max_depth - 1) for k, v in obj.items()}
    return escape_markup(obj)


def sanitize_tool_args(args: Any) -> Any:
    sanitized = sanitize_object(args)
    if isinstance(sanitized, dict):
        for name in SENSITIVE_FIELDS:
            if name in sanitized:
                sanitized[name] = REDACTED
    return sanitized


def truncate(value: Any, max_length: int = MAX_RESULT_LENGTH) -> str:
    text = str(value)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def safe_error_message(error: BaseException) -> str:
    """User-facing text for ``error``; only allowlisted messages pass through."""
    message = str(error) or type(error).__name__
    for pattern in SAFE_ERROR_PATTERNS:
        if pattern.search(message):
            return escape_markup(message)
    logger.debug("[sanitize] masked error message: %s", message)
    return GENERIC_ERROR
