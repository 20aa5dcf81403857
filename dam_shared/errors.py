"""
Client-safe error text.

Messages that reach API responses or per-asset outcomes must not expose
filesystem layout, SQL, or the signing material of preview tokens.
"""
from __future__ import annotations

import os
import re
from typing import Any

from .log import get_logger

logger = get_logger(__name__)
_DEBUG_MODE = os.getenv("DAM_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")

MAX_DETAIL_CHARS = 200

_MASKS = (
    (re.compile(r"[A-Za-z]:\\[^\s]+"), "[path]"),
    (re.compile(r"\\\\[^\s\\]+\\[^\s]+"), "[path]"),
    (re.compile(r"(?<![A-Za-z0-9:/?&=#%])/(?!/)[^\s#?]+"), "[path]"),
    # Preview tokens are `<base64 body>.<hex signature>`.
    (re.compile(r"\b[A-Za-z0-9_-]{24,}\.[0-9a-fA-F]{64}\b"), "[token]"),
    (re.compile(r"\b(?:SELECT|INSERT INTO|DELETE FROM|UPDATE \w+ SET)\s.*", re.DOTALL), "[sql]"),
)


def _mask(value: str) -> str:
    for pattern, replacement in _MASKS:
        value = pattern.sub(replacement, value)
    return value


def sanitize_error_message(exc: Any, fallback: str) -> str:
    """
    `fallback`, optionally followed by a masked, single-line detail taken
    from `exc`.
    """
    fallback = fallback or "An error occurred"
    if exc is None:
        return fallback

    try:
        raw = str(exc)
    except Exception:
        raw = ""
    if not raw:
        return fallback

    detail = " ".join(_mask(raw.replace(os.getcwd(), "[cwd]")).split()).strip()
    if _DEBUG_MODE:
        logger.debug("Sanitized error payload: %s", detail, exc_info=True)
    if not detail:
        return fallback
    return f"{fallback}: {detail[:MAX_DETAIL_CHARS]}"
