"""
Request guards for state-changing endpoints: anti-CSRF checks and the
optional write token.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping
from urllib.parse import urlparse

from aiohttp import web

from ... import config
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

WRITE_TOKEN_HEADER = "X-DAM-Token"
ACTOR_HEADER = "X-DAM-User"
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def _get_write_token() -> str:
    """Configured token for write operations (`DAM_WRITE_TOKEN`); empty disables the check."""
    return str(getattr(config, "WRITE_TOKEN", "") or "").strip()


def _hash_token(value: str) -> str:
    return hashlib.sha256(str(value or "").strip().encode("utf-8", errors="ignore")).hexdigest()


def _extract_bearer_token(headers: Mapping[str, str]) -> str:
    auth = str(headers.get("Authorization") or "").strip()
    if not auth:
        return ""
    prefix = "bearer "
    if auth.lower().startswith(prefix):
        return auth[len(prefix):].strip()
    return ""


def _extract_write_token_from_headers(headers: Mapping[str, str]) -> str:
    """
    Accepted:
      - Authorization: Bearer <token>
      - X-DAM-Token: <token>
    """
    bearer = _extract_bearer_token(headers)
    if bearer:
        return bearer
    return str(headers.get(WRITE_TOKEN_HEADER) or "").strip()


def _check_write_access(headers: Mapping[str, str]) -> Result[bool]:
    configured = _get_write_token()
    if not configured:
        return Result.Ok(True)
    provided = _extract_write_token_from_headers(headers)
    if not provided:
        return Result.Err(ErrorCode.FORBIDDEN, "Write access requires a token", auth_required=True)
    if not hmac.compare_digest(_hash_token(configured), _hash_token(provided)):
        logger.warning("Rejected write request with an invalid token")
        return Result.Err(ErrorCode.FORBIDDEN, "Invalid write token", auth_required=True)
    return Result.Ok(True)


def _require_write_access(request: web.Request) -> Result[bool]:
    """
    Request-level wrapper for `_check_write_access()`.

    Never raises. Meant to be used at the top of handlers that modify the DB.
    """
    return _check_write_access(request.headers)


def _request_actor(request: web.Request) -> str | None:
    """Caller identity recorded in the metadata audit trail (authentication happens upstream)."""
    actor = str(request.headers.get(ACTOR_HEADER) or "").strip()
    return actor[:255] or None


def _csrf_error(request: web.Request) -> str | None:
    """
    CSRF protection for state-changing endpoints.

    Layers:
      1) Require an anti-CSRF header for state-changing methods (X-Requested-With or X-CSRF-Token)
      2) If Origin is present, validate it against Host (with loopback allowance)
    """
    if request.method.upper() not in ("POST", "PUT", "DELETE", "PATCH"):
        return None
    if not _has_csrf_header(request):
        return "Missing anti-CSRF header (X-Requested-With or X-CSRF-Token)"
    origin = request.headers.get("Origin")
    if not origin:
        return None
    if origin == "null":
        return "Cross-site request blocked (Origin=null)"
    host = request.headers.get("Host") or ""
    if not host:
        return "Missing Host header"
    parsed = _parse_origin(origin)
    if parsed is None:
        return "Cross-site request blocked (invalid Origin)"
    if parsed.netloc == host:
        return None
    if _is_loopback_origin_host_match(parsed, host):
        return None
    return f"Cross-site request blocked ({parsed.netloc} != {host})"


def _has_csrf_header(request: web.Request) -> bool:
    return bool(request.headers.get("X-Requested-With")) or bool(request.headers.get("X-CSRF-Token"))


def _parse_origin(origin: str):
    try:
        parsed = urlparse(origin)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return parsed


def _is_loopback_origin_host_match(parsed_origin: Any, host: str) -> bool:
    try:
        origin_host = parsed_origin.hostname or ""
        origin_port = parsed_origin.port
    except ValueError:
        return False
    host_name, host_port = _split_host_port(host)
    if origin_host not in _LOOPBACK_HOSTS or host_name not in _LOOPBACK_HOSTS:
        return False
    return origin_port is None or host_port is None or origin_port == host_port


def _split_host_port(host: str) -> tuple[str, int | None]:
    if ":" in host and not host.endswith("]"):
        host_name, host_port_raw = host.rsplit(":", 1)
        try:
            return host_name, int(host_port_raw)
        except ValueError:
            return host, None
    return host, None
