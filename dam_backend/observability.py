"""
Observability helpers (request id + timing) for aiohttp routes.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import uuid4

from aiohttp import web

from .shared import get_logger, request_id_var
from .utils import env_bool, env_float

logger = get_logger(__name__)

_APPKEY_OBS_INSTALLED = web.AppKey("dam_observability_installed", bool)

MS_PER_S = 1000.0
_DEFAULT_SLOW_MS = 750.0
API_PREFIX = "/dam/api/"


def _new_request_id() -> str:
    return uuid4().hex


def _get_request_id(request: web.Request) -> str:
    rid = (request.headers.get("X-Request-ID") or "").strip()
    # Client-supplied ids are echoed back; keep them bounded.
    return rid[:128] if rid else _new_request_id()


def _should_log(request: web.Request, *, status: int | None, duration_ms: float) -> bool:
    if not request.path.startswith(API_PREFIX):
        return False
    if status is not None and status >= 400:
        return True
    if env_bool("DAM_OBS_LOG_ALL", False):
        return True
    return duration_ms >= env_float("DAM_OBS_SLOW_MS", _DEFAULT_SLOW_MS)


@web.middleware
async def request_context_middleware(request: web.Request, handler):
    """Add request-id correlation and lightweight request logging."""
    rid = _get_request_id(request)
    request["dam_request_id"] = rid
    token = request_id_var.set(rid)
    start = time.perf_counter()
    status: int | None = None
    error: str | None = None
    try:
        response = await handler(request)
        status = int(getattr(response, "status", 200) or 200)
        response.headers["X-Request-ID"] = rid
        return response
    except web.HTTPException as exc:
        status = int(exc.status or 500)
        exc.headers["X-Request-ID"] = rid
        raise
    except Exception as exc:
        status = 500
        error = f"{exc.__class__.__name__}: {exc}"
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * MS_PER_S
        request["dam_duration_ms"] = duration_ms
        _emit_request_log(request, status=status, duration_ms=duration_ms, error=error)
        request_id_var.reset(token)


def build_request_log_fields(request: web.Request, *, status: int | None, duration_ms: float) -> dict[str, Any]:
    return {
        "method": request.method,
        "path": request.path,
        "status": status,
        "duration_ms": round(duration_ms, 1),
    }


def _emit_request_log(request: web.Request, *, status: int | None, duration_ms: float, error: str | None) -> None:
    if not _should_log(request, status=status, duration_ms=duration_ms):
        return
    fields = build_request_log_fields(request, status=status, duration_ms=duration_ms)
    if error:
        fields["error"] = error
    if status is not None and status >= 500:
        logger.error("Request handled %s", fields)
    elif status is not None and status >= 400:
        logger.warning("Request handled %s", fields)
    else:
        logger.info("Request handled %s", fields)


def ensure_observability(app: web.Application) -> None:
    """
    Install middleware once.
    """
    if app.get(_APPKEY_OBS_INSTALLED):
        return
    app[_APPKEY_OBS_INSTALLED] = True
    app.middlewares.append(request_context_middleware)
