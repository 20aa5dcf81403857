"""
Collection listing endpoints used by the bulk edit collections picker.
"""
from aiohttp import web

from ...shared import ErrorCode, Result
from ..core import (
    _csrf_error,
    _json_response,
    _read_json,
    _require_services,
    _require_write_access,
    safe_error_message,
)


def register_collections_routes(routes: web.RouteTableDef) -> None:
    """Register collection routes."""

    @routes.get("/dam/api/collections")
    async def list_collections(request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        collections = svc.get("collections") if isinstance(svc, dict) else None
        if not collections:
            return _json_response(Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Collections service unavailable"))
        try:
            result = await collections.list_collections()
        except Exception as exc:
            result = Result.Err(ErrorCode.DB_ERROR, safe_error_message(exc, "Failed to list collections"))
        return _json_response(result)

    @routes.post("/dam/api/collections")
    async def create_collection(request):
        csrf = _csrf_error(request)
        if csrf:
            return _json_response(Result.Err(ErrorCode.CSRF, csrf))
        auth = _require_write_access(request)
        if not auth.ok:
            return _json_response(auth)
        body_res = await _read_json(request)
        if not body_res.ok:
            return _json_response(body_res)

        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        name = str((body_res.data or {}).get("name") or "").strip()
        try:
            result = await svc["collections"].create(name)
        except Exception as exc:
            result = Result.Err(ErrorCode.DB_ERROR, safe_error_message(exc, "Failed to create collection"))
        return _json_response(result)
