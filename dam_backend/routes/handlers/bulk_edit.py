"""
Bulk metadata edit endpoints: field options, preview and execute.
"""
from aiohttp import web

from ...shared import ErrorCode, Result, get_logger
from ..core import (
    _csrf_error,
    _json_response,
    _read_json,
    _request_actor,
    _require_services,
    _require_write_access,
    safe_error_message,
)

logger = get_logger(__name__)


def _bulk_service_or_error(svc: dict) -> Result[object]:
    bulk = svc.get("bulk_edit") if isinstance(svc, dict) else None
    if not bulk:
        return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, "Bulk edit service unavailable")
    return Result.Ok(bulk)


async def _guarded_body(request: web.Request) -> Result[dict]:
    """CSRF + write access + JSON body, in that order."""
    csrf = _csrf_error(request)
    if csrf:
        return Result.Err(ErrorCode.CSRF, csrf)
    auth = _require_write_access(request)
    if not auth.ok:
        return Result.Err(auth.code or ErrorCode.FORBIDDEN, auth.error or "Write access denied", **auth.meta)
    return await _read_json(request)


def _parse_preview_body(body: dict) -> Result[tuple]:
    asset_ids = body.get("asset_ids")
    if not isinstance(asset_ids, list):
        return Result.Err(ErrorCode.INVALID_INPUT, "asset_ids must be a list")
    operation = body.get("operation_type") or body.get("operation")
    if not operation:
        return Result.Err(ErrorCode.INVALID_INPUT, "Missing operation_type")
    field_key = body.get("field_key")
    if not isinstance(field_key, str) or not field_key.strip():
        return Result.Err(ErrorCode.INVALID_INPUT, "Missing field_key")
    return Result.Ok((asset_ids, operation, field_key.strip(), body.get("value")))


def register_bulk_edit_routes(routes: web.RouteTableDef) -> None:
    """Register bulk edit routes."""

    @routes.get("/dam/api/assets/{asset_id}/bulk-fields")
    async def get_bulk_fields(request):
        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        bulk_res = _bulk_service_or_error(svc)
        if not bulk_res.ok:
            return _json_response(bulk_res)

        asset_id = str(request.match_info.get("asset_id") or "").strip()
        if not asset_id:
            return _json_response(Result.Err(ErrorCode.INVALID_INPUT, "Missing asset_id"))
        try:
            resolved = await bulk_res.data.editable_fields(asset_id)
        except Exception as exc:
            logger.warning("Failed to resolve bulk fields for %s: %s", asset_id, exc)
            return _json_response(
                Result.Err(ErrorCode.DB_ERROR, safe_error_message(exc, "Failed to load editable fields"))
            )
        return _json_response(Result.Ok(resolved.to_dict()))

    @routes.post("/dam/api/bulk/preview")
    async def bulk_preview(request):
        body_res = await _guarded_body(request)
        if not body_res.ok:
            return _json_response(body_res)
        parsed = _parse_preview_body(body_res.data or {})
        if not parsed.ok:
            return _json_response(parsed)

        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        bulk_res = _bulk_service_or_error(svc)
        if not bulk_res.ok:
            return _json_response(bulk_res)

        asset_ids, operation, field_key, value = parsed.data
        try:
            result = await bulk_res.data.preview(asset_ids, operation, field_key, value)
        except Exception as exc:
            logger.error("Bulk preview failed: %s", exc, exc_info=True)
            result = Result.Err(ErrorCode.DB_ERROR, safe_error_message(exc, "Failed to build preview"))
        return _json_response(result)

    @routes.post("/dam/api/bulk/execute")
    async def bulk_execute(request):
        body_res = await _guarded_body(request)
        if not body_res.ok:
            return _json_response(body_res)
        token = (body_res.data or {}).get("preview_token")
        if not isinstance(token, str) or not token.strip():
            return _json_response(Result.Err(ErrorCode.TOKEN_INVALID, "Missing preview_token"))

        svc, error_result = await _require_services()
        if error_result:
            return _json_response(error_result)
        bulk_res = _bulk_service_or_error(svc)
        if not bulk_res.ok:
            return _json_response(bulk_res)

        try:
            result = await bulk_res.data.execute(token.strip(), changed_by=_request_actor(request))
        except Exception as exc:
            logger.error("Bulk execute failed: %s", exc, exc_info=True)
            result = Result.Err(ErrorCode.UPDATE_FAILED, safe_error_message(exc, "Failed to apply changes"))
        return _json_response(result)
