"""
Route registration system.
Coordinates all route handlers and builds the aiohttp application.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from aiohttp import web

from .. import config
from ..observability import ensure_observability
from ..shared import get_logger
from .core import _dispose_services
from .handlers.bulk_edit import register_bulk_edit_routes
from .handlers.collections import register_collections_routes

API_PREFIX = "/dam/api/"
_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED: web.AppKey[bool] = web.AppKey(
    "_dam_security_middlewares_installed", bool
)
_APP_KEY_SERVICES_CLEANUP_INSTALLED: web.AppKey[bool] = web.AppKey("_dam_services_cleanup_installed", bool)

logger = get_logger(__name__)


@web.middleware
async def security_headers_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Apply strict security headers to API responses only."""
    response = await handler(request)

    path = request.path or ""
    if not path.startswith(API_PREFIX):
        return response

    # API responses should never be treated as a document.
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")

    response.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate")
    response.headers.setdefault("Pragma", "no-cache")
    return response


def _install_security_middlewares(app: web.Application) -> None:
    if app.get(_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED):
        return
    app.middlewares.insert(0, security_headers_middleware)
    app[_APP_KEY_SECURITY_MIDDLEWARES_INSTALLED] = True


def _install_services_cleanup(app: web.Application) -> None:
    if app.get(_APP_KEY_SERVICES_CLEANUP_INSTALLED):
        return

    async def _on_cleanup(_app: web.Application) -> None:
        await _dispose_services()

    app.on_cleanup.append(_on_cleanup)
    app[_APP_KEY_SERVICES_CLEANUP_INSTALLED] = True


def register_all_routes() -> web.RouteTableDef:
    """
    Register all route handlers and return the RouteTableDef.
    This is the central registration point for all routes.
    """
    routes = web.RouteTableDef()
    register_bulk_edit_routes(routes)
    register_collections_routes(routes)

    logger.debug("=" * 60)
    logger.debug("Routes registered:")
    for item in routes:
        logger.debug("  %s %s", getattr(item, "method", "?"), getattr(item, "path", "?"))
    logger.debug("=" * 60)
    return routes


def create_app() -> web.Application:
    """Build the aiohttp application with middlewares and every route."""
    app = web.Application()
    ensure_observability(app)
    _install_security_middlewares(app)
    _install_services_cleanup(app)
    app.add_routes(register_all_routes())
    return app


def main() -> None:
    host, port = config.HOST, config.PORT
    logger.info("Starting DAM bulk metadata API on http://%s:%s%s", host, port, API_PREFIX)
    web.run_app(create_app(), host=host, port=port)
