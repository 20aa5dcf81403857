"""
Service management and initialization.
"""
import asyncio
from typing import Any

from ...deps import build_services
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

_services = None
_services_error = None
_services_lock: asyncio.Lock | None = None


def _get_services_lock() -> asyncio.Lock:
    global _services_lock
    if _services_lock is None:
        _services_lock = asyncio.Lock()
    return _services_lock


async def _dispose_services():
    """Close the services' resources (the database pool)."""
    global _services
    if not _services:
        return
    db = _services.get("db")
    if db:
        try:
            await db.aclose()
            logger.debug("Database connection closed successfully")
        except Exception as exc:
            logger.warning("Error closing database: %s", exc, exc_info=True)
    _services = None


async def _build_services(force: bool = False):
    global _services, _services_error
    async with _get_services_lock():
        if _services and not force:
            return _services

        if force:
            await _dispose_services()

        try:
            services_result = await build_services()
        except Exception as exc:
            _services_error = str(exc)
            logger.error(f"Failed to initialize services: {exc}", exc_info=True)
            _services = None
            return None

        if not services_result.ok:
            _services_error = services_result.error or "Initialization failed"
            logger.error("Failed to initialize services: %s", _services_error)
            _services = None
            return None

        _services = services_result.data
        _services_error = None
        return _services


async def _require_services() -> tuple[dict[str, Any] | None, Result[Any] | None]:
    services = await _build_services()
    if services:
        return services, None
    return None, Result.Err(
        ErrorCode.SERVICE_UNAVAILABLE,
        "Services are unavailable",
        detail=_services_error or "Initialization failed",
    )


def get_services_error():
    """Get the current services error if any."""
    return _services_error


def _set_services_for_tests(services: dict | None) -> None:
    global _services, _services_error, _services_lock
    _services = services
    _services_error = None
    _services_lock = None
