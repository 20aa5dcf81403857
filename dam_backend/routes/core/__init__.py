"""
Core utilities for route handlers.
"""
from .request_json import _read_json
from .response import _json_response, safe_error_message
from .security import _csrf_error, _request_actor, _require_write_access
from .services import _build_services, _dispose_services, _require_services, get_services_error

__all__ = [
    "_json_response",
    "safe_error_message",
    "_csrf_error",
    "_request_actor",
    "_require_write_access",
    "_require_services",
    "_build_services",
    "_dispose_services",
    "get_services_error",
    "_read_json",
]
