"""Backend-facing alias for shared utilities.

Feature modules import from here so the backend has one place to swap the
shared layer in tests.
"""

from __future__ import annotations

import dam_shared as _root_shared

Result = _root_shared.Result
ErrorCode = _root_shared.ErrorCode
TOKEN_ERROR_CODES = _root_shared.TOKEN_ERROR_CODES
get_logger = _root_shared.get_logger
log_success = _root_shared.log_success
log_structured = _root_shared.log_structured
request_id_var = _root_shared.request_id_var
sanitize_error_message = _root_shared.sanitize_error_message
format_timestamp = _root_shared.format_timestamp
timer = _root_shared.timer

__all__ = [
    "Result",
    "ErrorCode",
    "TOKEN_ERROR_CODES",
    "get_logger",
    "log_success",
    "log_structured",
    "request_id_var",
    "sanitize_error_message",
    "format_timestamp",
    "timer",
]
