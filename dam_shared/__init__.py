"""Shared utilities for the DAM bulk metadata backend."""
from .errors import sanitize_error_message
from .log import get_logger, log_structured, log_success, request_id_var
from .result import Result
from .time import format_timestamp, now, timer
from .types import TOKEN_ERROR_CODES, ErrorCode

__all__ = [
    "Result",
    "get_logger",
    "log_success",
    "now",
    "format_timestamp",
    "timer",
    "ErrorCode",
    "TOKEN_ERROR_CODES",
    "log_structured",
    "request_id_var",
    "sanitize_error_message",
]
