"""
Shared types, enums, and constants.
"""
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes (string enum)."""

    # Client / validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_JSON = "INVALID_JSON"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CSRF = "CSRF"
    FORBIDDEN = "FORBIDDEN"

    # Feature / service availability
    UNSUPPORTED = "UNSUPPORTED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Server / infrastructure
    DB_ERROR = "DB_ERROR"
    TIMEOUT = "TIMEOUT"

    # Operation errors
    UPDATE_FAILED = "UPDATE_FAILED"

    # Bulk edit protocol
    INVALID_STATE = "INVALID_STATE"
    PREVIEW_HAS_ERRORS = "PREVIEW_HAS_ERRORS"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_REPLAYED = "TOKEN_REPLAYED"


TOKEN_ERROR_CODES = frozenset(
    {
        ErrorCode.TOKEN_INVALID.value,
        ErrorCode.TOKEN_EXPIRED.value,
        ErrorCode.TOKEN_REPLAYED.value,
    }
)
