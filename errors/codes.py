"""
Error code catalog for the Couchbase session store.

This module defines all error codes raised by the session store and its
configuration layer, covering caller errors, backend failures and
internal errors.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used by the session store.

    Each error code maps to a default HTTP status code so a host web
    application can turn session store failures into responses:
    - Caller errors (4xx): bad session keys or payloads
    - Backend errors (4xx/5xx): Couchbase failures and write conflicts
    - Internal errors (5xx): Server-side issues
    """

    # Caller errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Request payload validation failed (HTTP 400)"""

    INVALID_SESSION_KEY = "INVALID_SESSION_KEY"
    """Session key is empty or not of the form type:id (HTTP 400)"""

    # Backend errors
    SESSION_STORE_CONFLICT = "SESSION_STORE_CONFLICT"
    """Session document kept changing under a compare-and-swap write (HTTP 409)"""

    SESSION_STORE_UNAVAILABLE = "SESSION_STORE_UNAVAILABLE"
    """Couchbase unavailable or failed the operation (HTTP 503)"""

    # Internal errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    """Unexpected server error (HTTP 500)"""


# Mapping of error codes to their default HTTP status codes
ERROR_CODE_STATUS_MAP: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.INVALID_SESSION_KEY: 400,
    ErrorCode.SESSION_STORE_CONFLICT: 409,
    ErrorCode.SESSION_STORE_UNAVAILABLE: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


def get_default_status_code(error_code: ErrorCode) -> int:
    """
    Get the default HTTP status code for an error code.

    Args:
        error_code: The error code to look up

    Returns:
        The default HTTP status code for the error code
    """
    return ERROR_CODE_STATUS_MAP.get(error_code, 500)
