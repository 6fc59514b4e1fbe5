"""
Error handling module for the Couchbase session store.

This module provides structured error handling with:
- ErrorCode enum for standardized error codes
- AppException and the session store exception hierarchy
- Error response models for consistent API responses
- Exception handlers for FastAPI integration
"""

from errors.codes import ErrorCode
from errors.exceptions import (
    AppException,
    BackendError,
    CasConflictError,
    InvalidKeyError,
    SessionStoreError,
)
from errors.handlers import (
    ErrorResponse,
    handle_app_exception,
    handle_session_store_exception,
    handle_unexpected_exception,
    register_exception_handlers,
)

__all__ = [
    "ErrorCode",
    "AppException",
    "SessionStoreError",
    "InvalidKeyError",
    "BackendError",
    "CasConflictError",
    "ErrorResponse",
    "handle_app_exception",
    "handle_session_store_exception",
    "handle_unexpected_exception",
    "register_exception_handlers",
]
