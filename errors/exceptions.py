"""
Exception classes for the Couchbase session store.

This module provides the AppException base class, the session store
exception hierarchy, and convenience factory functions for creating
exceptions with proper error codes and HTTP status codes.
"""

from typing import Any, Optional

from errors.codes import ErrorCode, get_default_status_code


class AppException(Exception):
    """
    Base exception class for all application-specific errors.

    This exception provides structured error information including:
    - error_code: A standardized error code from the ErrorCode enum
    - message: A human-readable error message
    - status_code: The HTTP status code to return
    - details: Optional additional context (e.g., the offending key)

    Example:
        raise AppException(
            error_code=ErrorCode.VALIDATION_ERROR,
            message="Invalid session payload",
            status_code=400,
            details={"field": "value", "reason": "Must be str or bytes"}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize an AppException.

        Args:
            error_code: The error code from the ErrorCode enum
            message: A human-readable error message
            status_code: The HTTP status code (defaults to the error code's default)
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code
        self.message = message
        self.status_code = status_code or get_default_status_code(error_code)
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for JSON serialization.

        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, status_code={self.status_code}, "
            f"details={self.details!r})"
        )


class SessionStoreError(AppException):
    """Base class for errors raised by session store operations."""


class InvalidKeyError(SessionStoreError):
    """
    Raised when a session key is empty or not of the form ``type:id``.

    This is a caller error: it is raised before any backend call is made
    and is never retried.
    """

    def __init__(
        self,
        message: str = "No session key specified",
        details: Optional[dict[str, Any]] = None
    ):
        super().__init__(
            error_code=ErrorCode.INVALID_SESSION_KEY,
            message=message,
            details=details
        )


class BackendError(SessionStoreError):
    """
    Raised when Couchbase fails a session operation.

    A missing document is not a backend error; reads of absent sessions
    return None instead. Everything else (network failures, timeouts,
    rejected writes) surfaces here with the storage key and the backend's
    error text so the host can decide whether to fail the request.

    Attributes:
        key: The storage key the operation was addressed to, if any
        backend_error: The error text reported by the backend, if any
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        backend_error: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.SESSION_STORE_UNAVAILABLE,
        details: Optional[dict[str, Any]] = None
    ):
        self.key = key
        self.backend_error = backend_error
        merged = dict(details or {})
        if key is not None:
            merged.setdefault("key", key)
        if backend_error is not None:
            merged.setdefault("backend_error", backend_error)
        super().__init__(
            error_code=error_code,
            message=message,
            details=merged or None
        )


class CasConflictError(SessionStoreError):
    """
    Raised when a compare-and-swap write loses a race with another writer.

    Only the atomic merge path raises this, and it is retried there; callers
    see a BackendError once the attempts are exhausted.
    """

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            error_code=ErrorCode.SESSION_STORE_CONFLICT,
            message=f"Session document changed during update: {key}",
            details={"key": key}
        )


# Convenience factory functions for common error types

def validation_error(
    message: str,
    details: Optional[dict[str, Any]] = None
) -> AppException:
    """Create a validation error exception."""
    return AppException(
        error_code=ErrorCode.VALIDATION_ERROR,
        message=message,
        details=details
    )


def session_store_unavailable(
    message: str = "Session store unavailable",
    details: Optional[dict[str, Any]] = None
) -> BackendError:
    """Create a session store unavailable exception."""
    return BackendError(message=message, details=details)

