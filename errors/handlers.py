"""
Exception handlers for applications hosting the session store.

Session store errors carry the storage key (which embeds the session id),
a preview of the session blob and the Couchbase error text. All of that is
logged server-side, but clients only ever see the error code, a fixed
message for that code and the request id. Unexpected exceptions are logged
with their stack trace and answered with a generic 500.
"""

import logging
import traceback
import uuid
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from errors.codes import ErrorCode
from errors.exceptions import AppException, SessionStoreError

logger = logging.getLogger(__name__)

PUBLIC_MESSAGES = {
    ErrorCode.INVALID_SESSION_KEY: "Invalid session key",
    ErrorCode.SESSION_STORE_CONFLICT: "Session was modified concurrently, please retry",
    ErrorCode.SESSION_STORE_UNAVAILABLE: "Session store unavailable",
}

_GENERIC_MESSAGE = "An unexpected error occurred. Please try again later."


class ErrorResponse(BaseModel):
    """
    Structured error response model.

    All error responses follow this format for consistency and to enable
    programmatic error handling by clients.
    """
    error_code: str
    message: str
    details: Optional[dict[str, Any]] = None
    request_id: str


def get_request_id(request: Request) -> str:
    """Return the request id from the request state, or a fresh UUID."""
    if hasattr(request.state, "request_id"):
        return request.state.request_id

    return str(uuid.uuid4())


def _error_context(request: Request, request_id: str, exc: AppException) -> dict[str, Any]:
    return {
        "error_code": exc.error_code.value,
        "error_message": exc.message,
        "status_code": exc.status_code,
        "details": exc.details,
        "request_id": request_id,
        "path": request.url.path,
        "method": request.method,
    }


def _respond(status_code: int, error_code: ErrorCode, message: str,
             request_id: str, details: Optional[dict[str, Any]] = None) -> JSONResponse:
    error_response = ErrorResponse(
        error_code=error_code.value,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_none=True),
    )


async def handle_session_store_exception(request: Request,
                                         exc: SessionStoreError) -> JSONResponse:
    """
    Handle session store errors without exposing session data.

    The full message and details (storage key, value preview, backend
    error) go to the log at error level for backend failures and at warning
    level for caller errors. The response body carries no details.
    """
    request_id = get_request_id(request)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING

    logger.log(
        level,
        "Session store error occurred",
        extra={"extra_data": _error_context(request, request_id, exc)}
    )

    message = PUBLIC_MESSAGES.get(exc.error_code, _GENERIC_MESSAGE)
    return _respond(exc.status_code, exc.error_code, message, request_id)


async def handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle other application exceptions, such as payload validation errors.

    These describe the caller's request rather than stored session data,
    so their message and details are returned as they are.
    """
    request_id = get_request_id(request)

    logger.warning(
        "Application error occurred",
        extra={"extra_data": _error_context(request, request_id, exc)}
    )

    return _respond(exc.status_code, exc.error_code, exc.message, request_id, exc.details)


async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Log an unexpected exception and answer with a generic 500."""
    request_id = get_request_id(request)

    logger.error(
        "Unexpected error occurred",
        extra={
            "extra_data": {
                "error_code": ErrorCode.INTERNAL_ERROR.value,
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "stack_trace": traceback.format_exc(),
            }
        },
        exc_info=True,
    )

    return _respond(500, ErrorCode.INTERNAL_ERROR, _GENERIC_MESSAGE, request_id)


def register_exception_handlers(app) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Starlette picks the handler of the most specific registered class, so
    session store errors never reach handle_app_exception.
    """
    app.add_exception_handler(SessionStoreError, handle_session_store_exception)
    app.add_exception_handler(AppException, handle_app_exception)

    # Catches Exception, the base class for most errors
    app.add_exception_handler(Exception, handle_unexpected_exception)

    logger.info("Exception handlers registered successfully")
