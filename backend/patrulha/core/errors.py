"""Error handling and structured error responses."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psycopg
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from patrulha.core.config import settings
from patrulha.core.metrics import metrics

logger = logging.getLogger(__name__)


class ErrorCode:
    """Stable error codes for API responses."""

    # Authentication
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    IDENTITY_UNAVAILABLE = "IDENTITY_UNAVAILABLE"

    # Database
    DB_CONNECT_FAILED = "DB_CONNECT_FAILED"
    DB_UNAVAILABLE = "DB_UNAVAILABLE"

    # Import setup
    IMPORT_EMPTY_INPUT = "IMPORT_EMPTY_INPUT"
    IMPORT_MISSING_MAPPING = "IMPORT_MISSING_MAPPING"
    IMPORT_INVALID_MAPPING = "IMPORT_INVALID_MAPPING"
    IMPORT_INVALID_ACTION = "IMPORT_INVALID_ACTION"
    IMPORT_INVALID_FILE = "IMPORT_INVALID_FILE"
    IMPORT_INVALID_OPTION = "IMPORT_INVALID_OPTION"

    # System
    INTERNAL_ERROR = "INTERNAL_ERROR"


class RowErrorType:
    """Per-row failure classifications reported in ``error_detail`` events."""

    MISSING_FIELDS = "MISSING_FIELDS"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    DATABASE_ERROR = "DATABASE_ERROR"
    CRITICAL_ERROR = "CRITICAL_ERROR"


class ErrorCategory:
    """Error categories for classification."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"
    UPSTREAM = "upstream"


class APIError(BaseModel):
    """Structured error response model."""

    code: str
    category: str
    message: str
    details: Optional[Dict[str, Any]] = None
    request_id: str
    timestamp: str
    retryable: bool = False


class APIException(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        code: str,
        message: str,
        category: str = ErrorCategory.INTERNAL,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
    ):
        self.code = code
        self.message = message
        self.category = category
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)


class EmptyInputError(APIException):
    """Raised when an upload has no usable lines."""

    def __init__(self, message: str = "Empty file"):
        super().__init__(
            code=ErrorCode.IMPORT_EMPTY_INPUT,
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class MissingMappingError(APIException):
    """Raised when an import is requested without a column mapping."""

    def __init__(self, message: str = "Column mapping not provided"):
        super().__init__(
            code=ErrorCode.IMPORT_MISSING_MAPPING,
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class InvalidMappingError(APIException):
    """Raised when a column mapping is malformed or targets unknown fields."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            code=ErrorCode.IMPORT_INVALID_MAPPING,
            message=message,
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class StoreError(Exception):
    """Error returned by the external property store.

    The message is surfaced verbatim to the caller in ``error_detail`` events.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.hint = hint
        super().__init__(message)


def translate_db_error(e: Exception) -> Optional[StoreError]:
    """
    Translate a database exception to a :class:`StoreError`.

    Returns None if the exception is not a psycopg error (caller should handle).
    """
    if not isinstance(e, psycopg.Error):
        return None

    diag = getattr(e, "diag", None)
    message = (getattr(diag, "message_primary", None) if diag else None) or str(e)
    return StoreError(
        message=message.strip(),
        code=getattr(e, "sqlstate", None),
        hint=getattr(diag, "message_hint", None) if diag else None,
    )


def create_error_response(
    request: Request,
    code: str,
    message: str,
    category: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    retryable: bool = False,
) -> JSONResponse:
    """Create a structured error response."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    error = APIError(
        code=code,
        category=category,
        message=message,
        details=details,
        request_id=request_id,
        timestamp=datetime.now(timezone.utc).isoformat(),
        retryable=retryable,
    )

    logger.error(
        f"API Error: {code} - {message}",
        extra={
            "error_code": code,
            "error_category": category,
            "request_id": request_id,
            "status_code": status_code,
            "details": details,
        },
    )

    metrics.record_error(code, category)

    return JSONResponse(
        status_code=status_code,
        content={"error": error.model_dump()},
    )


async def error_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException instances."""
    return create_error_response(
        request=request,
        code=exc.code,
        message=exc.message,
        category=exc.category,
        status_code=exc.status_code,
        details=exc.details,
        retryable=exc.retryable,
    )


async def generic_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception", exc_info=exc)
    message = "An internal error occurred"
    details: Optional[Dict[str, Any]] = None
    if settings.environment == "development":
        message = str(exc) or message
        details = {"exception_type": type(exc).__name__, "detail": str(exc)}
    return create_error_response(
        request=request,
        code=ErrorCode.INTERNAL_ERROR,
        message=message,
        category=ErrorCategory.INTERNAL,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        retryable=False,
        details=details,
    )


def setup_error_handlers(app: FastAPI) -> None:
    """Register error handlers with FastAPI app."""
    app.add_exception_handler(APIException, error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
