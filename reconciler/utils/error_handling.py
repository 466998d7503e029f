"""
Centralized Error Handling for the Subscription Reconciler

This module provides:
- Custom exception hierarchy for webhook ingestion
- Standardized {"error", "code"} responses
- Error logging with request context
- Database error handling
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("reconciler.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Webhook authentication / payload (400)
    MISSING_SIGNATURE = "MISSING_SIGNATURE"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"

    # Request validation (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"

    # Concurrency (409)
    EVENT_IN_PROGRESS = "EVENT_IN_PROGRESS"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"

    # Processing (500)
    PROCESSING_ERROR = "PROCESSING_ERROR"
    ACCOUNT_NOT_RESOLVED = "ACCOUNT_NOT_RESOLVED"

    # Database (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the JSON error body"""
        return {"error": self.message, "code": self.code.value}


# ============================================================================
# Webhook Exceptions
# ============================================================================

class WebhookSignatureException(AppException):
    """Signature header missing or not valid for the body"""

    def __init__(self, provider: str, missing: bool = False):
        super().__init__(
            code=ErrorCode.MISSING_SIGNATURE if missing else ErrorCode.INVALID_SIGNATURE,
            message="Missing signature" if missing else "Invalid signature",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"provider": provider},
        )


class WebhookPayloadException(AppException):
    """Body is not JSON or does not match the provider's event shape"""

    def __init__(self, provider: str, reason: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.INVALID_PAYLOAD,
            message="Invalid payload",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"provider": provider, "reason": reason},
            original_error=original_error,
        )


class EventInProgressException(AppException):
    """Another delivery of the same event currently holds the ledger claim"""

    def __init__(self, provider: str, event_id: str):
        super().__init__(
            code=ErrorCode.EVENT_IN_PROGRESS,
            message="Event is already being processed",
            status_code=status.HTTP_409_CONFLICT,
            details={"provider": provider, "event_id": event_id},
        )


class WebhookProcessingException(AppException):
    """Processing failed after the event was registered; the provider should retry"""

    def __init__(self, provider: str, event_id: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.PROCESSING_ERROR,
            message="Webhook processing failed",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"provider": provider, "event_id": event_id},
            original_error=original_error,
        )


class AccountResolutionException(AppException):
    """No billing account matched an event whose kind requires one"""

    def __init__(self, provider: str, event_type: str):
        super().__init__(
            code=ErrorCode.ACCOUNT_NOT_RESOLVED,
            message=f"No billing account found for {provider} event {event_type}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"provider": provider, "event_type": event_type},
        )


class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"
        else:
            message = f"{resource_type} not found"
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
) -> JSONResponse:
    """Create a standardized error response"""
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "code": code.value},
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors"""
    logger.warning(
        f"ValidationError: {len(exc.errors())} validation errors",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


# ============================================================================
# Error Tracking Middleware
# ============================================================================

class ErrorTrackingMiddleware:
    """Middleware for tracking and logging all errors"""

    def __init__(self, app: FastAPI):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        try:
            await self.app(scope, receive, send)
        except Exception as exc:
            logger.error(
                f"Request failed: {scope.get('path', 'unknown')}",
                extra={
                    "path": scope.get("path"),
                    "method": scope.get("method"),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True,
            )
            raise
