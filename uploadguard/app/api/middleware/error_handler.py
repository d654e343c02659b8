"""
Global Error Handler Middleware for uploadguard

This module turns every failure into a structured JSON error response with
the right HTTP status code. Nothing raised by the ingestion pipeline, the
rate limiter or the body collaborators is allowed to escape as an unhandled
fault.

Error Response Structure:
    {
        "success": false,
        "error": {"code": ..., "message": ..., "data": {...}},
        "timestamp": ...,
        "correlation_id": ...
    }

- Error codes for programmatic handling
- User-facing messages with paths and secrets scrubbed
- Debug details only in development
- Correlation IDs for request tracing
"""

import re
import time
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR
from starlette.types import ASGIApp

from ...core.exceptions import (
    BaseCustomException, ErrorCode, get_exception_response_data
)
from ...utils.logging import get_logger


class ErrorSeverity(str, Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification."""
    VALIDATION = "validation"
    THROTTLING = "throttling"
    EXTERNAL = "external"
    PROCESSING = "processing"
    SYSTEM = "system"


_ERROR_CLASSIFICATION: Dict[ErrorCode, Tuple[ErrorCategory, ErrorSeverity]] = {
    ErrorCode.BODY_PARSE_FAILED: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.UNSUPPORTED_TYPE: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.REQUEST_VALIDATION_FAILED: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.MULTIPART_PARSE_FAILED: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.FILE_EXCEEDS_MAX_SIZE: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.VALIDATION_FAILED: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.EXTRACTION_FAILED: (ErrorCategory.PROCESSING, ErrorSeverity.MEDIUM),
    ErrorCode.REMOTE_FETCH_FAILED: (ErrorCategory.EXTERNAL, ErrorSeverity.MEDIUM),
    ErrorCode.REMOTE_NOT_FOUND: (ErrorCategory.EXTERNAL, ErrorSeverity.LOW),
    ErrorCode.RATE_LIMIT_EXCEEDED: (ErrorCategory.THROTTLING, ErrorSeverity.LOW),
    ErrorCode.HTTP_ERROR: (ErrorCategory.VALIDATION, ErrorSeverity.LOW),
    ErrorCode.INTERNAL_ERROR: (ErrorCategory.SYSTEM, ErrorSeverity.CRITICAL),
}


class ErrorHandler:
    """Centralized error handling with classification and formatting."""

    def __init__(self, is_development: bool = False):
        self.logger = get_logger(__name__)
        self.is_development = is_development

    def classify_error(self, error_code: ErrorCode) -> Tuple[ErrorCategory, ErrorSeverity]:
        """Classify error by category and severity."""
        return _ERROR_CLASSIFICATION.get(error_code, (ErrorCategory.SYSTEM, ErrorSeverity.MEDIUM))

    def handle_custom_exception(
        self,
        request: Request,
        exc: BaseCustomException
    ) -> JSONResponse:
        """
        Handle custom application exceptions.

        Args:
            request: HTTP request object
            exc: Custom exception to handle

        Returns:
            JSON error response carrying the exception's status and headers
        """
        correlation_id = self._get_correlation_id(request, exc)
        category, severity = self.classify_error(exc.error_code)

        response = get_exception_response_data(exc)
        response["correlation_id"] = correlation_id
        response["error"]["message"] = self._sanitize_error_message(response["error"]["message"])

        if self.is_development:
            response["error"]["debug"] = {
                "exception_type": type(exc).__name__,
                "technical_message": exc.message,
                "request_url": str(request.url),
                "request_method": request.method,
            }

        self._log_error(exc, request, correlation_id, category, severity)

        return JSONResponse(
            status_code=exc.http_status_code,
            content=response,
            headers={**exc.headers, "X-Correlation-ID": correlation_id}
        )

    def handle_http_exception(
        self,
        request: Request,
        exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle FastAPI/Starlette HTTP exceptions (404 routes, 405 methods...)."""
        correlation_id = self._get_correlation_id(request)

        response = {
            "success": False,
            "error": {
                "code": ErrorCode.HTTP_ERROR.value,
                "message": self._sanitize_error_message(str(exc.detail)),
                "data": {"http_status": exc.status_code},
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
        }

        self.logger.warning(
            f"HTTP exception: {exc.status_code} - {exc.detail}",
            correlation_id=correlation_id,
            status_code=exc.status_code,
            url=str(request.url),
            method=request.method,
        )

        headers = dict(getattr(exc, "headers", None) or {})
        headers["X-Correlation-ID"] = correlation_id
        return JSONResponse(status_code=exc.status_code, content=response, headers=headers)

    def handle_validation_error(
        self,
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request parameter validation errors raised by FastAPI."""
        correlation_id = self._get_correlation_id(request)

        validation_errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]

        response = {
            "success": False,
            "error": {
                "code": ErrorCode.REQUEST_VALIDATION_FAILED.value,
                "message": "Request validation failed",
                "data": {
                    "validation_errors": validation_errors,
                    "error_count": len(validation_errors),
                },
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
        }

        self.logger.warning(
            f"Validation error: {len(validation_errors)} field(s) failed validation",
            correlation_id=correlation_id,
            url=str(request.url),
            method=request.method,
        )

        return JSONResponse(
            status_code=422,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def handle_unexpected_error(
        self,
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected/unhandled exceptions."""
        correlation_id = self._get_correlation_id(request)

        response = {
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred. Please try again later.",
                "data": {"error_type": type(exc).__name__},
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
        }

        if self.is_development:
            response["error"]["debug"] = {
                "exception_message": str(exc),
                "traceback": traceback.format_exception(type(exc), exc, exc.__traceback__),
                "request_url": str(request.url),
                "request_method": request.method,
            }

        self.logger.error(
            f"Unexpected error: {type(exc).__name__}: {exc}",
            correlation_id=correlation_id,
            exception_type=type(exc).__name__,
            url=str(request.url),
            method=request.method,
            exc_info=exc,
        )

        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=response,
            headers={"X-Correlation-ID": correlation_id}
        )

    def _get_correlation_id(
        self,
        request: Request,
        exc: Optional[BaseCustomException] = None
    ) -> str:
        """Get or generate correlation ID for request tracking."""
        if exc and exc.correlation_id:
            return exc.correlation_id

        correlation_id = getattr(request.state, "correlation_id", None)
        if correlation_id:
            return correlation_id

        correlation_id = request.headers.get("X-Correlation-ID")
        if correlation_id:
            return correlation_id

        return str(uuid.uuid4())

    def _sanitize_error_message(self, message: str) -> str:
        """Remove file paths, connection strings and credentials from a message."""
        message = re.sub(r'redis://[^\s]*', '[connection_string]', message)
        message = re.sub(r'(?<![:/\w])/[^\s\'"]+', '[path]', message)
        message = re.sub(r'[Tt]oken[:\s=]+[^\s]+', 'token=[redacted]', message)
        message = re.sub(r'[Pp]assword[:\s=]+[^\s]+', 'password=[redacted]', message)
        return message

    def _log_error(
        self,
        exc: BaseCustomException,
        request: Request,
        correlation_id: str,
        category: ErrorCategory,
        severity: ErrorSeverity
    ) -> None:
        """Log error with a level matching its severity."""
        log_data = {
            "correlation_id": correlation_id,
            "category": category.value,
            "severity": severity.value,
            "url": str(request.url),
            "method": request.method,
            "client_ip": request.client.host if request.client else "unknown",
            "error_code": exc.error_code.value,
            "technical_message": exc.message,
        }

        if severity == ErrorSeverity.CRITICAL:
            self.logger.critical(f"Critical error: {exc}", **log_data)
        elif severity == ErrorSeverity.HIGH:
            self.logger.error(f"High severity error: {exc}", **log_data)
        elif severity == ErrorSeverity.MEDIUM:
            self.logger.warning(f"Medium severity error: {exc}", **log_data)
        else:
            self.logger.info(f"Low severity error: {exc}", **log_data)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Catches exceptions raised by inner middleware.

    Route and dependency errors are handled by the exception handlers
    registered in ``setup_error_handlers``; this middleware covers the
    collaborators (body parsing, content negotiation) that run before routing.
    """

    def __init__(self, app: ASGIApp, error_handler: Optional[ErrorHandler] = None, slow_request_seconds: float = 5.0):
        super().__init__(app)
        self.error_handler = error_handler or ErrorHandler()
        self.slow_request_seconds = slow_request_seconds
        self.logger = get_logger(__name__)

    async def dispatch(self, request: Request, call_next) -> StarletteResponse:
        start_time = time.time()

        try:
            return await call_next(request)

        except BaseCustomException as exc:
            return self.error_handler.handle_custom_exception(request, exc)

        except StarletteHTTPException as exc:
            return self.error_handler.handle_http_exception(request, exc)

        except Exception as exc:
            return self.error_handler.handle_unexpected_error(request, exc)

        finally:
            duration = time.time() - start_time
            if duration > self.slow_request_seconds:
                self.logger.warning(
                    f"Slow request: {request.method} {request.url.path} took {duration:.2f}s"
                )


def setup_error_handlers(app: FastAPI, error_handler: ErrorHandler) -> None:
    """
    Register exception handlers for route and dependency errors.

    Args:
        app: FastAPI application instance
        error_handler: Shared error handler
    """

    @app.exception_handler(BaseCustomException)
    async def custom_exception_handler(request: Request, exc: BaseCustomException):
        return error_handler.handle_custom_exception(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_handler.handle_http_exception(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_handler.handle_validation_error(request, exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        return error_handler.handle_unexpected_error(request, exc)

    get_logger(__name__).info("Global error handlers configured")


__all__ = [
    "ErrorHandler",
    "ErrorHandlerMiddleware",
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorMetrics",
    "setup_error_handlers",
]
