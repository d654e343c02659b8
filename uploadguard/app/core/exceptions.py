"""
Custom exception classes for the uploadguard request-processing layer.

This module defines the exception hierarchy that provides:
- Domain-specific exceptions for body parsing, uploads and throttling
- HTTP status code mapping for API responses
- Structured error information (code, message, data) for clients
- Optional response headers (e.g. Retry-After) carried by the exception
"""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.units import format_bytes


class ErrorCode(str, Enum):
    """
    Machine-readable error codes surfaced to API clients.

    Every failure mode of the ingestion pipeline and the rate limiter maps to
    exactly one of these codes.
    """

    # Request body errors
    BODY_PARSE_FAILED = "BODY_PARSE_FAILED"
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
    REQUEST_VALIDATION_FAILED = "REQUEST_VALIDATION_FAILED"

    # Upload errors
    MULTIPART_PARSE_FAILED = "MULTIPART_PARSE_FAILED"
    FILE_EXCEEDS_MAX_SIZE = "FILE_EXCEEDS_MAX_SIZE"
    UNEXPECTED_FILE_TYPES = "UNEXPECTED_FILE_TYPES"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"

    # Remote fetch errors
    REMOTE_FETCH_FAILED = "REMOTE_FETCH_FAILED"
    REMOTE_NOT_FOUND = "REMOTE_NOT_FOUND"

    # Throttling
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Generic
    HTTP_ERROR = "HTTP_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BaseCustomException(Exception):
    """
    Base exception class for all custom exceptions in uploadguard.

    Provides common functionality for error tracking, context preservation,
    and structured error information.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        data: Optional[Dict[str, Any]] = None,
        http_status_code: int = 500,
        correlation_id: Optional[str] = None,
        user_message: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Initialize base exception with structured error information.

        Args:
            message: Technical error message for developers
            error_code: Standardized error code for identification
            data: Additional machine-readable context sent to the client
            http_status_code: HTTP status code for API responses
            correlation_id: Request correlation ID for tracking
            user_message: User-friendly error message for display
            headers: Extra HTTP headers to attach to the error response
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.data = data or {}
        self.http_status_code = http_status_code
        self.correlation_id = correlation_id
        self.user_message = user_message or message
        self.headers = headers or {}
        self.traceback_info = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "data": self.data,
            "http_status_code": self.http_status_code,
            "correlation_id": self.correlation_id,
        }

    def add_context(self, key: str, value: Any) -> None:
        """Add additional context to the exception data."""
        self.data[key] = value

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"


class BodyParseError(BaseCustomException):
    """Raised when a JSON or url-encoded request body cannot be parsed."""

    def __init__(self, message: str, content_type: Optional[str] = None, **kwargs):
        super().__init__(
            message=f"Failed to parse request body: {message}",
            error_code=ErrorCode.BODY_PARSE_FAILED,
            data={"content_type": content_type},
            http_status_code=400,
            **kwargs
        )


class UnsupportedMediaTypeError(BaseCustomException):
    """Raised when the client does not accept any type the API produces."""

    def __init__(self, requested: Optional[str], accepted_types: List[str], **kwargs):
        super().__init__(
            message=(
                f"Requested type '{requested}' is not supported, "
                f"expected one of {', '.join(accepted_types)}"
            ),
            error_code=ErrorCode.UNSUPPORTED_TYPE,
            data={"reqtype": requested, "acceptedTypes": list(accepted_types)},
            http_status_code=406,
            **kwargs
        )


class MultipartParseError(BaseCustomException):
    """Raised for malformed multipart streams."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.MULTIPART_PARSE_FAILED,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            data=data,
            http_status_code=400,
            **kwargs
        )


class UploadSizeExceededError(MultipartParseError):
    """Raised when a streamed file crosses the size cutoff mid-upload."""

    def __init__(self, file_name: Optional[str], max_size: int, **kwargs):
        super().__init__(
            message=(
                f"File '{file_name}' exceeds the maximum upload size "
                f"of {format_bytes(max_size)}"
            ),
            error_code=ErrorCode.FILE_EXCEEDS_MAX_SIZE,
            data={"fileName": file_name, "maxSize": format_bytes(max_size)},
            **kwargs
        )


class ValidationFailedError(BaseCustomException):
    """
    Aggregated upload validation failure.

    Always carries the complete list of violations found across every
    checked file; violations are never reported one at a time.
    """

    def __init__(self, violations: List[Any], schema_name: str = "fileupload", **kwargs):
        self.violations = list(violations)
        summary = ", ".join(v.message for v in self.violations)
        super().__init__(
            message=f"Validation failed for {schema_name}: {summary}",
            error_code=ErrorCode.VALIDATION_FAILED,
            data={
                "schemaName": schema_name,
                "errors": [v.to_dict() for v in self.violations],
            },
            http_status_code=400,
            user_message=summary,
            **kwargs
        )


class ExtractionError(BaseCustomException):
    """Raised when an archive cannot be expanded."""

    def __init__(self, message: str, archive: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code=ErrorCode.EXTRACTION_FAILED,
            data={"archive": archive},
            http_status_code=400,
            **kwargs
        )


class RemoteFetchError(BaseCustomException):
    """Raised for transport failures or error responses from a remote host."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        upstream_status: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.REMOTE_FETCH_FAILED,
            data={"url": url, "upstreamStatus": upstream_status},
            http_status_code=502,
            **kwargs
        )


class RemoteNotFoundError(BaseCustomException):
    """Raised when the remote host answers 404 for the requested URL."""

    def __init__(self, url: str, **kwargs):
        super().__init__(
            message=f"Remote resource not found: {url}",
            error_code=ErrorCode.REMOTE_NOT_FOUND,
            data={"url": url},
            http_status_code=404,
            **kwargs
        )


class RateLimitExceededError(BaseCustomException):
    """Raised when a client identity has exhausted its request quota."""

    def __init__(self, limit: int, reset_at: float, retry_after: int, **kwargs):
        super().__init__(
            message=f"Too many requests, retry in {retry_after} second(s)",
            error_code=ErrorCode.RATE_LIMIT_EXCEEDED,
            data={"limit": limit, "resetAt": reset_at, "retryAfter": retry_after},
            http_status_code=429,
            **kwargs
        )


def get_exception_response_data(exception: BaseCustomException) -> Dict[str, Any]:
    """
    Extract response data from a custom exception for API responses.

    Args:
        exception: Custom exception instance

    Returns:
        Dictionary containing structured error data
    """
    error: Dict[str, Any] = {
        "code": exception.error_code.value,
        "message": exception.user_message,
    }
    if exception.data:
        error["data"] = exception.data
    return {
        "success": False,
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "correlation_id": exception.correlation_id,
    }


__all__ = [
    "ErrorCode",
    "BaseCustomException",
    "BodyParseError",
    "UnsupportedMediaTypeError",
    "MultipartParseError",
    "UploadSizeExceededError",
    "ValidationFailedError",
    "ExtractionError",
    "RemoteFetchError",
    "RemoteNotFoundError",
    "RateLimitExceededError",
    "get_exception_response_data",
]
