"""
Request logging middleware for uploadguard.

RequestContextMiddleware runs outermost: it establishes the correlation ID
that every log line and error response of the request carries, and echoes it
back as ``X-Correlation-ID``. RequestResponseLoggingMiddleware logs one line
per request and one per response with timing.
"""

import time
import uuid
from typing import Callable, Dict, Optional, Set

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ...utils.logging import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
)
from .rate_limit import get_client_ip


CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingConfig:
    """Configuration for request logging behavior."""

    def __init__(
        self,
        excluded_paths: Optional[Set[str]] = None,
        excluded_headers: Optional[Set[str]] = None,
        log_query_params: bool = True,
        log_user_agent: bool = True,
    ):
        """
        Args:
            excluded_paths: Paths skipped by request/response logging
            excluded_headers: Header names never written to logs
            log_query_params: Whether to log query parameters
            log_user_agent: Whether to log user agent information
        """
        self.excluded_paths = excluded_paths if excluded_paths is not None else {
            "/health",
            "/favicon.ico",
            "/docs",
            "/openapi.json",
            "/redoc",
        }
        self.excluded_headers = excluded_headers or {
            "authorization",
            "cookie",
            "x-api-key",
            "x-auth-token",
        }
        self.log_query_params = log_query_params
        self.log_user_agent = log_user_agent


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware to establish request context with correlation IDs and timing.

    This middleware should be applied first to ensure all other middleware
    and route handlers have access to the request context.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = get_logger("middleware.context")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        set_correlation_id(correlation_id)

        request.state.correlation_id = correlation_id
        request.state.start_time = time.time()

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        except Exception as exc:
            self.logger.error(
                "Request processing failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            clear_correlation_id()


class RequestResponseLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and its response with duration."""

    def __init__(self, app: ASGIApp, config: Optional[RequestLoggingConfig] = None):
        super().__init__(app)
        self.config = config or RequestLoggingConfig()
        self.logger = get_logger("middleware.request_response")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.config.excluded_paths:
            return await call_next(request)

        start_time = time.time()
        self._log_request(request)

        response = await call_next(request)

        duration = time.time() - start_time
        log = self.logger.warning if response.status_code >= 400 else self.logger.info
        log(
            "HTTP response sent",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        return response

    def _log_request(self, request: Request) -> None:
        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": get_client_ip(request),
            "content_type": request.headers.get("content-type"),
            "content_length": request.headers.get("content-length"),
            "headers": self._filter_headers(dict(request.headers)),
        }
        if self.config.log_query_params and request.query_params:
            context["query_params"] = dict(request.query_params)
        if self.config.log_user_agent:
            context["user_agent"] = request.headers.get("user-agent", "unknown")[:100]

        self.logger.info("HTTP request received", **context)

    def _filter_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Mask sensitive headers."""
        return {
            name: ("***" if name.lower() in self.config.excluded_headers else value)
            for name, value in headers.items()
        }


__all__ = [
    "RequestLoggingConfig",
    "RequestContextMiddleware",
    "RequestResponseLoggingMiddleware",
    "CORRELATION_HEADER",
]
