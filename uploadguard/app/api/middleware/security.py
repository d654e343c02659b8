"""Security headers applied to every response."""

from typing import Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


class SecurityHeaders:
    """Security headers for HTTP responses."""

    @staticmethod
    def get_security_headers(https: bool = False) -> Dict[str, str]:
        headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "X-XSS-Protection": "0",
            "X-DNS-Prefetch-Control": "off",
            "X-Download-Options": "noopen",
            "X-Permitted-Cross-Domain-Policies": "none",
            "Content-Security-Policy": (
                "default-src 'self'; "
                "object-src 'none'; "
                "base-uri 'self'; "
                "frame-ancestors 'none'; "
                "form-action 'self'"
            ),
            "Cross-Origin-Opener-Policy": "same-origin",
            "Cross-Origin-Resource-Policy": "same-origin",
            "Referrer-Policy": "no-referrer",
            "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
        }
        # HSTS only means something over TLS
        if https:
            headers["Strict-Transport-Security"] = "max-age=15552000; includeSubDomains"
        return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        https = request.url.scheme == "https"
        for header, value in SecurityHeaders.get_security_headers(https).items():
            response.headers.setdefault(header, value)
        return response


__all__ = ["SecurityHeaders", "SecurityHeadersMiddleware"]
