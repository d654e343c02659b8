"""
Request Rate Limiting Middleware

Fixed-window throttling per client identity. Each client (by IP address) may
make ``limit`` requests per window; further requests are rejected with 429
before any route logic runs, carrying the reset time so the client can back
off. Counters live in a shared CounterStore whose ``hit`` is atomic.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from ...core.counter_store import CounterStore
from ...core.exceptions import RateLimitExceededError
from ...utils.logging import get_logger, log_security_event
from .error_handler import ErrorHandler

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an admission check for one request."""
    accepted: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.accepted:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimiter:
    """
    Fixed-window request quota per client identity.

    Idle -> Counting on the first request of a window, Counting -> Exhausted
    when the quota is used up, back to Idle when the window expires.
    """

    def __init__(
        self,
        store: CounterStore,
        limit: int,
        window_seconds: float,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] = time.time
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self._clock = clock

    def key_for(self, identity: str) -> str:
        return f"{self.key_prefix}:{identity}"

    async def admit(self, identity: str) -> RateLimitDecision:
        """Count one request for ``identity`` and decide whether it may proceed."""
        hit = await self.store.hit(self.key_for(identity), self.limit, self.window_seconds)
        retry_after = max(math.ceil(hit.reset_at - self._clock()), 0)
        return RateLimitDecision(
            accepted=hit.accepted,
            limit=self.limit,
            remaining=max(self.limit - hit.count, 0),
            reset_at=hit.reset_at,
            retry_after=retry_after,
        )


def get_client_ip(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Extract client IP address from request.

    Forwarding headers are only read when the connecting peer is one of
    ``trusted_proxies``; otherwise the peer address is the identity.
    """
    peer = request.client.host if request.client else None

    if peer is not None and peer in trusted_proxies:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()

    return peer or "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects requests from clients that exhausted their quota."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: RateLimiter,
        exempt_paths: Optional[Iterable[str]] = None,
        identify: Optional[Callable[[Request], str]] = None,
        error_handler: Optional[ErrorHandler] = None,
        trusted_proxies: Optional[Iterable[str]] = None
    ):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = set(exempt_paths or ())
        self.trusted_proxies = frozenset(trusted_proxies or ())
        self.identify = identify or self._client_identity
        self.error_handler = error_handler or ErrorHandler()

    def _client_identity(self, request: Request) -> str:
        return get_client_ip(request, self.trusted_proxies)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        identity = self.identify(request)
        decision = await self.limiter.admit(identity)

        if not decision.accepted:
            log_security_event(
                "rate_limit_exceeded",
                client_ip=identity,
                path=request.url.path,
                limit=decision.limit,
                retry_after=decision.retry_after,
            )
            exc = RateLimitExceededError(
                limit=decision.limit,
                reset_at=decision.reset_at,
                retry_after=decision.retry_after,
                headers=decision.headers(),
            )
            return self.error_handler.handle_custom_exception(request, exc)

        response = await call_next(request)
        for header, value in decision.headers().items():
            response.headers.setdefault(header, value)
        return response


__all__ = [
    "RateLimitDecision",
    "RateLimiter",
    "RateLimitMiddleware",
    "get_client_ip",
]
