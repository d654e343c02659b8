"""
FastAPI application entry point for uploadguard.

Builds the application around the upload ingestion pipeline and the request
rate limiter. Collaborators (settings, counter store, HTTP client, type
sniffer) are created here or injected by the caller and stored on
``app.state``; routes and middleware receive them from there.

Middleware, outermost first:
- GZip compression
- Request context (correlation IDs)
- Security headers
- Request/response logging
- Error handler
- Rate limiter
- Accepted types check
- Body parser
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware

from uploadguard.app.api.middleware.body import AcceptedTypesMiddleware, BodyParserMiddleware
from uploadguard.app.api.middleware.error_handler import (
    ErrorHandler, ErrorHandlerMiddleware, setup_error_handlers
)
from uploadguard.app.api.middleware.logging import (
    RequestContextMiddleware, RequestResponseLoggingMiddleware
)
from uploadguard.app.api.middleware.rate_limit import RateLimiter, RateLimitMiddleware
from uploadguard.app.api.middleware.security import SecurityHeadersMiddleware
from uploadguard.app.api.routes import uploads
from uploadguard.app.core.counter_store import CounterStore, create_counter_store
from uploadguard.app.upload.sniffer import TypeSniffer
from uploadguard.app.upload.validator import FileValidator
from uploadguard.app.utils.logging import get_logger, initialize_logging_from_settings
from uploadguard.config.settings import Settings, get_settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the shared HTTP client and counter store on shutdown."""
    logger.info("=== uploadguard starting up ===", environment=app.state.settings.environment)
    try:
        yield
    finally:
        logger.info("=== uploadguard shutting down ===")

        try:
            await app.state.http_client.aclose()
            logger.info("HTTP client closed")
        except Exception as e:
            logger.error(f"Error closing HTTP client: {e}")

        try:
            await app.state.counter_store.close()
            logger.info("Rate limit store closed")
        except Exception as e:
            logger.error(f"Error closing rate limit store: {e}")


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.remote_fetch.timeout_seconds,
        follow_redirects=settings.remote_fetch.follow_redirects,
    )


def create_application(
    settings: Optional[Settings] = None,
    counter_store: Optional[CounterStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    sniffer: Optional[TypeSniffer] = None
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Application settings, loaded from the environment if omitted
        counter_store: Rate limit counter store, built from settings if omitted
        http_client: Client for remote fetches, built from settings if omitted
        sniffer: Type sniffer used by upload validation

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="uploadguard API",
        description="File upload validation, ingestion and request throttling",
        version=settings.app_version,
        debug=settings.debug,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.counter_store = counter_store or create_counter_store(settings)
    app.state.http_client = http_client or create_http_client(settings)
    app.state.file_validator = FileValidator(sniffer=sniffer)
    app.state.error_handler = ErrorHandler(is_development=settings.is_development)

    configure_middleware(app)
    configure_routes(app)
    setup_error_handlers(app, app.state.error_handler)

    return app


def configure_middleware(app: FastAPI) -> None:
    """Configure application middleware stack (last added runs first)."""
    settings: Settings = app.state.settings
    error_handler: ErrorHandler = app.state.error_handler

    app.add_middleware(BodyParserMiddleware)
    app.add_middleware(AcceptedTypesMiddleware, accepted_types=settings.api.accepted_types)

    if settings.api.request_limit > 0:
        limiter = RateLimiter(
            store=app.state.counter_store,
            limit=settings.api.request_limit,
            window_seconds=settings.api.request_limit_duration,
            key_prefix=settings.rate_limit_store.key_prefix,
        )
        app.add_middleware(
            RateLimitMiddleware,
            limiter=limiter,
            exempt_paths=settings.api.rate_limit_exempt_paths,
            error_handler=error_handler,
            trusted_proxies=settings.api.trusted_proxies,
        )
    else:
        logger.warning("Request rate limiting is disabled")

    app.add_middleware(ErrorHandlerMiddleware, error_handler=error_handler)
    app.add_middleware(RequestResponseLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    logger.info("Middleware configuration completed")


def configure_routes(app: FastAPI) -> None:
    """Configure application routes and API endpoints."""

    @app.get("/health", tags=["system"], include_in_schema=False)
    async def health_check():
        """System health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(
        uploads.router,
        prefix="/api/v1/uploads",
        tags=["uploads"]
    )

    logger.info("Routes configuration completed")


def create_app() -> FastAPI:
    """Application factory for ``uvicorn --factory``."""
    settings = get_settings()
    initialize_logging_from_settings(settings)
    return create_application(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("uploadguard.main:create_app", factory=True, host="0.0.0.0", port=8000)
