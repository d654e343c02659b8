# Application configuration for uploadguard.
#
# Nested sections map to environment variables with the UPLOADGUARD_ prefix
# and "__" as the nesting delimiter (see the examples at the bottom).

from functools import lru_cache
from pathlib import Path
import tempfile
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from uploadguard.app.utils.units import parse_bytes, parse_duration


class ApiSettings(BaseModel):
    """API surface settings: content negotiation and request throttling."""
    accepted_types: list[str] = Field(
        default=["application/json"],
        description="Content types the API accepts (may use MIME types or extension names)"
    )
    request_limit: int = Field(
        default=100,
        description="Maximum requests per client within one limit window (0 disables throttling)"
    )
    request_limit_duration: float = Field(
        default=60.0,
        description="Length of the rate limit window, e.g. '1s', '500ms', '1m' (stored as seconds)"
    )
    rate_limit_exempt_paths: list[str] = Field(
        default=["/health"],
        description="Paths never counted against the request limit"
    )
    trusted_proxies: list[str] = Field(
        default=[],
        description="Peer addresses whose X-Forwarded-For/X-Real-IP headers identify the client"
    )

    @field_validator("request_limit_duration", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        if isinstance(value, str):
            return parse_duration(value)
        return value

    @field_validator("request_limit")
    @classmethod
    def _non_negative_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("request_limit cannot be negative")
        return value


class UploadSettings(BaseModel):
    """File upload settings."""
    file_upload_max_file_size: int = Field(
        default=50 * 1024 * 1024,
        description="Maximum size of a single uploaded file, e.g. '50mb' (stored as bytes)"
    )
    upload_temp_dir: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "uploadguard",
        description="Staging directory for uploaded and fetched files"
    )

    @field_validator("file_upload_max_file_size", mode="before")
    @classmethod
    def _parse_size(cls, value: Any) -> int:
        if isinstance(value, str):
            return parse_bytes(value)
        return value


class RateLimitStoreSettings(BaseModel):
    """Counter store used by the rate limiter."""
    backend: str = Field(
        default="memory",
        description="Counter store backend (memory/redis)"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL used when backend is 'redis'"
    )
    key_prefix: str = Field(
        default="uploadguard:ratelimit",
        description="Prefix for rate limit counter keys"
    )

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "redis"):
            raise ValueError(f"Unknown rate limit store backend: {value}")
        return value


class RemoteFetchSettings(BaseModel):
    """Outbound fetch settings for URL uploads."""
    timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to remote fetches"
    )
    follow_redirects: bool = Field(
        default=True,
        description="Follow HTTP redirects when fetching remote files"
    )


class LoggingSettings(BaseModel):
    """Logging configuration settings."""
    level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    format: str = Field(
        default="text",
        description="Log format (json/text)"
    )
    enable_correlation_ids: bool = Field(
        default=True,
        description="Enable correlation ID tracking"
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional log file path"
    )

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {value}")
        return value


class Settings(BaseSettings):
    """
    Application configuration settings.

    Loaded from environment variables, an optional .env file and defaults.
    """

    app_name: str = Field(
        default="uploadguard",
        description="Application name"
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    debug: bool = Field(
        default=False,
        description="Debug mode enabled"
    )

    environment: str = Field(
        default="development",
        description="Environment (development/staging/production)"
    )

    api: ApiSettings = Field(
        default_factory=ApiSettings,
        description="API surface settings"
    )

    uploads: UploadSettings = Field(
        default_factory=UploadSettings,
        description="File upload settings"
    )

    rate_limit_store: RateLimitStoreSettings = Field(
        default_factory=RateLimitStoreSettings,
        description="Rate limit counter store"
    )

    remote_fetch: RemoteFetchSettings = Field(
        default_factory=RemoteFetchSettings,
        description="Remote fetch settings"
    )

    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_prefix="UPLOADGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.debug or self.environment.lower() in ("development", "dev", "local")

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    def get_nested_setting(self, path: str, default: Any = None) -> Any:
        """
        Get a nested setting using dot notation.

        Args:
            path: Dot-separated path (e.g., "uploads.upload_temp_dir")
            default: Default value if path not found

        Returns:
            Setting value or default
        """
        try:
            current = self
            for part in path.split('.'):
                current = getattr(current, part)
            return current
        except AttributeError:
            return default


@lru_cache()
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


"""
Environment Variable Examples:
=============================

UPLOADGUARD_DEBUG=true
UPLOADGUARD_ENVIRONMENT=production

UPLOADGUARD_API__ACCEPTED_TYPES='["application/json", "text/html"]'
UPLOADGUARD_API__REQUEST_LIMIT=100
UPLOADGUARD_API__REQUEST_LIMIT_DURATION=1s
UPLOADGUARD_API__TRUSTED_PROXIES='["10.0.0.2"]'

UPLOADGUARD_UPLOADS__FILE_UPLOAD_MAX_FILE_SIZE=50mb
UPLOADGUARD_UPLOADS__UPLOAD_TEMP_DIR=/var/tmp/uploads

UPLOADGUARD_RATE_LIMIT_STORE__BACKEND=redis
UPLOADGUARD_RATE_LIMIT_STORE__REDIS_URL=redis://redis:6379/0

UPLOADGUARD_LOGGING__LEVEL=DEBUG
UPLOADGUARD_LOGGING__FORMAT=json
"""
