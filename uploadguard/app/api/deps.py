"""
Dependency injection module for API routes.

Collaborators are created once by ``create_application`` and stored on
``app.state``; the functions here hand them to routes. Upload dependencies
are produced by ``file_upload_parser`` and ``url_upload_parser`` so each
route declares its own accepted types and archive handling.
"""

from typing import Iterable, Optional, Union

import httpx
from fastapi import Depends, Request

from ...config.settings import Settings, get_settings
from ..models.domain.upload import IngestionResult, UploadPolicy
from ..upload.multipart import MultipartIngestor
from ..upload.remote import RemoteIngestor
from ..upload.validator import FileValidator
from ..utils.logging import get_logger

logger = get_logger(__name__)


def get_settings_dependency(request: Request) -> Settings:
    """
    Application settings (FastAPI dependency).

    Returns the settings the application was created with, falling back to
    the environment-loaded settings.
    """
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_file_validator(request: Request) -> FileValidator:
    validator = getattr(request.app.state, "file_validator", None)
    return validator if validator is not None else FileValidator()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Shared HTTP client for remote fetches."""
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise RuntimeError("HTTP client has not been initialized")
    return client


def file_upload_parser(
    accepted_types: Union[str, Iterable[str]],
    expand_archives: bool = False,
    delete_archive_after_expand: bool = True,
    max_file_size: Optional[int] = None
):
    """
    Build a dependency that ingests a multipart upload.

    Args:
        accepted_types: MIME type(s) files must match
        expand_archives: Expand zip uploads into a directory
        delete_archive_after_expand: Remove the zip once expanded
        max_file_size: Per-route size limit in bytes, defaults to settings

    Returns:
        Dependency yielding the IngestionResult, or None for
        non-multipart requests

    Usage:
        @router.post("/avatar")
        async def upload_avatar(
            upload: IngestionResult = Depends(file_upload_parser("image/png"))
        ):
            ...
    """
    async def parse_file_upload(
        request: Request,
        settings: Settings = Depends(get_settings_dependency),
        validator: FileValidator = Depends(get_file_validator)
    ) -> Optional[IngestionResult]:
        policy = UploadPolicy.from_settings(
            settings,
            accepted_types,
            expand_archives=expand_archives,
            delete_archive_after_expand=delete_archive_after_expand,
            max_file_size=max_file_size,
        )
        return await MultipartIngestor(validator=validator).ingest(request, policy)

    return parse_file_upload


def url_upload_parser(
    accepted_types: Union[str, Iterable[str]],
    expand_archives: bool = False,
    delete_archive_after_expand: bool = True,
    max_file_size: Optional[int] = None
):
    """
    Build a dependency that fetches the body's ``url`` and ingests it.

    Takes the same arguments as ``file_upload_parser``. The dependency
    yields None when the body carries no ``url``.
    """
    async def parse_url_upload(
        request: Request,
        settings: Settings = Depends(get_settings_dependency),
        validator: FileValidator = Depends(get_file_validator),
        client: httpx.AsyncClient = Depends(get_http_client)
    ) -> Optional[IngestionResult]:
        policy = UploadPolicy.from_settings(
            settings,
            accepted_types,
            expand_archives=expand_archives,
            delete_archive_after_expand=delete_archive_after_expand,
            max_file_size=max_file_size,
        )
        return await RemoteIngestor(client, validator=validator).ingest(request, policy)

    return parse_url_upload


__all__ = [
    "get_settings_dependency",
    "get_file_validator",
    "get_http_client",
    "file_upload_parser",
    "url_upload_parser",
]
