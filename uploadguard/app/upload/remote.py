"""
Remote URL ingestion.

Fetches the resource named by the ``url`` body field as a stream, writes it to
the staging directory and runs the same validation/expansion pipeline as a
multipart upload.
"""

import re
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple

import aiofiles
import aiofiles.os
import httpx
from starlette.requests import Request

from ..core.exceptions import RemoteFetchError, RemoteNotFoundError, UploadSizeExceededError
from ..models.domain.upload import IngestedFile, IngestionResult, UploadPolicy
from ..utils.logging import get_logger, performance_context
from .ingestor import BaseIngestor

logger = get_logger(__name__)

REMOTE_FIELD_NAME = "file"
DEFAULT_SUBTYPE = "bin"
CHUNK_SIZE = 64 * 1024

_SUBTYPE_RE = re.compile(r"[^a-z0-9.+-]")


def parse_content_type(header: Optional[str]) -> Tuple[Optional[str], str]:
    """
    Split a Content-Type header into (mime type, file suffix).

    ``image/png; charset=...`` gives ``("image/png", "png")``; a missing or
    malformed header gives ``(None, "bin")``.
    """
    if not header:
        return None, DEFAULT_SUBTYPE
    mime_type = header.split(";", 1)[0].strip().lower()
    if "/" not in mime_type:
        return (mime_type or None), DEFAULT_SUBTYPE
    subtype = _SUBTYPE_RE.sub("", mime_type.split("/", 1)[1])
    return mime_type, subtype or DEFAULT_SUBTYPE


def parse_content_length(header: Optional[str]) -> int:
    """Content-Length as an int; absent or invalid values count as 0."""
    try:
        return max(int(header), 0) if header is not None else 0
    except ValueError:
        return 0


class RemoteIngestor(BaseIngestor):
    """Streams a remote file to the staging directory."""

    def __init__(self, client: httpx.AsyncClient, *args, chunk_size: int = CHUNK_SIZE, **kwargs):
        super().__init__(*args, **kwargs)
        self.client = client
        self.chunk_size = chunk_size

    async def ingest(self, request: Request, policy: UploadPolicy) -> Optional[IngestionResult]:
        """
        Fetch the body's ``url`` and stage it.

        Returns None when the body carries no ``url``.

        Raises:
            RemoteNotFoundError: If the remote host answers 404
            RemoteFetchError: On transport failure or any other error status
            UploadSizeExceededError: If the body streams past the size cutoff
            ValidationFailedError: If the fetched file violates the policy
            ExtractionError: If a zip archive cannot be expanded
        """
        body = getattr(request.state, "body", None)
        url = body.get("url") if isinstance(body, dict) else None
        if not url:
            return None
        if not isinstance(url, str):
            raise RemoteFetchError("The 'url' field must be a string", url=str(url))

        await self.ensure_staging_dir(policy)

        with performance_context("remote_ingest", url=url):
            ingested = await self._fetch(url, policy)

        result = IngestionResult(files={REMOTE_FIELD_NAME: [ingested]})
        return await self.finalize(request, result, policy)

    async def _fetch(self, url: str, policy: UploadPolicy) -> IngestedFile:
        try:
            async with self.client.stream("GET", url) as response:
                if response.status_code == 404:
                    raise RemoteNotFoundError(url)
                if response.status_code >= 400:
                    raise RemoteFetchError(
                        f"Remote host answered {response.status_code} for {url}",
                        url=url,
                        upstream_status=response.status_code
                    )

                declared_type, subtype = parse_content_type(response.headers.get("content-type"))
                content_length = parse_content_length(response.headers.get("content-length"))
                stored_path = policy.staging_dir / (
                    f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.{subtype}"
                )
                original_name = PurePosixPath(response.url.path).name or stored_path.name

                written = await self._write(response, stored_path, original_name, policy)

        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Remote fetch failed", url=url, error=str(e))
            raise RemoteFetchError(f"Failed to fetch {url}: {e}", url=url) from e

        logger.info(
            "Remote file staged",
            url=url,
            declared_type=declared_type,
            content_length=content_length,
            written=written
        )
        return IngestedFile(
            field_name=REMOTE_FIELD_NAME,
            stored_path=stored_path,
            original_name=original_name,
            declared_type=declared_type,
            size=max(content_length, written),
        )

    async def _write(
        self,
        response: httpx.Response,
        stored_path: Path,
        original_name: str,
        policy: UploadPolicy
    ) -> int:
        """Stream the body to ``stored_path``, stopping past ``policy.max_file_size``."""
        written = 0
        try:
            async with aiofiles.open(stored_path, "wb") as out:
                async for chunk in response.aiter_bytes(self.chunk_size):
                    written += len(chunk)
                    if written > policy.max_file_size:
                        raise UploadSizeExceededError(original_name, policy.max_file_size)
                    await out.write(chunk)
        except UploadSizeExceededError:
            await aiofiles.os.remove(stored_path)
            raise
        return written


__all__ = [
    "RemoteIngestor",
    "parse_content_type",
    "parse_content_length",
    "REMOTE_FIELD_NAME",
]
