"""
Common tail of the ingestion pipeline.

Both ingestors end the same way: validate the staged files, optionally expand
zip archives, then attach the result to the request and merge form fields
into the request body.
"""

from typing import Any, Dict, Optional

import aiofiles.os
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request

from ..models.domain.upload import IngestionResult, UploadPolicy
from ..utils.logging import get_logger
from .archive import ArchiveExpander
from .validator import FileValidator

logger = get_logger(__name__)


class BaseIngestor:
    """Shared validation, expansion and request attachment for ingestors."""

    def __init__(
        self,
        validator: Optional[FileValidator] = None,
        expander: Optional[ArchiveExpander] = None
    ):
        self.validator = validator or FileValidator()
        self.expander = expander or ArchiveExpander()

    async def ensure_staging_dir(self, policy: UploadPolicy) -> None:
        await aiofiles.os.makedirs(policy.staging_dir, exist_ok=True)

    async def finalize(
        self,
        request: Request,
        result: IngestionResult,
        policy: UploadPolicy
    ) -> IngestionResult:
        """
        Validate, expand and attach an ingestion result.

        Raises:
            ValidationFailedError: If any file violates the policy
            ExtractionError: If a zip archive cannot be expanded
        """
        await run_in_threadpool(self.validator.validate, result.files, policy)

        if policy.expand_archives:
            for f in result.all_files():
                await self.expander.expand_async(f, policy.delete_archive_after_expand)

        attach_result(request, result)

        logger.info(
            "Upload ingested",
            files=len(result.all_files()),
            fields=len(result.fields),
        )
        return result


def attach_result(request: Request, result: IngestionResult) -> None:
    """Store the result on the request and merge its fields into the body."""
    body: Dict[str, Any] = getattr(request.state, "body", None) or {}
    body.update(result.fields)
    request.state.body = body
    request.state.file_upload = result


__all__ = ["BaseIngestor", "attach_result"]
