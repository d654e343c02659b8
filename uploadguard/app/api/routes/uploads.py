"""
Upload API routes.

Each route declares its upload policy through ``file_upload_parser`` or
``url_upload_parser``; by the time the route body runs, files are staged,
validated and (for archive routes) expanded.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...models.domain.upload import IngestionResult, ZIP_TYPES
from ...upload.sniffer import SUBRIP_TYPE
from ...utils.logging import get_logger
from ..deps import file_upload_parser, url_upload_parser


logger = get_logger(__name__)
router = APIRouter()


MEDIA_TYPES = frozenset({
    "image/png",
    "image/jpeg",
    "image/gif",
    "image/webp",
    "application/pdf",
    SUBRIP_TYPE,
})

ARCHIVE_TYPES = frozenset(ZIP_TYPES)


def _upload_response(request: Request, result: Optional[IngestionResult]) -> dict:
    if result is None or not result.all_files():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No files were uploaded"
        )

    logger.info(
        "Upload accepted",
        path=request.url.path,
        files=[f.original_name for f in result.all_files()],
    )
    return {"success": True, "data": result.to_dict()}


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Upload Media",
    description="Upload one or more media files as multipart/form-data"
)
async def upload_media(
    request: Request,
    upload: Optional[IngestionResult] = Depends(file_upload_parser(MEDIA_TYPES))
) -> dict:
    return _upload_response(request, upload)


@router.post(
    "/archive",
    status_code=status.HTTP_201_CREATED,
    summary="Upload Archive",
    description="Upload a zip archive, expanded into a directory on arrival"
)
async def upload_archive(
    request: Request,
    upload: Optional[IngestionResult] = Depends(
        file_upload_parser(ARCHIVE_TYPES, expand_archives=True)
    )
) -> dict:
    return _upload_response(request, upload)


@router.post(
    "/url",
    status_code=status.HTTP_201_CREATED,
    summary="Upload From URL",
    description="Fetch a media file from the URL given in the request body"
)
async def upload_from_url(
    request: Request,
    upload: Optional[IngestionResult] = Depends(url_upload_parser(MEDIA_TYPES))
) -> dict:
    return _upload_response(request, upload)


__all__ = ["router", "MEDIA_TYPES", "ARCHIVE_TYPES"]
