"""
Streaming multipart/form-data ingestion.

The request body is fed chunk by chunk to python-multipart's push parser.
File parts are written straight to the staging directory with aiofiles, so no
file is ever held in memory; a per-file byte count enforces the size cutoff
while the stream is still arriving.
"""

import json
import uuid
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
from python_multipart.exceptions import MultipartParseError as ParserError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import Request

from ..core.exceptions import MultipartParseError, UploadSizeExceededError
from ..models.domain.upload import IngestedFile, IngestionResult, UploadPolicy
from ..utils.logging import get_logger, performance_context
from .ingestor import BaseIngestor

logger = get_logger(__name__)

MAX_FIELD_SIZE = 1024 * 1024


def is_multipart(request: Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.lower().startswith("multipart/form-data")


def _decode(value: bytes) -> str:
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError:
        return value.decode("latin-1")


def decode_field_value(value: str) -> Any:
    """Decode a field value holding JSON; other values stay strings."""
    try:
        return json.loads(value)
    except ValueError:
        return value


def normalize_fields(raw: Dict[str, List[str]]) -> Dict[str, Any]:
    """
    Normalise raw form fields.

    Single values are unwrapped from their list; values that parse as JSON
    are decoded.
    """
    fields: Dict[str, Any] = {}
    for name, values in raw.items():
        decoded = [decode_field_value(v) for v in values]
        fields[name] = decoded[0] if len(decoded) == 1 else decoded
    return fields


class _Part:
    __slots__ = ("headers", "field_name", "file_name", "content_type",
                 "stored_path", "size", "data", "handle", "skip")

    def __init__(self):
        self.headers: List[Tuple[bytes, bytes]] = []
        self.field_name = ""
        self.file_name: Optional[str] = None
        self.content_type: Optional[str] = None
        self.stored_path: Optional[Path] = None
        self.size = 0
        self.data = bytearray()
        self.handle = None
        self.skip = False

    @property
    def is_file(self) -> bool:
        return self.file_name is not None


class _MultipartStreamState:
    """
    Collects parser callbacks.

    Callbacks are synchronous, so file chunks are queued and written by the
    async loop after each ``parser.write``.
    """

    def __init__(self, policy: UploadPolicy, max_field_size: int):
        self.policy = policy
        self.max_field_size = max_field_size
        self.current: Optional[_Part] = None
        self.header_field = bytearray()
        self.header_value = bytearray()
        self.pending: List[Tuple[_Part, bytes, bool]] = []
        self.raw_fields: Dict[str, List[str]] = {}
        self.files: Dict[str, List[IngestedFile]] = {}
        self.oversized: Optional[_Part] = None
        self.error: Optional[str] = None
        self.ended = False

    def callbacks(self) -> Dict[str, Any]:
        return {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }

    def on_part_begin(self) -> None:
        self.current = _Part()

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self.header_field.extend(data[start:end])

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self.header_value.extend(data[start:end])

    def on_header_end(self) -> None:
        self.current.headers.append((bytes(self.header_field).lower(), bytes(self.header_value)))
        self.header_field.clear()
        self.header_value.clear()

    def on_headers_finished(self) -> None:
        part = self.current
        headers = dict(part.headers)

        disposition = headers.get(b"content-disposition")
        if disposition is None:
            self.error = "Missing Content-Disposition header in multipart part"
            part.skip = True
            return

        _, options = parse_options_header(disposition)
        name = options.get(b"name")
        if name is None:
            self.error = 'Missing "name" in multipart Content-Disposition'
            part.skip = True
            return

        part.field_name = _decode(name)
        if b"filename" in options:
            file_name = _decode(options[b"filename"])
            # no file chosen in a browser form
            if not file_name:
                part.skip = True
                return
            part.file_name = PurePosixPath(file_name.replace("\\", "/")).name
            content_type = headers.get(b"content-type")
            part.content_type = _decode(content_type).strip() if content_type else None
            part.stored_path = self.policy.staging_dir / uuid.uuid4().hex

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        part = self.current
        if part.skip:
            return
        chunk = data[start:end]
        part.size += len(chunk)

        if part.is_file:
            if part.size > self.policy.max_file_size:
                self.oversized = part
                part.skip = True
                return
            self.pending.append((part, chunk, False))
        else:
            if part.size > self.max_field_size:
                self.error = f"Form field '{part.field_name}' exceeds {self.max_field_size} bytes"
                part.skip = True
                return
            part.data.extend(chunk)

    def on_part_end(self) -> None:
        part = self.current
        if part.skip:
            return
        if part.is_file:
            self.pending.append((part, b"", True))
            self.files.setdefault(part.field_name, []).append(IngestedFile(
                field_name=part.field_name,
                stored_path=part.stored_path,
                original_name=part.file_name,
                declared_type=part.content_type,
                size=part.size,
            ))
        else:
            self.raw_fields.setdefault(part.field_name, []).append(_decode(bytes(part.data)))

    def on_end(self) -> None:
        self.ended = True


class MultipartIngestor(BaseIngestor):
    """Streams multipart uploads to disk and runs them through the pipeline."""

    def __init__(self, *args, max_field_size: int = MAX_FIELD_SIZE, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_field_size = max_field_size

    async def ingest(self, request: Request, policy: UploadPolicy) -> Optional[IngestionResult]:
        """
        Parse a multipart request, validate and stage its files.

        Returns None for non-multipart requests.

        Raises:
            UploadSizeExceededError: If a file crosses the size cutoff mid-stream
            MultipartParseError: If the stream is malformed
            ValidationFailedError: If staged files violate the policy
            ExtractionError: If a zip archive cannot be expanded
        """
        if not is_multipart(request):
            return None

        _, params = parse_options_header(request.headers["content-type"])
        boundary = params.get(b"boundary")
        if not boundary:
            raise MultipartParseError("Missing boundary in multipart/form-data content type")

        await self.ensure_staging_dir(policy)

        with performance_context("multipart_ingest", path=request.url.path):
            state = await self._parse(request, policy, boundary)

        result = IngestionResult(
            fields=normalize_fields(state.raw_fields),
            files=state.files,
        )
        return await self.finalize(request, result, policy)

    async def _parse(
        self,
        request: Request,
        policy: UploadPolicy,
        boundary: bytes
    ) -> _MultipartStreamState:
        state = _MultipartStreamState(policy, self.max_field_size)
        parser = MultipartParser(boundary, state.callbacks())
        handles = []

        try:
            async for chunk in request.stream():
                try:
                    parser.write(chunk)
                except ParserError as e:
                    raise MultipartParseError(f"Malformed multipart body: {e}") from e

                if state.oversized is not None:
                    raise UploadSizeExceededError(state.oversized.file_name, policy.max_file_size)
                if state.error:
                    raise MultipartParseError(state.error)

                for part, data, finished in state.pending:
                    if part.handle is None:
                        part.handle = await aiofiles.open(part.stored_path, "wb")
                        handles.append(part.handle)
                    if data:
                        await part.handle.write(data)
                    if finished:
                        await part.handle.close()
                state.pending.clear()

            parser.finalize()
            if not state.ended:
                raise MultipartParseError("Unexpected end of multipart body")
        finally:
            for handle in handles:
                if not handle.closed:
                    await handle.close()

        return state


__all__ = [
    "MultipartIngestor",
    "is_multipart",
    "normalize_fields",
    "decode_field_value",
    "MAX_FIELD_SIZE",
]
