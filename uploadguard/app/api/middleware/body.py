"""
Request body and content negotiation middleware.

BodyParserMiddleware parses JSON and url-encoded bodies into
``request.state.body`` before routing, so upload dependencies and routes see
one merged body. Multipart bodies are left on the wire for the streaming
ingestor. AcceptedTypesMiddleware rejects requests whose ``Accept`` header
matches none of the types the API produces.
"""

import json
import mimetypes
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ...core.exceptions import BodyParseError, UnsupportedMediaTypeError
from ...utils.logging import get_logger

logger = get_logger(__name__)

BODILESS_METHODS = {"GET", "HEAD", "OPTIONS"}


def _media_type(request: Request) -> str:
    return request.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def is_json_type(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


def drop_empty_values(values: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """
    Remove null-valued keys.

    Returns the cleaned mapping and whether any non-null value remained.
    """
    cleaned = {key: value for key, value in values.items() if value is not None}
    return cleaned, bool(cleaned)


def parse_urlencoded(raw: bytes) -> Dict[str, Any]:
    try:
        parsed = parse_qs(raw.decode("utf-8"), keep_blank_values=True, strict_parsing=False)
    except UnicodeDecodeError as e:
        raise BodyParseError(str(e), content_type="application/x-www-form-urlencoded") from e
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def parse_json(raw: bytes, media_type: str) -> Dict[str, Any]:
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise BodyParseError(str(e), content_type=media_type) from e
    if not isinstance(value, dict):
        raise BodyParseError("JSON body must be an object", content_type=media_type)
    return value


class BodyParserMiddleware(BaseHTTPMiddleware):
    """
    Populates ``request.state.body``, ``request.state.query``,
    ``request.state.has_body`` and ``request.state.has_query``.

    Body data is ignored for GET requests.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        body: Dict[str, Any] = {}
        media_type = _media_type(request)

        if request.method not in BODILESS_METHODS:
            if is_json_type(media_type):
                raw = await request.body()
                if raw.strip():
                    body = parse_json(raw, media_type)
            elif media_type == "application/x-www-form-urlencoded":
                body = parse_urlencoded(await request.body())

        request.state.body, request.state.has_body = drop_empty_values(body)
        request.state.query, request.state.has_query = drop_empty_values(dict(request.query_params))

        return await call_next(request)


def parse_accept_header(header: str) -> List[Tuple[str, float]]:
    """
    Parse an Accept header into ``(media_range, q)`` pairs.

    Ranges with ``q=0`` are excluded; malformed quality values count as 1.
    """
    ranges = []
    for item in header.split(","):
        parts = [p.strip() for p in item.split(";")]
        media_range = parts[0].lower()
        if not media_range:
            continue
        quality = 1.0
        for param in parts[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 1.0
        if quality > 0:
            ranges.append((media_range, quality))
    return ranges


def normalize_type(accepted_type: str) -> Optional[str]:
    """Map an extension name such as ``json`` or ``.html`` to its MIME type."""
    accepted_type = accepted_type.strip().lower()
    if "/" in accepted_type:
        return accepted_type
    guessed, _ = mimetypes.guess_type(f"file.{accepted_type.lstrip('.')}")
    return guessed


def media_range_matches(media_range: str, mime_type: str) -> bool:
    if media_range in ("*/*", "*"):
        return True
    range_type, _, range_subtype = media_range.partition("/")
    mime_main, _, mime_subtype = mime_type.partition("/")
    if range_type != mime_main:
        return False
    return range_subtype in ("*", mime_subtype)


def accepts(header: Optional[str], accepted_types: Iterable[str]) -> bool:
    """Whether an Accept header allows at least one of ``accepted_types``."""
    if not header:
        return True
    ranges = parse_accept_header(header)
    for accepted_type in accepted_types:
        mime_type = normalize_type(accepted_type)
        if mime_type and any(media_range_matches(r, mime_type) for r, _ in ranges):
            return True
    return False


class AcceptedTypesMiddleware(BaseHTTPMiddleware):
    """Returns 406 when the client accepts none of the configured types."""

    def __init__(self, app: ASGIApp, accepted_types: Optional[Iterable[str]] = None):
        super().__init__(app)
        self.accepted_types = list(accepted_types or [])
        if not self.accepted_types:
            logger.warning("No accepted types configured, Accept header checks are disabled")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self.accepted_types:
            accept = request.headers.get("accept")
            if not accepts(accept, self.accepted_types):
                raise UnsupportedMediaTypeError(accept, self.accepted_types)
        return await call_next(request)


__all__ = [
    "BodyParserMiddleware",
    "AcceptedTypesMiddleware",
    "accepts",
    "parse_accept_header",
    "drop_empty_values",
]
