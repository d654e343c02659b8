"""
Shared helpers for the uploadguard test suite.

Tests never depend on the host's libmagic: uploads are sniffed with a small
signature table covering the formats used in the tests.
"""

import io
import time
import zipfile
from pathlib import Path
from typing import Optional

import httpx

from uploadguard.app.core.counter_store import MemoryCounterStore
from uploadguard.app.upload.sniffer import TypeSniffer
from uploadguard.config.settings import ApiSettings, Settings, UploadSettings
from uploadguard.main import create_application


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 56
GIF_BYTES = b"GIF89a" + b"\x00" * 58
ZIP_SIGNATURE = b"PK\x03\x04"


def signature_detector(buffer: bytes) -> Optional[str]:
    if buffer.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if buffer.startswith(b"GIF8"):
        return "image/gif"
    if buffer.startswith(ZIP_SIGNATURE):
        return "application/zip"
    return "text/plain"


def make_sniffer() -> TypeSniffer:
    return TypeSniffer(detector=signature_detector)


def png_of_size(size: int) -> bytes:
    return (PNG_BYTES + b"\x00" * size)[:size]


def zip_bytes(members: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def make_settings(
    staging_dir: Path,
    max_file_size: int = 50 * 1024 * 1024,
    request_limit: int = 0,
    accepted_types=("application/json",),
    trusted_proxies=(),
) -> Settings:
    return Settings(
        environment="test",
        api=ApiSettings(
            accepted_types=list(accepted_types),
            request_limit=request_limit,
            request_limit_duration="1m",
            trusted_proxies=list(trusted_proxies),
        ),
        uploads=UploadSettings(
            upload_temp_dir=staging_dir,
            file_upload_max_file_size=max_file_size,
        ),
    )


def make_app(settings: Settings, transport: Optional[httpx.MockTransport] = None, clock=None):
    """Application wired with an in-memory counter store and the test sniffer."""
    store = MemoryCounterStore(clock=clock or time.time)
    client = httpx.AsyncClient(transport=transport) if transport else None
    return create_application(
        settings,
        counter_store=store,
        http_client=client,
        sniffer=make_sniffer(),
    )
