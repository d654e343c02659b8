"""
MIME type sniffing for staged files.

The client's declared content type is untrusted; this module derives a type
from the file's leading bytes using libmagic's signature database through
python-magic. Generic answers (plain text, octet-stream, empty) carry no
signature and are treated as "no match".
"""

from pathlib import Path
from typing import Callable, FrozenSet, Optional, Union

from ..utils.logging import get_logger

logger = get_logger(__name__)

# Enough for the container formats the signature database inspects (zip, ooxml, tar)
SNIFF_BYTES = 4100

SUBRIP_TYPE = "application/x-subrip"

# Extension fallbacks for formats that have no magic number
EXTENSION_FALLBACKS = {
    ".srt": SUBRIP_TYPE,
}

GENERIC_MIME_TYPES: FrozenSet[str] = frozenset({
    "application/octet-stream",
    "text/plain",
    "inode/x-empty",
    "application/x-empty",
})

Detector = Callable[[bytes], Optional[str]]


def magic_detector(buffer: bytes) -> Optional[str]:
    """Detect a MIME type from a byte buffer with libmagic."""
    import magic

    return magic.from_buffer(buffer, mime=True)


class TypeSniffer:
    """
    Determines a file's MIME type from its bytes.

    The signature table is pluggable: pass any ``detector`` callable taking
    the leading bytes and returning a MIME type (or None). The default uses
    libmagic.
    """

    def __init__(self, detector: Optional[Detector] = None, sniff_bytes: int = SNIFF_BYTES):
        self._detector = detector or magic_detector
        self.sniff_bytes = sniff_bytes

    def sniff(
        self,
        file_path: Union[str, Path],
        original_name: Optional[str] = None
    ) -> Optional[str]:
        """
        Sniff the MIME type of a file on disk.

        Args:
            file_path: Path of the staged file
            original_name: Client-side file name, used only for the
                extension fallback of signature-less formats

        Returns:
            MIME type, or None when the type is unknown
        """
        mime_type = self._sniff_signature(Path(file_path))
        if mime_type:
            return mime_type

        extension = Path(original_name or str(file_path)).suffix.lower()
        fallback = EXTENSION_FALLBACKS.get(extension)
        if fallback:
            logger.debug(
                "No signature match, using extension fallback",
                file=original_name,
                mime_type=fallback
            )
        return fallback

    def _sniff_signature(self, file_path: Path) -> Optional[str]:
        with open(file_path, "rb") as f:
            head = f.read(self.sniff_bytes)

        if not head:
            return None

        mime_type = self._detector(head)
        if not mime_type or mime_type in GENERIC_MIME_TYPES:
            return None
        return mime_type


__all__ = [
    "SNIFF_BYTES",
    "SUBRIP_TYPE",
    "GENERIC_MIME_TYPES",
    "TypeSniffer",
    "magic_detector",
]
