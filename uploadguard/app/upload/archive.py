"""
Zip archive expansion for validated uploads.
"""

import shutil
import zipfile
from pathlib import Path

from starlette.concurrency import run_in_threadpool

from ..core.exceptions import ExtractionError
from ..models.domain.upload import CANONICAL_ZIP_TYPE, IngestedFile, is_zip
from ..utils.logging import get_logger, performance_context

logger = get_logger(__name__)

UNZIP_SUFFIX = "_unzip"


def expansion_target(stored_path: Path) -> Path:
    """Directory an archive is expanded into (``<path>_unzip``)."""
    return stored_path.with_name(stored_path.name + UNZIP_SUFFIX)


class ArchiveExpander:
    """Expands zip uploads into a sibling directory."""

    def expand(self, file: IngestedFile, remove_source: bool = True) -> IngestedFile:
        """
        Expand a zip file in place of its record.

        Non-zip files are returned unchanged. On success the record points at
        the extraction directory and carries the canonical zip type.

        Args:
            file: Validated file record
            remove_source: Delete the archive after a successful expansion

        Returns:
            The (updated) file record

        Raises:
            ExtractionError: If the archive is corrupt or cannot be written out;
                the record and the archive are left untouched
        """
        if not is_zip(file.mime_type):
            return file

        source = Path(file.stored_path)
        target = expansion_target(source)

        with performance_context("archive_expand", file=file.original_name):
            try:
                target.mkdir(parents=True, exist_ok=False)
            except OSError as e:
                raise ExtractionError(
                    f"Cannot create extraction directory for '{file.original_name}': {e}",
                    archive=file.original_name
                ) from e

            try:
                self._extract(source, target)
            except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as e:
                shutil.rmtree(target, ignore_errors=True)
                raise ExtractionError(
                    f"Failed to extract archive '{file.original_name}': {e}",
                    archive=file.original_name
                ) from e

        if remove_source:
            source.unlink(missing_ok=True)

        file.stored_path = target
        file.sniffed_type = CANONICAL_ZIP_TYPE
        file.expanded = True

        logger.info(
            "Archive expanded",
            file=file.original_name,
            removed_source=remove_source
        )
        return file

    async def expand_async(self, file: IngestedFile, remove_source: bool = True) -> IngestedFile:
        """Run :meth:`expand` in the thread pool."""
        return await run_in_threadpool(self.expand, file, remove_source)

    def _extract(self, source: Path, target: Path) -> None:
        root = target.resolve()
        with zipfile.ZipFile(source) as archive:
            for member in archive.infolist():
                destination = (root / member.filename).resolve()
                if destination != root and root not in destination.parents:
                    raise ValueError(f"Archive member escapes target directory: {member.filename}")
            archive.extractall(root)


__all__ = ["ArchiveExpander", "expansion_target", "UNZIP_SUFFIX"]
