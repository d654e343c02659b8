"""
Upload validation against an UploadPolicy.

Every file is checked for type and size; all violations across all files are
collected and reported together as one ValidationFailedError.
"""

from typing import Iterable, List, Mapping, Optional, Union

from ..core.exceptions import ValidationFailedError
from ..models.domain.upload import (
    FileSizeExceeded,
    IngestedFile,
    UnexpectedFileType,
    UploadPolicy,
    ValidationViolation,
)
from ..utils.logging import get_logger, log_security_event
from .sniffer import TypeSniffer

logger = get_logger(__name__)

FileCollection = Union[Mapping[str, Iterable[IngestedFile]], Iterable[IngestedFile]]


def flatten_files(files: FileCollection) -> List[IngestedFile]:
    """Flatten files grouped by form field into one list."""
    if isinstance(files, Mapping):
        return [f for group in files.values() for f in group]
    return list(files)


class FileValidator:
    """Checks ingested files against an upload policy."""

    def __init__(self, sniffer: Optional[TypeSniffer] = None):
        self.sniffer = sniffer or TypeSniffer()

    def check(self, files: FileCollection, policy: UploadPolicy) -> List[ValidationViolation]:
        """
        Collect every violation without raising.

        Files whose declared type is outside the allowed set are sniffed and
        their ``sniffed_type`` updated before the type decision is made.
        """
        violations: List[ValidationViolation] = []

        for f in flatten_files(files):
            if f.declared_type not in policy.allowed_types:
                f.sniffed_type = self.sniffer.sniff(f.stored_path, f.original_name)
                if f.sniffed_type not in policy.allowed_types:
                    violations.append(UnexpectedFileType(
                        expected_types=policy.allowed_types,
                        actual_type=f.sniffed_type,
                        file_name=f.original_name,
                    ))

            if f.size > policy.max_file_size:
                violations.append(FileSizeExceeded(
                    max_size=policy.max_file_size,
                    actual_size=f.size,
                    file_name=f.original_name,
                ))

        return violations

    def validate(self, files: FileCollection, policy: UploadPolicy) -> None:
        """
        Validate files, raising once with the full violation list.

        An empty collection is valid.

        Raises:
            ValidationFailedError: If any file violates the policy
        """
        violations = self.check(files, policy)
        if violations:
            log_security_event(
                "upload_rejected",
                severity="info",
                violations=[v.code for v in violations],
            )
            raise ValidationFailedError(violations)


__all__ = ["FileValidator", "flatten_files"]
