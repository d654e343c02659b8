"""
Domain models for file ingestion.

This module defines the records that flow through the upload pipeline:
- UploadPolicy: per-route acceptance rules (types, size, staging, archives)
- IngestedFile: one staged file, with both declared and sniffed types
- Validation violations: individually translatable reasons for rejection
- IngestionResult: form fields and files handed to the route handler
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from ...utils.units import format_bytes


ZIP_TYPES: FrozenSet[str] = frozenset({
    "application/zip",
    "application/x-zip-compressed",
    "application/x-zip",
})

CANONICAL_ZIP_TYPE = "application/zip"


def is_zip(mime_type: Optional[str]) -> bool:
    """Check whether a MIME type is one of the recognised zip variants."""
    return mime_type in ZIP_TYPES


@dataclass(frozen=True)
class UploadPolicy:
    """Acceptance rules for one upload route. Immutable per invocation."""
    allowed_types: FrozenSet[str]
    max_file_size: int
    staging_dir: Path
    expand_archives: bool = False
    delete_archive_after_expand: bool = True

    def __post_init__(self):
        if self.max_file_size < 0:
            raise ValueError("max_file_size cannot be negative")
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "allowed_types", frozenset(self.allowed_types))
        object.__setattr__(self, "staging_dir", Path(self.staging_dir))

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        allowed_types: Union[str, Iterable[str]],
        **overrides: Any
    ) -> "UploadPolicy":
        """
        Build a policy from application settings.

        Args:
            settings: Application settings (uses the ``uploads`` section)
            allowed_types: A MIME type or collection of MIME types to accept
            **overrides: Any UploadPolicy field to override

        Returns:
            UploadPolicy for the route
        """
        if isinstance(allowed_types, str):
            allowed_types = [allowed_types]

        values: Dict[str, Any] = {
            "allowed_types": frozenset(allowed_types),
            "max_file_size": settings.uploads.file_upload_max_file_size,
            "staging_dir": settings.uploads.upload_temp_dir,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class IngestedFile:
    """
    A file staged on disk by one of the ingestors.

    ``declared_type`` is whatever the client (or remote server) claimed and is
    never trusted on its own; ``sniffed_type`` is filled in from the file
    bytes when the declared type is not acceptable, and by the archive
    expander after a successful expansion.
    """
    field_name: str
    stored_path: Path
    original_name: str
    declared_type: Optional[str] = None
    size: int = 0
    sniffed_type: Optional[str] = None
    expanded: bool = False

    @property
    def mime_type(self) -> Optional[str]:
        """Effective type: the sniffed type when known, otherwise the declared one."""
        return self.sniffed_type if self.sniffed_type is not None else self.declared_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_name": self.field_name,
            "stored_path": str(self.stored_path),
            "original_name": self.original_name,
            "declared_type": self.declared_type,
            "sniffed_type": self.sniffed_type,
            "mime_type": self.mime_type,
            "size": self.size,
            "expanded": self.expanded,
        }


@dataclass(frozen=True)
class UnexpectedFileType:
    """The file's type (declared and sniffed) is not in the allowed set."""
    expected_types: FrozenSet[str]
    actual_type: Optional[str]
    file_name: str

    code = "UNEXPECTED_FILE_TYPES"

    @property
    def message(self) -> str:
        expected = ", ".join(sorted(self.expected_types))
        return (
            f"Unexpected file type for '{self.file_name}' "
            f"({self.actual_type or 'unknown'}), expected {expected}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "expectedFileTypes": sorted(self.expected_types),
            "invalidFiles": [self.file_name],
            "mimetypes": [self.actual_type],
        }


@dataclass(frozen=True)
class FileSizeExceeded:
    """The file is larger than the policy allows."""
    max_size: int
    actual_size: int
    file_name: str

    code = "FILE_EXCEEDS_MAX_SIZE"

    @property
    def message(self) -> str:
        return (
            f"File '{self.file_name}' is {format_bytes(self.actual_size)}, "
            f"exceeding the maximum of {format_bytes(self.max_size)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "size": format_bytes(self.actual_size),
            "maxSize": format_bytes(self.max_size),
            "fileName": self.file_name,
        }


ValidationViolation = Union[UnexpectedFileType, FileSizeExceeded]


@dataclass
class IngestionResult:
    """Form fields and staged files attached to the request."""
    fields: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, List[IngestedFile]] = field(default_factory=dict)

    def all_files(self) -> List[IngestedFile]:
        """Flatten files across every form field."""
        return [f for group in self.files.values() for f in group]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": self.fields,
            "files": {
                name: [f.to_dict() for f in group]
                for name, group in self.files.items()
            },
        }


__all__ = [
    "ZIP_TYPES",
    "CANONICAL_ZIP_TYPE",
    "is_zip",
    "UploadPolicy",
    "IngestedFile",
    "UnexpectedFileType",
    "FileSizeExceeded",
    "ValidationViolation",
    "IngestionResult",
]
