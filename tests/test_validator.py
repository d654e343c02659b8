"""
Unit tests for upload validation.

Covers the acceptance rules of the upload pipeline: declared types are only
trusted when they are allowed, anything else is sniffed; size and type
violations are collected across all files and reported once.
"""

import pytest

from uploadguard.app.core.exceptions import ErrorCode, ValidationFailedError
from uploadguard.app.models.domain.upload import (
    FileSizeExceeded,
    IngestedFile,
    UnexpectedFileType,
    UploadPolicy,
)
from uploadguard.app.upload.sniffer import SUBRIP_TYPE
from uploadguard.app.upload.validator import FileValidator, flatten_files

from helpers import GIF_BYTES, make_settings, make_sniffer, png_of_size


class RecordingSniffer:
    """Sniffer double that records which files were inspected."""

    def __init__(self):
        self.inner = make_sniffer()
        self.calls = []

    def sniff(self, file_path, original_name=None):
        self.calls.append(original_name)
        return self.inner.sniff(file_path, original_name)


class TestFileValidator:
    """Test suite for FileValidator."""

    def setup_method(self):
        self.sniffer = RecordingSniffer()
        self.validator = FileValidator(sniffer=self.sniffer)

    def _policy(self, tmp_path, allowed="image/png", max_size=1000):
        return UploadPolicy(
            allowed_types=frozenset([allowed]) if isinstance(allowed, str) else frozenset(allowed),
            max_file_size=max_size,
            staging_dir=tmp_path,
        )

    def _file(self, tmp_path, name, content, declared):
        path = tmp_path / f"staged-{name}"
        path.write_bytes(content)
        return IngestedFile(
            field_name="file",
            stored_path=path,
            original_name=name,
            declared_type=declared,
            size=len(content),
        )

    def test_exact_max_size_passes(self, tmp_path):
        f = self._file(tmp_path, "a.png", png_of_size(1000), "image/png")

        self.validator.validate({"file": [f]}, self._policy(tmp_path))

    def test_one_byte_over_max_fails_with_size_violation(self, tmp_path):
        f = self._file(tmp_path, "a.png", png_of_size(1001), "image/png")

        with pytest.raises(ValidationFailedError) as exc_info:
            self.validator.validate({"file": [f]}, self._policy(tmp_path))

        violations = exc_info.value.violations
        assert len(violations) == 1
        assert isinstance(violations[0], FileSizeExceeded)
        assert violations[0].actual_size == 1001
        assert exc_info.value.http_status_code == 400
        assert exc_info.value.error_code == ErrorCode.VALIDATION_FAILED

    def test_allowed_declared_type_is_not_sniffed(self, tmp_path):
        f = self._file(tmp_path, "a.png", png_of_size(100), "image/png")

        self.validator.validate([f], self._policy(tmp_path))

        assert self.sniffer.calls == []
        assert f.sniffed_type is None

    def test_disallowed_declared_type_is_sniffed_before_rejection(self, tmp_path):
        f = self._file(tmp_path, "a.gif", GIF_BYTES, "image/png; charset=binary")

        with pytest.raises(ValidationFailedError) as exc_info:
            self.validator.validate([f], self._policy(tmp_path))

        assert self.sniffer.calls == ["a.gif"]
        assert f.sniffed_type == "image/gif"
        violation = exc_info.value.violations[0]
        assert isinstance(violation, UnexpectedFileType)
        assert violation.actual_type == "image/gif"

    def test_mislabelled_file_accepted_on_sniffed_type(self, tmp_path):
        f = self._file(tmp_path, "photo", png_of_size(64), "application/octet-stream")

        self.validator.validate([f], self._policy(tmp_path))

        assert f.sniffed_type == "image/png"
        assert f.mime_type == "image/png"

    def test_missing_declared_type_is_sniffed(self, tmp_path):
        f = self._file(tmp_path, "photo", png_of_size(64), None)

        self.validator.validate([f], self._policy(tmp_path))

        assert f.sniffed_type == "image/png"

    def test_unknown_type_is_rejected(self, tmp_path):
        f = self._file(tmp_path, "notes.txt", b"hello", "text/plain")

        violations = self.validator.check([f], self._policy(tmp_path))

        assert len(violations) == 1
        assert violations[0].actual_type is None

    def test_srt_without_signature_passes_when_subrip_allowed(self, tmp_path):
        content = b"1\n00:00:01,000 --> 00:00:02,000\nHello\n"
        f = self._file(tmp_path, "movie.srt", content, "application/octet-stream")

        self.validator.validate([f], self._policy(tmp_path, allowed=SUBRIP_TYPE))

        assert f.sniffed_type == SUBRIP_TYPE

    def test_violations_are_aggregated(self, tmp_path):
        wrong_type = self._file(tmp_path, "a.gif", GIF_BYTES, "image/gif")
        too_big = self._file(tmp_path, "b.png", png_of_size(2000), "image/png")

        with pytest.raises(ValidationFailedError) as exc_info:
            self.validator.validate(
                {"first": [wrong_type], "second": [too_big]},
                self._policy(tmp_path)
            )

        exc = exc_info.value
        kinds = [type(v) for v in exc.violations]
        assert kinds == [UnexpectedFileType, FileSizeExceeded]
        assert exc.data["schemaName"] == "fileupload"
        assert len(exc.data["errors"]) == 2
        assert exc.user_message == ", ".join(v.message for v in exc.violations)

    def test_one_file_can_violate_type_and_size(self, tmp_path):
        f = self._file(tmp_path, "a.gif", GIF_BYTES + b"\x00" * 2000, "image/gif")

        violations = self.validator.check([f], self._policy(tmp_path))

        assert [v.code for v in violations] == ["UNEXPECTED_FILE_TYPES", "FILE_EXCEEDS_MAX_SIZE"]

    def test_empty_file_set_passes(self, tmp_path):
        self.validator.validate({}, self._policy(tmp_path))
        self.validator.validate([], self._policy(tmp_path))

    def test_validation_is_idempotent(self, tmp_path):
        good = self._file(tmp_path, "a.png", png_of_size(10), "image/png")
        bad = self._file(tmp_path, "b.gif", GIF_BYTES, "image/gif")
        policy = self._policy(tmp_path)

        first = self.validator.check([good, bad], policy)
        second = self.validator.check([good, bad], policy)

        assert first == second
        self.validator.validate([good], policy)
        self.validator.validate([good], policy)

    def test_size_message_uses_readable_units(self, tmp_path):
        violation = FileSizeExceeded(max_size=1000, actual_size=5000, file_name="big.png")

        assert "4.88KB" in violation.message
        assert violation.to_dict()["size"] == "4.88KB"


class TestUploadPolicy:
    """Test suite for UploadPolicy construction."""

    def test_from_settings_wraps_single_type(self, tmp_path):
        policy = UploadPolicy.from_settings(make_settings(tmp_path, max_file_size=10), "image/png")

        assert policy.allowed_types == frozenset({"image/png"})
        assert policy.max_file_size == 10
        assert policy.staging_dir == tmp_path
        assert policy.expand_archives is False
        assert policy.delete_archive_after_expand is True

    def test_from_settings_overrides(self, tmp_path):
        policy = UploadPolicy.from_settings(
            make_settings(tmp_path),
            ["image/png", "image/gif"],
            expand_archives=True,
            max_file_size=None,
        )

        assert policy.expand_archives is True
        assert policy.max_file_size == 50 * 1024 * 1024

    def test_negative_size_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            UploadPolicy(allowed_types=frozenset(), max_file_size=-1, staging_dir=tmp_path)

    def test_flatten_files(self, tmp_path):
        a = IngestedFile(field_name="a", stored_path=tmp_path / "a", original_name="a")
        b = IngestedFile(field_name="b", stored_path=tmp_path / "b", original_name="b")

        assert flatten_files({"a": [a], "b": [b]}) == [a, b]
        assert flatten_files((a, b)) == [a, b]
