"""
Unit tests for content-based type sniffing.
"""

import pytest

from uploadguard.app.upload.sniffer import SNIFF_BYTES, SUBRIP_TYPE, TypeSniffer

from helpers import PNG_BYTES, signature_detector


class TestTypeSniffer:
    """Test suite for TypeSniffer."""

    def setup_method(self):
        self.seen = []

        def detector(buffer):
            self.seen.append(buffer)
            return signature_detector(buffer)

        self.sniffer = TypeSniffer(detector=detector)

    def test_detects_signature(self, tmp_path):
        path = tmp_path / "upload"
        path.write_bytes(PNG_BYTES)

        assert self.sniffer.sniff(path) == "image/png"

    def test_reads_bounded_prefix(self, tmp_path):
        path = tmp_path / "big"
        path.write_bytes(PNG_BYTES + b"\x00" * (SNIFF_BYTES * 3))

        self.sniffer.sniff(path)

        assert len(self.seen[0]) == SNIFF_BYTES

    def test_generic_answer_is_unknown(self, tmp_path):
        path = tmp_path / "notes"
        path.write_text("just some text")

        assert self.sniffer.sniff(path, "notes.txt") is None

    def test_srt_fallback(self, tmp_path):
        path = tmp_path / "a1b2c3"
        path.write_text("1\n00:00:01,000 --> 00:00:02,000\nHello\n")

        assert self.sniffer.sniff(path, "Movie.SRT") == SUBRIP_TYPE

    def test_signature_wins_over_extension(self, tmp_path):
        path = tmp_path / "a1b2c3"
        path.write_bytes(PNG_BYTES)

        assert self.sniffer.sniff(path, "subtitles.srt") == "image/png"

    def test_empty_file_is_unknown(self, tmp_path):
        path = tmp_path / "empty"
        path.write_bytes(b"")

        assert self.sniffer.sniff(path) is None
        assert self.seen == []

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            self.sniffer.sniff(tmp_path / "missing")

    def test_sniff_is_read_only(self, tmp_path):
        path = tmp_path / "upload"
        path.write_bytes(PNG_BYTES)

        self.sniffer.sniff(path)

        assert path.read_bytes() == PNG_BYTES
