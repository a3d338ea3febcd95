"""Tests for source text sanitizing and hashing."""

import base64
import hashlib

import pytest

from app.modules.generation.sanitizer import (
    describe_source_text,
    hash_source_text,
    sanitize_source_text,
)


class TestSanitizeSourceText:
    def test_normalizes_windows_and_mac_newlines(self) -> None:
        assert sanitize_source_text("a\r\nb\rc") == "a\nb\nc"

    def test_collapses_horizontal_whitespace(self) -> None:
        assert sanitize_source_text("a  \t  b\t\tc") == "a b c"

    def test_collapses_blank_line_runs_to_one_blank_line(self) -> None:
        assert sanitize_source_text("a\n\n\n\n\nb") == "a\n\nb"
        assert sanitize_source_text("a\n\nb") == "a\n\nb"

    def test_strips_control_characters(self) -> None:
        assert sanitize_source_text("he\x00llo\x07 wo\x1brld\x7f") == "hello world"

    def test_keeps_paragraph_structure(self) -> None:
        text = "Title\n\nFirst paragraph.\nSecond line."
        assert sanitize_source_text(text) == text

    def test_trims_surrounding_whitespace(self) -> None:
        assert sanitize_source_text("  \n text \n\t ") == "text"

    @pytest.mark.parametrize("value", [None, "", "   ", "\x00\x01\n\t\r\x1f \x7f"])
    def test_empty_or_control_only_input_becomes_empty(self, value) -> None:
        assert sanitize_source_text(value) == ""

    @pytest.mark.parametrize(
        "value",
        [
            "plain text",
            "a\r\n\r\n\r\n\r\nb",
            "  x \t\t y  \n\n\n\n z \x00 ",
            "\t\tindented\n\n\n\tcode  block\r",
            "unicode ünïcödé​ text\x85",
            "a \n \n \n b",
        ],
    )
    def test_idempotent(self, value) -> None:
        once = sanitize_source_text(value)
        assert sanitize_source_text(once) == once


class TestHashing:
    def test_hash_is_base64_sha256(self) -> None:
        expected = base64.b64encode(hashlib.sha256(b"abc").digest()).decode("ascii")
        assert hash_source_text("abc") == expected

    def test_describe_hashes_sanitized_text(self) -> None:
        sanitized, length, sha256 = describe_source_text("  a\r\nb  ")
        assert sanitized == "a\nb"
        assert length == 3
        assert sha256 == hash_source_text("a\nb")
