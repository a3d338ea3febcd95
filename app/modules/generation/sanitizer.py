"""Normalization of user-submitted source text before it is hashed and stored."""

from __future__ import annotations

import base64
import hashlib
import re
import unicodedata


_NEWLINES = re.compile(r"\r\n?")
_MULTISPACE = re.compile(r"[ \t]{2,}")
_MULTIBLANK = re.compile(r"\n{3,}")

# Line feed and tab survive control-character stripping; the whitespace rules
# below are what normalize them.
_KEPT_CONTROL = frozenset("\n\t")


def _strip_control(text: str) -> str:
    return "".join(
        ch
        for ch in text
        if ch in _KEPT_CONTROL or unicodedata.category(ch) != "Cc"
    )


def sanitize_source_text(text: str | None) -> str:
    """Idempotently sanitize source text.

    Normalizes new lines, removes control characters and collapses excessive
    whitespace without changing the meaning of the content.
    """
    if not text:
        return ""

    normalized = _NEWLINES.sub("\n", text)
    normalized = _strip_control(normalized)
    normalized = _MULTISPACE.sub(" ", normalized)
    normalized = _MULTIBLANK.sub("\n\n", normalized)
    return normalized.strip()


def hash_source_text(text: str) -> str:
    """SHA-256 of the UTF-8 text, base64 encoded."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def describe_source_text(text: str | None) -> tuple[str, int, str]:
    """Return ``(sanitized, length, sha256)`` for a raw submission."""
    sanitized = sanitize_source_text(text)
    return sanitized, len(sanitized), hash_source_text(sanitized)
