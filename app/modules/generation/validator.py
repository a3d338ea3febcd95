"""Validation of raw flashcard objects returned by the model.

Lengths mirror the database column limits on ``generation_candidates``.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Optional

from app.modules.generation.models import ValidatedFlashcard

MAX_FRONT_LENGTH = 200
MAX_BACK_LENGTH = 500
BACK_TRUNCATE_LENGTH = 450
TRUNCATION_SUFFIX = "..."

_WHITESPACE = re.compile(r"\s+")


def _is_positive_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    if isinstance(value, float):
        return value.is_integer() and value > 0
    return False


def sanitize_tag_ids(raw: Any) -> list[int]:
    """Keep positive integer ids, deduplicated in first-seen order."""
    if not isinstance(raw, list):
        return []

    seen: list[int] = []
    for value in raw:
        if not _is_positive_int(value):
            continue
        tag_id = int(value)
        if tag_id not in seen:
            seen.append(tag_id)
    return seen


def validate_flashcard(raw: Any) -> Optional[ValidatedFlashcard]:
    """Return a trimmed and length-limited card, or ``None`` if unusable."""
    if not isinstance(raw, dict):
        return None

    front = raw.get("front")
    back = raw.get("back")
    if not isinstance(front, str) or not isinstance(back, str):
        return None

    front = front.strip()
    back = back.strip()
    if not front or not back:
        return None

    if len(front) > MAX_FRONT_LENGTH:
        front = front[:MAX_FRONT_LENGTH]
    if len(back) > MAX_BACK_LENGTH:
        back = back[:BACK_TRUNCATE_LENGTH] + TRUNCATION_SUFFIX

    return ValidatedFlashcard(
        front=front, back=back, tag_ids=sanitize_tag_ids(raw.get("tag_ids"))
    )


def compute_fingerprint(front: str, back: str) -> str:
    """Content fingerprint used to spot duplicate cards."""
    normalized = "\x1f".join(
        _WHITESPACE.sub(" ", part).strip().casefold() for part in (front, back)
    )
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
