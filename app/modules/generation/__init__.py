"""Flashcard generation pipeline exports.

`GenerationProcessor` lives in `.processor` and is not re-exported here.
"""

from .models import AvailableTag, BatchResult, ProcessGenerationResult, ValidatedFlashcard
from .prompts import build_user_prompt, format_available_tags, get_system_prompt
from .repair import (
    extract_partial_cards,
    recover_structured_json,
    repair_truncated_json,
    split_card_blocks,
)
from .sanitizer import describe_source_text, hash_source_text, sanitize_source_text
from .validator import compute_fingerprint, sanitize_tag_ids, validate_flashcard

__all__ = [
    "AvailableTag",
    "BatchResult",
    "ProcessGenerationResult",
    "ValidatedFlashcard",
    "build_user_prompt",
    "format_available_tags",
    "get_system_prompt",
    "extract_partial_cards",
    "recover_structured_json",
    "repair_truncated_json",
    "split_card_blocks",
    "describe_source_text",
    "hash_source_text",
    "sanitize_source_text",
    "compute_fingerprint",
    "sanitize_tag_ids",
    "validate_flashcard",
]
