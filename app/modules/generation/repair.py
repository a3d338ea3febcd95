"""Best-effort recovery of truncated or slightly malformed model JSON.

Stages are tried in order and the first one that produces something usable
wins:

1. decode the complete card objects of the ``"cards": [...]`` array,
2. hand the whole document to ``json_repair``,
3. split the array into ``{...}`` blocks and parse each one.

No stage raises; ``None`` means the response is beyond repair.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from json_repair import repair_json

from app.core.logging import get_logger

logger = get_logger(__name__)

_CARDS_ARRAY = re.compile(r'"cards"\s*:\s*\[')
_BLOCK_SEPARATOR = re.compile(r"\}\s*,\s*\{")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_UNESCAPED_QUOTE = re.compile(r'(?<!\\)"')
_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?(.*?)\n?```\s*$", re.DOTALL)

_decoder = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around the whole payload."""
    cleaned = text.strip()
    match = _FENCE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def _is_card(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    front = obj.get("front")
    back = obj.get("back")
    return (
        isinstance(front, str)
        and bool(front.strip())
        and isinstance(back, str)
        and bool(back.strip())
    )


def _array_body(content: str) -> Optional[str]:
    """Text of the cards array after ``[``, cut at its closing bracket if present."""
    match = _CARDS_ARRAY.search(content)
    if not match:
        return None

    body = content[match.end():]
    depth = 0
    in_string = False
    escape = False
    for index, ch in enumerate(body):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            if depth == 0:
                return body[:index]
            depth -= 1
    return body


def _decode_cards_streaming(body: str) -> list[dict]:
    cards: list[dict] = []
    pos = 0
    end = len(body)
    while pos < end:
        while pos < end and body[pos] in " \t\r\n,":
            pos += 1
        if pos >= end or body[pos] != "{":
            break
        try:
            obj, pos = _decoder.raw_decode(body, pos)
        except json.JSONDecodeError:
            # The first object that does not decode marks the truncation point.
            break
        if _is_card(obj):
            cards.append(obj)
    return cards


def _decode_cards_by_blocks(body: str) -> list[dict]:
    cards: list[dict] = []
    blocks = _BLOCK_SEPARATOR.split(body.strip())
    last = len(blocks) - 1

    for index, block in enumerate(blocks):
        block = block.strip()
        if not block:
            continue

        if index == last:
            # A mid-token cut leaves an odd quote count or an unclosed brace.
            if len(_UNESCAPED_QUOTE.findall(block)) % 2 != 0:
                continue
            if block.count("{") > block.count("}"):
                continue

        if not block.startswith("{"):
            block = "{" + block
        if not block.endswith("}"):
            block = block + "}"
        block = _TRAILING_COMMA.sub(r"\1", block)

        try:
            obj = json.loads(block)
        except json.JSONDecodeError:
            continue
        if _is_card(obj):
            cards.append(obj)
    return cards


def extract_partial_cards(content: str) -> Optional[list[dict]]:
    """Decode the complete ``{front, back}`` objects of a cut-off cards array."""
    body = _array_body(content)
    if body is None:
        return None
    return _decode_cards_streaming(body) or None


def split_card_blocks(content: str) -> Optional[list[dict]]:
    """Split the cards array on ``}, {`` and parse each block on its own."""
    body = _array_body(content)
    if body is None:
        return None
    return _decode_cards_by_blocks(body) or None


def repair_truncated_json(content: str) -> Optional[dict]:
    """Let ``json_repair`` close and clean the whole document."""
    text = content.strip()
    start = text.find("{")
    if start == -1:
        return None

    try:
        parsed = repair_json(text[start:], return_objects=True)
    except (ValueError, RecursionError) as e:
        logger.debug(f"json_repair could not handle the response: {e}")
        return None
    return parsed if isinstance(parsed, dict) and parsed else None


def recover_structured_json(content: str) -> Optional[dict]:
    """Run the recovery stages in order; return the first usable object."""
    cards = extract_partial_cards(content)
    if cards:
        logger.warning(
            "Recovered %d card(s) from a truncated cards array", len(cards)
        )
        return {"cards": cards}

    repaired = repair_truncated_json(content)
    if repaired is not None:
        logger.warning("Recovered structured response with json_repair")
        return repaired

    cards = split_card_blocks(content)
    if cards:
        logger.warning("Recovered %d card(s) by splitting card blocks", len(cards))
        return {"cards": cards}
    return None
