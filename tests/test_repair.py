"""Tests for recovery of truncated model output."""

import json

from app.modules.generation.repair import (
    extract_partial_cards,
    recover_structured_json,
    repair_truncated_json,
    split_card_blocks,
    strip_code_fences,
)


TRUNCATED = (
    '{"cards": [{"front": "What is MVCC?", "back": "Snapshot isolation.", "tag_ids": [1]},'
    ' {"front": "What is WAL?", "back": "Write-ahead log", "tag_ids": [2, 3]},'
    ' {"front": "What is VACU'
)


class TestExtractPartialCards:
    def test_complete_cards_before_the_cut_are_recovered(self) -> None:
        cards = extract_partial_cards(TRUNCATED)
        assert cards is not None
        assert [c["front"] for c in cards] == ["What is MVCC?", "What is WAL?"]
        assert cards[1]["tag_ids"] == [2, 3]

    def test_cards_without_front_or_back_are_dropped(self) -> None:
        content = '{"cards": [{"front": "", "back": "x"}, {"front": "q", "back": "a"}, {"fr'
        assert extract_partial_cards(content) == [{"front": "q", "back": "a"}]

    def test_no_cards_array(self) -> None:
        assert extract_partial_cards('{"items": [1, 2') is None

    def test_nothing_complete(self) -> None:
        assert extract_partial_cards('{"cards": [{"front": "only half') is None

    def test_trailing_comma_stops_the_decoder(self) -> None:
        content = '{"cards": [{"front": "q1", "back": "a1",}, {"front": "q2", "back": "a2"}, {"front'
        assert extract_partial_cards(content) is None

    def test_complete_array_followed_by_noise(self) -> None:
        content = '{"cards": [{"front": "q", "back": "a"}], "note": "unterminated'
        assert extract_partial_cards(content) == [{"front": "q", "back": "a"}]


class TestSplitCardBlocks:
    def test_trailing_commas_inside_blocks(self) -> None:
        content = '{"cards": [{"front": "q1", "back": "a1",}, {"front": "q2", "back": "a2"}, {"front'
        assert split_card_blocks(content) == [
            {"front": "q1", "back": "a1"},
            {"front": "q2", "back": "a2"},
        ]

    def test_cut_block_is_skipped(self) -> None:
        content = '{"cards": [{"front": "q1", "back": "a1"}, {"front": "q2", "ba'
        assert split_card_blocks(content) == [{"front": "q1", "back": "a1"}]

    def test_no_cards_array(self) -> None:
        assert split_card_blocks('{"items": []}') is None


class TestRepairTruncatedJson:
    def test_closes_string_and_structures(self) -> None:
        assert repair_truncated_json('{"summary": "cut off') == {"summary": "cut off"}

    def test_closes_in_nesting_order(self) -> None:
        assert repair_truncated_json('{"a": [{"b": [1, 2') == {"a": [{"b": [1, 2]}]}

    def test_strips_trailing_commas(self) -> None:
        assert repair_truncated_json('{"a": [1, 2,], "b": 3,}') == {"a": [1, 2], "b": 3}

    def test_missing_comma_between_members(self) -> None:
        content = '{"cards": [{"front": "What is WAL?", "back": "Write-ahead log" "tag_ids": []}]}'
        data = repair_truncated_json(content)
        assert data is not None
        assert data["cards"][0]["front"] == "What is WAL?"
        assert data["cards"][0]["back"] == "Write-ahead log"

    def test_brackets_inside_strings_are_ignored(self) -> None:
        assert repair_truncated_json('{"a": "[{", "b": [') == {"a": "[{", "b": []}

    def test_non_object_is_rejected(self) -> None:
        assert repair_truncated_json("[1, 2") is None
        assert repair_truncated_json("no json here") is None


class TestRecoverStructuredJson:
    def test_prefers_card_extraction(self) -> None:
        data = recover_structured_json(TRUNCATED)
        assert data is not None
        assert len(data["cards"]) == 2

    def test_falls_back_to_whole_document_repair(self) -> None:
        assert recover_structured_json('{"cards": [], "note": "x') == {
            "cards": [],
            "note": "x",
        }

    def test_malformed_card_is_recovered_whole(self) -> None:
        data = recover_structured_json(
            '{"cards": [{"front": "What is WAL?", "back": "Write-ahead log" "tag_ids": []}]}'
        )
        assert data is not None
        assert [c["front"] for c in data["cards"]] == ["What is WAL?"]

    def test_gives_up_on_garbage(self) -> None:
        assert recover_structured_json("I cannot help with that.") is None


def test_strip_code_fences() -> None:
    payload = json.dumps({"cards": []})
    assert strip_code_fences(f"```json\n{payload}\n```") == payload
    assert strip_code_fences(f"  {payload}  ") == payload
