"""Tests for the line edit model and the edit validator."""

from __future__ import annotations

import pytest

from editpilot.ai.intent import IntentResult, infer_intent
from editpilot.ai.tools.errors import InvalidEditError
from editpilot.ai.tools.line_edits import LineEdit, split_content_lines, validate_edits


def _insert(line: int, content: str = "new line") -> dict:
    return {"editType": "insert", "position": {"line": line}, "content": content, "originalLineCount": 0}


def test_split_content_lines_ignores_single_trailing_newline() -> None:
    assert split_content_lines("a\nb\n") == ["a", "b"]
    assert split_content_lines("a\r\nb") == ["a", "b"]
    assert split_content_lines("") == []
    assert split_content_lines(None) == []
    assert split_content_lines("\n") == [""]


def test_from_mapping_defaults_line_count_by_type() -> None:
    insert = LineEdit.from_mapping({"editType": "insert", "position": {"line": 2}, "content": "x"})
    delete = LineEdit.from_mapping({"editType": "delete", "position": {"line": 2}})

    assert insert.original_line_count == 0
    assert delete.original_line_count == 1
    assert delete.content is None


@pytest.mark.parametrize(
    "payload",
    [
        {"editType": "move", "position": {"line": 1}},
        {"editType": "delete", "position": {"line": 0}},
        {"editType": "delete"},
        {"editType": "replace", "position": {"line": 1}},
        {"editType": "delete", "position": {"line": 1}, "originalLineCount": -1},
    ],
)
def test_from_mapping_rejects_malformed_edits(payload: dict) -> None:
    with pytest.raises(InvalidEditError):
        LineEdit.from_mapping(payload)


def test_delta_lines_and_end_line() -> None:
    edit = LineEdit(edit_type="replace", line=3, content="a\nb\nc", original_line_count=2)

    assert edit.end_line == 4
    assert edit.delta_lines == 1
    assert LineEdit(edit_type="insert", line=5, content="x").end_line == 5


def test_to_dict_round_trips_wire_names() -> None:
    edit = LineEdit(edit_type="replace", line=4, content="text", original_line_count=1, file_path="a.tex")

    assert edit.to_dict() == {
        "editType": "replace",
        "position": {"line": 4},
        "originalLineCount": 1,
        "content": "text",
        "filePath": "a.tex",
    }
    assert LineEdit.from_mapping(edit.to_dict()) == edit


def test_read_only_intent_blocks_every_edit() -> None:
    edits = [_insert(1), _insert(2)]

    result = validate_edits(edits, infer_intent("only read the file"), "a\nb")

    assert result.accepted_edits == []
    assert result.violations == edits
    assert result.violation_count == 2


def test_disallowed_operation_is_a_violation() -> None:
    intent = IntentResult(allow_delete=False)
    edits = [_insert(1), {"editType": "delete", "position": {"line": 1}, "originalLineCount": 1}]

    result = validate_edits(edits, intent, "a\nb")

    assert [edit.edit_type for edit in result.accepted_edits] == ["insert"]
    assert result.violation_count == 1
    assert "delete" in result.reasons[0]


def test_out_of_range_edits_are_blocked() -> None:
    content = "one\ntwo\nthree"
    edits = [
        _insert(4),
        _insert(5),
        {"editType": "replace", "position": {"line": 3}, "content": "x", "originalLineCount": 1},
        {"editType": "delete", "position": {"line": 2}, "originalLineCount": 3},
    ]

    result = validate_edits(edits, IntentResult(), content)

    assert [edit.line for edit in result.accepted_edits] == [4, 3]
    assert result.violations == [edits[1], edits[3]]


def test_malformed_edit_becomes_violation_not_exception() -> None:
    result = validate_edits([{"editType": "insert"}, _insert(1)], IntentResult(), "x")

    assert len(result.accepted_edits) == 1
    assert result.violation_count == 1


def test_file_path_is_stamped_on_accepted_edits() -> None:
    result = validate_edits([_insert(1)], IntentResult(), "x", file_path="chapters/one.tex")

    assert result.accepted_edits[0].file_path == "chapters/one.tex"
