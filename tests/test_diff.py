"""Tests for utils.diff."""

from utils.diff import count_changes, diff_lines


def test_identical_text_is_all_common():
    diff = diff_lines("a\nb", "a\nb")
    assert [d.kind for d in diff] == ["common", "common"]
    assert diff[1].old_line_number == 2
    assert diff[1].new_line_number == 2


def test_added_and_removed_lines():
    diff = diff_lines("a\nb\nc", "a\nc\nd")
    kinds = [(d.kind, d.old_content or d.new_content) for d in diff]
    assert ("removed", "b") in kinds
    assert ("added", "d") in kinds
    assert count_changes(diff) == (1, 1, 0)


def test_modified_line_has_parts():
    diff = diff_lines("x = 1\ny = 2", "x = 10\ny = 2")
    modified = [d for d in diff if d.kind == "modified"]
    assert len(modified) == 1
    line = modified[0]
    assert line.old_content == "x = 1"
    assert line.new_content == "x = 10"
    assert ("added", "0") in line.new_parts
    assert "".join(text for _, text in line.old_parts) == "x = 1"
    assert "".join(text for _, text in line.new_parts) == "x = 10"


def test_uneven_replace_leaves_extra_lines():
    diff = diff_lines("one", "uno\ndos")
    assert count_changes(diff) == (1, 0, 1)
    added = [d for d in diff if d.kind == "added"][0]
    assert added.new_line_number == 2
    assert added.old_line_number is None
