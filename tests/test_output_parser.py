"""Tests for core.output_parser — the three parsing tiers."""

from core.output_parser import (
    EMPTY_OUTPUT_SUMMARY,
    MISSING_FILE_SUMMARY,
    MISSING_SUMMARY,
    NO_CHANGES_SUMMARY,
    WHOLE_OUTPUT_PATH,
    WHOLE_OUTPUT_SUMMARY,
    parse_output,
)

STRUCTURED = """<<SUMMARY>>
Hardened request handling.
<<END_SUMMARY>>
<<FILE:src/app.py>>
<<FILE_SUMMARY>>
Added input validation.
<<END_FILE_SUMMARY>>
<<UPDATED_CONTENT>>
def handler(x):
    if x is None:
        raise ValueError("x required")
    return x
<<END_UPDATED_CONTENT>>
<<END_FILE>>
<<FILE:src/new_module.py>>
<<FILE_SUMMARY>>
New helper module.
<<END_FILE_SUMMARY>>
<<UPDATED_CONTENT>>
VALUE = 1
<<END_UPDATED_CONTENT>>
<<END_FILE>>
"""


def test_empty_output():
    parsed = parse_output("   \n")
    assert parsed.summary == EMPTY_OUTPUT_SUMMARY
    assert parsed.changes == []


def test_no_changes_token():
    parsed = parse_output("  <<NO_CHANGES>>\n")
    assert parsed.summary == NO_CHANGES_SUMMARY
    assert parsed.changes == []


def test_structured_blocks():
    original = {"src/app.py": "def handler(x):\n    return x"}
    parsed = parse_output(STRUCTURED, original)
    assert parsed.summary == "Hardened request handling."
    assert [c.path for c in parsed.changes] == ["src/app.py", "src/new_module.py"]

    existing, new = parsed.changes
    assert existing.is_new_file is False
    assert existing.change_summary == "Added input validation."
    assert existing.original_content == original["src/app.py"]
    assert existing.updated_content.startswith("def handler(x):")
    assert existing.diff is not None
    assert any(line.kind == "added" for line in existing.diff)

    assert new.is_new_file is True
    assert new.updated_content == "VALUE = 1"
    assert new.diff is None


def test_structured_round_trip_content_is_verbatim():
    body = "line one\n  indented line\n\nline four"
    raw = (
        "<<SUMMARY>>s<<END_SUMMARY>>"
        f"<<FILE:a.txt>><<FILE_SUMMARY>>f<<END_FILE_SUMMARY>>"
        f"<<UPDATED_CONTENT>>\n{body}\n<<END_UPDATED_CONTENT>><<END_FILE>>"
    )
    parsed = parse_output(raw)
    assert parsed.changes[0].updated_content == body


def test_missing_summaries_get_defaults():
    raw = "<<FILE:a.py>>\n<<UPDATED_CONTENT>>\nx = 1\n<<END_UPDATED_CONTENT>>\n<<END_FILE>>"
    parsed = parse_output(raw)
    assert parsed.summary == MISSING_SUMMARY
    assert parsed.changes[0].change_summary == MISSING_FILE_SUMMARY


def test_file_block_without_updated_content_uses_rest():
    raw = "<<FILE:a.py>>\nx = 1\ny = 2\n<<END_FILE>>"
    parsed = parse_output(raw)
    assert parsed.changes[0].updated_content == "x = 1\ny = 2"


def test_unterminated_file_block_runs_to_end():
    raw = "<<FILE:a.py>>\n<<UPDATED_CONTENT>>\nx = 1"
    parsed = parse_output(raw)
    assert parsed.changes[0].path == "a.py"
    assert parsed.changes[0].updated_content == "x = 1"


def test_fence_with_filename_hint():
    raw = "Here you go:\n```python src/app.py\nprint('hi')\n```\n"
    parsed = parse_output(raw, {"src/app.py": "print('old')"})
    assert len(parsed.changes) == 1
    change = parsed.changes[0]
    assert change.path == "src/app.py"
    assert change.is_new_file is False
    assert "src/app.py" in change.change_summary


def test_fence_with_comment_path():
    raw = "```js\n// web/index.js\nconsole.log(1)\n```"
    parsed = parse_output(raw)
    assert parsed.changes[0].path == "web/index.js"
    assert parsed.changes[0].is_new_file is True


def test_fence_matched_by_content():
    original = (
        "import os\n"
        "import sys\n"
        "def load_settings(path):\n"
        "    with open(path) as handle:\n"
        "        return handle.read()\n"
    )
    updated = (
        "def load_settings(path):\n"
        "    with open(path) as handle:\n"
        "        return handle.read()\n"
        "def save_settings(path, data):\n"
        "    pass\n"
    )
    raw = f"```python\n{updated}```"
    parsed = parse_output(raw, {"config/settings.py": original})
    assert parsed.changes[0].path == "config/settings.py"


def test_fence_without_match_gets_synthetic_paths():
    raw = "```python\nx = 1\n```\ntext\n```\nplain\n```"
    parsed = parse_output(raw)
    assert [c.path for c in parsed.changes] == [
        "generated/generated-0.py",
        "generated/generated-1.txt",
    ]
    assert parsed.changes[0].change_summary.startswith("Code block 1 (python)")


def test_whole_output_last_resort():
    raw = "Just some prose with no structure."
    parsed = parse_output(raw)
    assert len(parsed.changes) == 1
    change = parsed.changes[0]
    assert change.path == WHOLE_OUTPUT_PATH
    assert change.change_summary == WHOLE_OUTPUT_SUMMARY
    assert change.updated_content == raw
    assert change.is_new_file is True
