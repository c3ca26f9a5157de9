"""Line-level diff with intra-line parts for modified lines."""

import difflib

from core.state import DiffLine


def _char_parts(old, new):
    """Split a modified line pair into (kind, text) runs for side-by-side display."""
    old_parts, new_parts = [], []
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            old_parts.append(("common", old[i1:i2]))
            new_parts.append(("common", new[j1:j2]))
            continue
        if i2 > i1:
            old_parts.append(("removed", old[i1:i2]))
        if j2 > j1:
            new_parts.append(("added", new[j1:j2]))
    return old_parts, new_parts


def diff_lines(old_text, new_text):
    """Return a list of DiffLine describing how old_text became new_text.

    Replaced runs are paired line by line as "modified"; leftovers on either
    side become plain "removed" / "added" lines.
    """
    old_lines = old_text.split("\n")
    new_lines = new_text.split("\n")
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)

    result = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for offset in range(i2 - i1):
                result.append(DiffLine(
                    kind="common",
                    old_line_number=i1 + offset + 1,
                    new_line_number=j1 + offset + 1,
                    old_content=old_lines[i1 + offset],
                    new_content=new_lines[j1 + offset],
                ))
            continue

        paired = min(i2 - i1, j2 - j1) if tag == "replace" else 0
        for offset in range(paired):
            old_line = old_lines[i1 + offset]
            new_line = new_lines[j1 + offset]
            old_parts, new_parts = _char_parts(old_line, new_line)
            result.append(DiffLine(
                kind="modified",
                old_line_number=i1 + offset + 1,
                new_line_number=j1 + offset + 1,
                old_content=old_line,
                new_content=new_line,
                old_parts=old_parts,
                new_parts=new_parts,
            ))
        for idx in range(i1 + paired, i2):
            result.append(DiffLine(kind="removed", old_line_number=idx + 1, old_content=old_lines[idx]))
        for idx in range(j1 + paired, j2):
            result.append(DiffLine(kind="added", new_line_number=idx + 1, new_content=new_lines[idx]))

    return result


def count_changes(diff):
    """(added, removed, modified) line counts for a diff."""
    added = sum(1 for line in diff if line.kind == "added")
    removed = sum(1 for line in diff if line.kind == "removed")
    modified = sum(1 for line in diff if line.kind == "modified")
    return added, removed, modified
