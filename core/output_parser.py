"""Parse the production engineer's output into file changes.

Three tiers, tried in order:
    1. the structured token grammar (<<SUMMARY>> / <<FILE:...>> blocks)
    2. fenced markdown code blocks, matched to context files heuristically
    3. the whole output captured as one new file

Falling through a tier is not an error; generated content is never dropped.
"""

import logging
import re
from dataclasses import dataclass, field

from core.state import FileChange
from utils.diff import diff_lines

logger = logging.getLogger(__name__)

FILE_BLOCK_START = "<<FILE:"
FILE_BLOCK_END = "<<END_FILE>>"
SUMMARY_START = "<<SUMMARY>>"
SUMMARY_END = "<<END_SUMMARY>>"
FILE_SUMMARY_START = "<<FILE_SUMMARY>>"
FILE_SUMMARY_END = "<<END_FILE_SUMMARY>>"
UPDATED_CONTENT_START = "<<UPDATED_CONTENT>>"
UPDATED_CONTENT_END = "<<END_UPDATED_CONTENT>>"
NO_CHANGES_TOKEN = "<<NO_CHANGES>>"

EMPTY_OUTPUT_SUMMARY = "Production engineer did not return any content."
NO_CHANGES_SUMMARY = "Production engineer reported no code changes required."
MISSING_SUMMARY = "Production engineer did not provide a summary block."
MISSING_FILE_SUMMARY = "Production engineer did not include a per-file summary."
WHOLE_OUTPUT_SUMMARY = (
    "Production engineer did not emit structured file summaries. "
    "Entire output captured as new file."
)
WHOLE_OUTPUT_PATH = "generated/output.txt"

_FENCE_RE = re.compile(r"```([^\n`]*)\n(.*?)```", re.DOTALL)
# Filepath in a comment on the first line of a block
_COMMENT_PATH_RE = re.compile(r"^\s*(?://|#|/\*|<!--)\s*([\w./\\-]+\.\w+)")
_PATH_TOKEN_RE = re.compile(r"^[\w./\\-]+\.\w+$")

LANGUAGE_EXTENSIONS = {
    "python": "py", "py": "py",
    "typescript": "ts", "ts": "ts", "tsx": "tsx",
    "javascript": "js", "js": "js", "jsx": "jsx",
    "html": "html", "css": "css", "json": "json",
    "yaml": "yaml", "yml": "yaml", "toml": "toml",
    "markdown": "md", "md": "md", "sql": "sql",
    "bash": "sh", "sh": "sh", "shell": "sh",
    "go": "go", "rust": "rs", "java": "java",
}

# Context lines must be longer than this (stripped) to count toward a content match
_SIMILARITY_MIN_LINE = 10
_SIMILARITY_HEAD_LINES = 10
_SIMILARITY_MIN_MATCHES = 3


@dataclass
class ParsedOutput:
    summary: str
    changes: list[FileChange] = field(default_factory=list)


def _extract_block(content, start_token, end_token):
    """Text between the first start_token and the next end_token.

    An unterminated block runs to the end of the text. None if start_token is absent.
    """
    start = content.find(start_token)
    if start == -1:
        return None
    rest = content[start + len(start_token):]
    end = rest.find(end_token)
    return rest if end == -1 else rest[:end]


def _extract_all_blocks(content, start_token, end_token):
    results = []
    remaining = content
    while remaining:
        start = remaining.find(start_token)
        if start == -1:
            break
        after = remaining[start + len(start_token):]
        end = after.find(end_token)
        if end == -1:
            results.append(after.strip())
            break
        results.append(after[:end].strip())
        remaining = after[end + len(end_token):]
    return results


def _remove_block(content, start_token, end_token):
    start = content.find(start_token)
    if start == -1:
        return content
    end = content.find(end_token, start + len(start_token))
    if end == -1:
        return content[:start]
    return content[:start] + content[end + len(end_token):]


def _make_change(path, summary, updated, original_files):
    original = original_files.get(path)
    return FileChange(
        path=path,
        change_summary=summary,
        updated_content=updated,
        original_content=original,
        diff=diff_lines(original, updated) if original is not None else None,
        is_new_file=original is None,
    )


def _parse_file_section(section, original_files):
    """Parse the text following `<<FILE:` up to `<<END_FILE>>`."""
    delimiter = section.find(">>")
    if delimiter == -1:
        return None
    path = section[:delimiter].strip().strip('"')
    if not path:
        return None
    remainder = section[delimiter + 2:].strip()

    file_summary = _extract_block(remainder, FILE_SUMMARY_START, FILE_SUMMARY_END)
    container = remainder
    if file_summary is not None:
        container = _remove_block(container, FILE_SUMMARY_START, FILE_SUMMARY_END).strip()

    updated = _extract_block(container, UPDATED_CONTENT_START, UPDATED_CONTENT_END)
    updated = updated.strip() if updated is not None else container

    return _make_change(
        path,
        (file_summary or "").strip() or MISSING_FILE_SUMMARY,
        updated,
        original_files,
    )


def _fence_header(header):
    """Split a fence header into (language, filename hint)."""
    tokens = header.replace("//", " ").split()
    language = ""
    hint = None
    for token in tokens:
        if hint is None and _PATH_TOKEN_RE.match(token):
            hint = token
        elif not language and "." not in token and "/" not in token:
            language = token.lower()
    return language, hint


def _match_by_content(code, original_files):
    for path, original in original_files.items():
        head = original.split("\n")[:_SIMILARITY_HEAD_LINES]
        shared = [
            line for line in head
            if len(line.strip()) > _SIMILARITY_MIN_LINE and line.strip() in code
        ]
        if len(shared) >= _SIMILARITY_MIN_MATCHES:
            return path
    return None


def extract_code_block_changes(content, original_files):
    """Turn fenced code blocks into file changes (second tier)."""
    changes = []
    block_index = 0
    for match in _FENCE_RE.finditer(content):
        language, hint = _fence_header(match.group(1))
        code = match.group(2).strip()
        if not code:
            continue

        path = hint
        if path is None:
            cm = _COMMENT_PATH_RE.match(code.split("\n", 1)[0])
            if cm:
                path = cm.group(1)
        if path is None:
            path = _match_by_content(code, original_files)

        detected = path
        if path is None:
            ext = LANGUAGE_EXTENSIONS.get(language, "txt")
            path = f"generated/generated-{block_index}.{ext}"

        label = language or "text"
        summary = f"Code block {block_index + 1} ({label})"
        if detected:
            summary += f" - {detected}"
        changes.append(_make_change(path, summary, code, original_files))
        block_index += 1
    return changes


def parse_output(raw_output, original_files=None) -> ParsedOutput:
    """Parse stage output into a summary and a list of FileChange."""
    original_files = original_files or {}
    if not raw_output or not raw_output.strip():
        return ParsedOutput(summary=EMPTY_OUTPUT_SUMMARY)

    text = raw_output.strip()
    if text == NO_CHANGES_TOKEN:
        return ParsedOutput(summary=NO_CHANGES_SUMMARY)

    summary = (_extract_block(text, SUMMARY_START, SUMMARY_END) or "").strip() or MISSING_SUMMARY

    sections = _extract_all_blocks(text, FILE_BLOCK_START, FILE_BLOCK_END)
    if sections:
        changes = [
            change for change in (_parse_file_section(s, original_files) for s in sections)
            if change is not None
        ]
        logger.debug("Parsed %d file changes from structured output", len(changes))
        return ParsedOutput(summary=summary, changes=changes)

    changes = extract_code_block_changes(text, original_files)
    if changes:
        logger.debug("Extracted %d code blocks from unstructured output", len(changes))
        return ParsedOutput(summary=summary, changes=changes)

    logger.debug("No structured blocks or code fences; capturing whole output as %s", WHOLE_OUTPUT_PATH)
    return ParsedOutput(
        summary=summary,
        changes=[FileChange(
            path=WHOLE_OUTPUT_PATH,
            change_summary=WHOLE_OUTPUT_SUMMARY,
            updated_content=text,
            is_new_file=True,
        )],
    )

