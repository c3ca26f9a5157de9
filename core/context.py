"""Context assembler: packs project files into a bounded text payload."""

from config.defaults import DEFAULTS
from core.state import CONTEXT_MODES, ContextFile, ContextPayload

FILE_HEADER = "// FILE: {path}\n"
TRUNCATION_MARKER = "\n// ... TRUNCATED ...\n\n"
# A truncated file must keep at least this much content to be worth including
_MIN_TRUNCATED_CONTENT = 50


def effective_budget(max_characters=None):
    """Clamp a requested character budget to [min_context_chars, max_context_chars]."""
    if max_characters is None:
        max_characters = DEFAULTS["default_context_chars"]
    budget = max(DEFAULTS["min_context_chars"], int(max_characters))
    return min(budget, DEFAULTS["max_context_chars"])


def _collect_files(mode, files, active_file):
    """Ordered, de-duplicated {path: content} for the given mode. Active file first."""
    unique = {}

    def add(f):
        if f is None or not f.path or not isinstance(f.content, str):
            return
        if f.path not in unique:
            unique[f.path] = f.content

    if mode == "prompt_only":
        return unique
    add(active_file)
    if mode in ("selected_files", "full_project"):
        for f in files or []:
            add(f)
    return unique


def assemble(mode, files=None, active_file: ContextFile = None, max_characters=None) -> ContextPayload:
    """Build the context payload for a run.

    Files are packed in order, each behind a `// FILE: <path>` header. The
    first file that does not fit is truncated (when enough room is left) and
    packing stops there, so the aggregated text never exceeds the budget.
    """
    if mode not in CONTEXT_MODES:
        raise ValueError(f"Unknown context mode '{mode}'. Expected one of: {', '.join(CONTEXT_MODES)}")

    if mode == "prompt_only":
        return ContextPayload(
            aggregated_text="",
            summary_text=(
                "Mode: prompt_only. No existing code supplied. "
                "The pipeline must reason from the new prompt alone."
            ),
            file_map={},
        )

    ordered = _collect_files(mode, files, active_file)
    budget = effective_budget(max_characters)

    parts = []
    used = 0
    truncated = False
    for path, content in ordered.items():
        header = FILE_HEADER.format(path=path)
        body = content.strip()
        snippet = f"{header}{body}\n\n"
        if used + len(snippet) > budget:
            remaining = budget - used
            overhead = len(header) + len(TRUNCATION_MARKER)
            if remaining > overhead + _MIN_TRUNCATED_CONTENT:
                piece = f"{header}{body[:remaining - overhead]}{TRUNCATION_MARKER}"
                parts.append(piece)
                used += len(piece)
            truncated = True
            break
        parts.append(snippet)
        used += len(snippet)

    summary = [
        f"Mode: {mode}",
        f"Files included: {len(ordered)}",
        f"Characters included: {used:,} (limit {budget:,})",
        "Context truncated to respect model limits (truncated=true)."
        if truncated else "Context fully included (truncated=false).",
    ]
    if active_file is not None and active_file.path in ordered:
        summary.append(f"Active file prioritized: {active_file.path}")
    elif mode == "active_file":
        summary.append("Warning: Active file requested but not provided. Context is empty.")

    return ContextPayload(
        aggregated_text="".join(parts),
        summary_text="\n".join(summary),
        file_map=dict(ordered),
        active_file_path=active_file.path if active_file is not None else None,
        truncated=truncated,
    )
