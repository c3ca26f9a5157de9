"""Report composer — issue summary, missing features, recommendations. Zero LLM calls."""

import re

from core.issues import IssueSnapshot

ANALYZER_SOURCE = "project-analyzer"
SAMPLE_LOCATIONS = 10
MAX_RECOMMENDATIONS = 50

CATEGORY_LABELS = [
    ("todos", "TODO"),
    ("placeholders", "Placeholders"),
    ("mocks", "Mocks"),
    ("incomplete", "Incomplete"),
    ("dependencies", "Dependencies"),
    ("features", "Features"),
]

_VERDICT_RE = re.compile(r"^(APPROVE|REJECT)", re.IGNORECASE)
_VALIDATOR_NOISE_RE = re.compile(r"\b(pass|quality score)", re.IGNORECASE)


def _meaningful_lines(text):
    for line in (text or "").splitlines():
        line = line.strip()
        if line:
            yield line


class ReportComposer:
    """Turns an IssueSnapshot and stage outputs into report sections."""

    name = "report_composer"

    def issue_summary(self, snapshot: IssueSnapshot):
        """Text block for the analyzer's PROJECT ISSUE SNAPSHOT section.

        None when no source has published anything.
        """
        if snapshot is None or not snapshot.sources:
            return None

        lines = []
        analysis = snapshot.sources.get(ANALYZER_SOURCE)
        if analysis is not None:
            lines.append(
                f"Project Analyzer found {analysis.issues_found} issues "
                f"across {analysis.total_files} files."
            )
            breakdown = [f"{label}: {analysis.categories.get(key, 0)}" for key, label in CATEGORY_LABELS]
            known = {key for key, _ in CATEGORY_LABELS}
            breakdown += [f"{key}: {count}" for key, count in analysis.categories.items() if key not in known]
            lines.append("Breakdown -> " + ", ".join(breakdown))
        else:
            lines.append("No Project Analyzer results available.")

        combined = list(snapshot.combined_issues().items())
        sample = combined[:SAMPLE_LOCATIONS]
        if sample:
            lines.append("Sample outstanding issues:")
            for (file, line), issues in sample:
                messages = " | ".join(issue.message for issue in issues)
                lines.append(f"- {file}:{line} -> {messages}")
            if len(combined) > len(sample):
                lines.append(f"... plus {len(combined) - len(sample)} additional issue locations.")

        return "\n".join(lines)

    def missing_features(self, snapshot: IssueSnapshot):
        if snapshot is None:
            return []

        features = set()

        def push(value):
            value = (value or "").strip()
            if value:
                features.add(value)

        analyzer = snapshot.sources.get(ANALYZER_SOURCE)
        if analyzer is not None:
            for feature in analyzer.missing_features:
                push(feature)
            for issue in analyzer.issues:
                if issue.kind != "feature":
                    continue
                push(issue.message)
                push(issue.suggestion)
                if not issue.message and not issue.suggestion:
                    push(
                        f"Feature gap: {issue.code_snippet}" if issue.code_snippet
                        else f"Feature gap detected in {issue.file}:{issue.line}"
                    )
            outstanding = analyzer.categories.get("features", 0)
            if outstanding > 0 and len(features) < outstanding:
                plural = "" if outstanding == 1 else "s"
                push(f"[Analyzer] {outstanding} unresolved feature flag{plural} "
                     "remain in the project analysis report.")

        for source, analysis in snapshot.sources.items():
            if source == ANALYZER_SOURCE:
                continue
            for feature in analysis.missing_features:
                push(feature)
            for issue in analysis.issues:
                if issue.kind == "feature":
                    push(issue.message or issue.suggestion or issue.code_snippet)

        for (file, line), issues in snapshot.combined_issues().items():
            for issue in issues:
                if issue.kind == "feature":
                    push(issue.message or issue.suggestion or issue.code_snippet
                         or f"Feature gap flagged at {file}:{line}")

        return sorted(features, key=str.lower)

    def recommendations(self, attempts, validator_output, analysis_summary, snapshot: IssueSnapshot):
        """Unique actionable lines, in first-seen order, capped at MAX_RECOMMENDATIONS."""
        found = {}

        for attempt in attempts:
            for line in _meaningful_lines(attempt.reviewer_feedback):
                if not _VERDICT_RE.match(line):
                    found.setdefault(line)

        for line in _meaningful_lines(validator_output):
            if not _VALIDATOR_NOISE_RE.search(line):
                found.setdefault(line)

        for line in _meaningful_lines(analysis_summary):
            if line.startswith(("-", "*")):
                found.setdefault(line)

        if snapshot is not None:
            for issues in snapshot.combined_issues().values():
                for issue in issues:
                    if issue.suggestion.strip():
                        found.setdefault(issue.suggestion.strip())

        return list(found)[:MAX_RECOMMENDATIONS]
