"""Outstanding-issue registry fed by external analyzers.

The pipeline never produces these records itself; a project analyzer (or a
human) pushes a ProjectAnalysis per source and the orchestrator reads a
snapshot at the start of each run.
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

ISSUE_SOURCES = ("project-analyzer", "multi-agent", "manual")


@dataclass
class Issue:
    file: str
    line: int
    kind: str                   # "todo", "placeholder", "mock", "feature", "error", ...
    severity: str               # "low", "medium", "high", "critical"
    message: str
    suggestion: str = ""
    code_snippet: str = ""


@dataclass
class ProjectAnalysis:
    total_files: int = 0
    issues_found: int = 0
    issues: list[Issue] = field(default_factory=list)
    categories: dict[str, int] = field(default_factory=dict)   # todos, placeholders, mocks, ...
    missing_features: list[str] = field(default_factory=list)


@dataclass
class IssueSnapshot:
    sources: dict[str, ProjectAnalysis] = field(default_factory=dict)
    last_updated: float = 0.0

    def combined_issues(self):
        """Group every source's issues by (file, line), preserving first-seen order."""
        combined = {}
        for analysis in self.sources.values():
            for issue in analysis.issues:
                combined.setdefault((issue.file, issue.line), []).append(issue)
        return combined


class IssueRegistry:
    """Holds the latest ProjectAnalysis per source and notifies subscribers."""

    def __init__(self, clock=time.time):
        self._analyses = {}
        self._listeners = []
        self._last_updated = 0.0
        self._clock = clock

    def set_analysis(self, source, analysis: ProjectAnalysis):
        if source not in ISSUE_SOURCES:
            raise ValueError(f"Unknown issue source '{source}'. Expected one of: {', '.join(ISSUE_SOURCES)}")
        self._analyses[source] = copy.deepcopy(analysis)
        self._last_updated = self._clock()
        self._notify()

    def clear(self, source):
        if self._analyses.pop(source, None) is not None:
            self._last_updated = self._clock()
            self._notify()

    def get_analysis(self, source):
        analysis = self._analyses.get(source)
        return copy.deepcopy(analysis) if analysis is not None else None

    def snapshot(self) -> IssueSnapshot:
        return IssueSnapshot(
            sources=copy.deepcopy(self._analyses),
            last_updated=self._last_updated,
        )

    def subscribe(self, listener):
        """Register a listener; it is called immediately and after every change.

        Returns an unsubscribe callable.
        """
        self._listeners.append(listener)
        listener(self.snapshot())

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Issue registry listener failed")


def analysis_from_dict(data):
    """Build a ProjectAnalysis from a JSON-style dict (API / CLI input)."""
    issues = []
    for item in data.get("issues", []):
        if not isinstance(item, dict):
            continue
        issues.append(Issue(
            file=item.get("file", ""),
            line=int(item.get("line") or 0),
            kind=item.get("kind", item.get("type", "info")),
            severity=item.get("severity", "low"),
            message=item.get("message", ""),
            suggestion=item.get("suggestion", ""),
            code_snippet=item.get("code_snippet", ""),
        ))
    return ProjectAnalysis(
        total_files=int(data.get("total_files", 0)),
        issues_found=int(data.get("issues_found", len(issues))),
        issues=issues,
        categories=dict(data.get("categories", {})),
        missing_features=list(data.get("missing_features", [])),
    )
