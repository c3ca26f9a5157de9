"""Tests for core.issues."""

import pytest

from core.issues import Issue, IssueRegistry, ProjectAnalysis, analysis_from_dict


def _analysis(*issues):
    return ProjectAnalysis(total_files=2, issues_found=len(issues), issues=list(issues))


def test_set_and_get_analysis(clock):
    registry = IssueRegistry(clock=clock)
    registry.set_analysis("project-analyzer", _analysis(Issue("a.py", 1, "todo", "low", "fix me")))
    analysis = registry.get_analysis("project-analyzer")
    assert analysis.issues[0].message == "fix me"
    assert registry.snapshot().last_updated == clock.now


def test_registry_copies_input():
    registry = IssueRegistry()
    analysis = _analysis(Issue("a.py", 1, "todo", "low", "fix me"))
    registry.set_analysis("manual", analysis)
    analysis.issues.clear()
    assert len(registry.get_analysis("manual").issues) == 1


def test_unknown_source_rejected():
    with pytest.raises(ValueError):
        IssueRegistry().set_analysis("linter", _analysis())


def test_subscribe_gets_current_and_updates():
    registry = IssueRegistry()
    seen = []
    unsubscribe = registry.subscribe(lambda snap: seen.append(len(snap.sources)))
    registry.set_analysis("manual", _analysis())
    registry.clear("manual")
    unsubscribe()
    registry.set_analysis("manual", _analysis())
    assert seen == [0, 1, 0]


def test_failing_listener_does_not_break_others():
    registry = IssueRegistry()
    seen = []
    registry.subscribe(lambda snap: seen.append("ok"))

    def broken(snap):
        if snap.sources:
            raise RuntimeError("listener bug")

    registry.subscribe(broken)
    registry.set_analysis("manual", _analysis())
    assert seen == ["ok", "ok"]


def test_combined_issues_group_by_location():
    registry = IssueRegistry()
    registry.set_analysis("project-analyzer", _analysis(
        Issue("a.py", 1, "todo", "low", "first"),
        Issue("b.py", 2, "mock", "low", "second"),
    ))
    registry.set_analysis("manual", _analysis(Issue("a.py", 1, "feature", "high", "third")))
    combined = registry.snapshot().combined_issues()
    assert list(combined) == [("a.py", 1), ("b.py", 2)]
    assert [i.message for i in combined[("a.py", 1)]] == ["first", "third"]


def test_analysis_from_dict():
    analysis = analysis_from_dict({
        "total_files": "4",
        "issues": [
            {"file": "a.py", "line": 3, "type": "placeholder", "severity": "high", "message": "stub"},
            "not an issue",
        ],
        "categories": {"placeholders": 1},
        "missing_features": ["Export to CSV"],
    })
    assert analysis.total_files == 4
    assert analysis.issues_found == 1
    assert analysis.issues[0].kind == "placeholder"
    assert analysis.missing_features == ["Export to CSV"]
