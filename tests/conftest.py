"""Pytest configuration and fixtures."""

import pytest

from core.issues import Issue, IssueSnapshot, ProjectAnalysis
from core.quota import QuotaTracker
from core.state import AgentConfig


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced epoch clock for window/cool-down tests."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return QuotaTracker(clock=clock)


@pytest.fixture
def agent_config():
    return AgentConfig(
        name="Code Analyzer",
        role="The Detective",
        model_id="claude-sonnet-4-5-20250929",
        temperature=0.3,
        system_prompt="You analyze code.",
    )


@pytest.fixture
def issue_snapshot():
    analysis = ProjectAnalysis(
        total_files=12,
        issues_found=3,
        issues=[
            Issue(file="src/app.py", line=10, kind="todo", severity="low",
                  message="TODO: handle errors", suggestion="Add error handling"),
            Issue(file="src/app.py", line=10, kind="mock", severity="medium",
                  message="Mocked database call"),
            Issue(file="src/auth.py", line=3, kind="feature", severity="high",
                  message="Password reset not implemented", suggestion="Implement password reset"),
        ],
        categories={"todos": 1, "mocks": 1, "features": 1},
        missing_features=["Audit logging"],
    )
    return IssueSnapshot(sources={"project-analyzer": analysis}, last_updated=1.0)
