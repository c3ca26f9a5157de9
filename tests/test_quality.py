"""Tests for core.quality."""

from core.quality import extract_quality_score, is_approved, max_quality_attempts
from core.quota import QuotaHealth


def _health(recent=0, degraded=False):
    return QuotaHealth(
        is_cooling_down=False,
        cooldown_until=None,
        last_failure_at=None,
        recent_failure_count=recent,
        ms_remaining=0,
        degraded=degraded,
    )


def test_approval_marker():
    assert is_approved("APPROVE: looks good") is True
    assert is_approved("  approved, ship it") is True
    assert is_approved("REJECT: missing tests") is False
    assert is_approved("I would APPROVE this") is False
    assert is_approved("") is False
    assert is_approved(None) is False


def test_quality_score_extraction():
    assert extract_quality_score("Quality Score: 92\nPASS") == 92
    assert extract_quality_score("quality score 64") == 64
    assert extract_quality_score("All good.") == 75
    assert extract_quality_score(None) == 75


def test_default_attempts():
    assert max_quality_attempts(None) == 3


def test_attempts_clamped():
    assert max_quality_attempts(0) == 1
    assert max_quality_attempts(9) == 5
    assert max_quality_attempts(4, _health()) == 4


def test_degraded_forces_single_attempt():
    assert max_quality_attempts(5, _health(recent=5, degraded=True)) == 1


def test_recent_failures_cap_attempts():
    assert max_quality_attempts(5, _health(recent=1)) == 2
    assert max_quality_attempts(1, _health(recent=1)) == 1
