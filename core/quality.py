"""Quality gate evaluation."""

import re

from config.defaults import DEFAULTS

_SCORE_RE = re.compile(r"quality score[:\s]+(\d+)", re.IGNORECASE)


def is_approved(review_output):
    """The quality checker approves by starting its reply with APPROVE."""
    return (review_output or "").strip().upper().startswith("APPROVE")


def extract_quality_score(validation_output):
    """Score reported by the final validator, or the neutral default when absent."""
    match = _SCORE_RE.search(validation_output or "")
    if not match:
        return DEFAULTS["neutral_quality_score"]
    return int(match.group(1))


def max_quality_attempts(requested, health=None):
    """Generate/check attempts allowed for a run.

    Clamped to [1, hard max]; one attempt in degraded mode; capped lower
    while any quota failure is recent.
    """
    if requested is None:
        requested = DEFAULTS["quality_attempts"]
    attempts = max(1, min(int(requested), DEFAULTS["hard_max_quality_attempts"]))
    if health is not None:
        if health.degraded:
            return 1
        if health.recent_failure_count > 0:
            attempts = min(attempts, DEFAULTS["recent_failure_max_attempts"])
    return attempts
