"""Quota health tracking: cool-down gate, degraded mode, cool-down audit log.

Two independent levers, each with its own window:
    - cool-down: a fixed period after the most recent quota failure during
      which new runs are refused
    - degraded mode: enough quota failures inside the failure window that
      runs proceed with cheaper settings
"""

import logging
import math
import time
from dataclasses import dataclass

from config.defaults import DEFAULTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaHealth:
    is_cooling_down: bool
    cooldown_until: float | None
    last_failure_at: float | None
    recent_failure_count: int
    ms_remaining: int
    degraded: bool

    @property
    def seconds_remaining(self):
        return max(0, math.ceil(self.ms_remaining / 1000))


@dataclass(frozen=True)
class CooldownBlockEvent:
    timestamp: float
    run_id: str
    context_mode: str
    cooldown_seconds: int
    recent_failure_count: int


class QuotaTracker:
    """Process-wide record of provider quota failures.

    All times are epoch seconds from `clock`. Timestamps outside their window
    are pruned before every read and after every append.
    """

    def __init__(self, cooldown_seconds=None, failure_window_seconds=None,
                 degrade_threshold=None, history_window_seconds=None, clock=time.time):
        self.cooldown_seconds = cooldown_seconds if cooldown_seconds is not None else DEFAULTS["quota_cooldown_seconds"]
        self.failure_window_seconds = (
            failure_window_seconds if failure_window_seconds is not None
            else DEFAULTS["quota_failure_window_seconds"]
        )
        self.degrade_threshold = degrade_threshold if degrade_threshold is not None else DEFAULTS["quota_degrade_threshold"]
        self.history_window_seconds = (
            history_window_seconds if history_window_seconds is not None
            else DEFAULTS["cooldown_history_seconds"]
        )
        self._clock = clock
        self._last_failure_at = None
        self._failures = []
        self._cooldown_blocks = []

    def _prune_failures(self, now):
        cutoff = now - self.failure_window_seconds
        self._failures = [ts for ts in self._failures if ts >= cutoff]

    def _prune_history(self, now):
        cutoff = now - self.history_window_seconds
        self._cooldown_blocks = [e for e in self._cooldown_blocks if e.timestamp >= cutoff]

    def record_failure(self, now=None):
        now = self._clock() if now is None else now
        self._last_failure_at = now
        self._failures.append(now)
        self._prune_failures(now)
        logger.warning(
            "Quota failure recorded (%d in the last %ds); cool-down for %ds",
            len(self._failures), self.failure_window_seconds, self.cooldown_seconds,
        )

    def snapshot(self, now=None) -> QuotaHealth:
        now = self._clock() if now is None else now
        self._prune_failures(now)
        last = self._last_failure_at
        cooldown_until = last + self.cooldown_seconds if last is not None else None
        remaining = max(0.0, cooldown_until - now) if cooldown_until is not None else 0.0
        recent = len(self._failures)
        return QuotaHealth(
            is_cooling_down=remaining > 0,
            cooldown_until=cooldown_until,
            last_failure_at=last,
            recent_failure_count=recent,
            ms_remaining=math.ceil(remaining * 1000),
            degraded=recent >= self.degrade_threshold,
        )

    def record_cooldown_block(self, run_id, context_mode, cooldown_seconds, recent_failure_count, now=None):
        now = self._clock() if now is None else now
        self._prune_history(now)
        event = CooldownBlockEvent(
            timestamp=now,
            run_id=run_id,
            context_mode=context_mode,
            cooldown_seconds=cooldown_seconds,
            recent_failure_count=recent_failure_count,
        )
        self._cooldown_blocks.append(event)
        return event

    def cooldown_history(self, window_seconds=None, now=None):
        """Cool-down block events inside window_seconds (default: the full history window)."""
        now = self._clock() if now is None else now
        self._prune_history(now)
        if not window_seconds or window_seconds <= 0:
            window_seconds = self.history_window_seconds
        cutoff = now - window_seconds
        return [e for e in self._cooldown_blocks if e.timestamp >= cutoff]

    def reset(self):
        self._last_failure_at = None
        self._failures = []
        self._cooldown_blocks = []
