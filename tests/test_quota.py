"""Tests for core.quota — cool-down gate, degraded mode, audit log."""

from core.quota import QuotaTracker


def test_fresh_tracker_is_healthy(tracker):
    health = tracker.snapshot()
    assert health.is_cooling_down is False
    assert health.cooldown_until is None
    assert health.recent_failure_count == 0
    assert health.ms_remaining == 0
    assert health.degraded is False


def test_failure_starts_cooldown(tracker, clock):
    tracker.record_failure()
    health = tracker.snapshot()
    assert health.is_cooling_down is True
    assert health.cooldown_until == clock.now + 180
    assert health.seconds_remaining == 180
    assert health.recent_failure_count == 1


def test_cooldown_boundary_is_exclusive(tracker, clock):
    tracker.record_failure()
    clock.advance(179.5)
    health = tracker.snapshot()
    assert health.is_cooling_down is True
    assert health.seconds_remaining == 1

    clock.advance(0.5)
    health = tracker.snapshot()
    assert health.is_cooling_down is False
    assert health.ms_remaining == 0


def test_failures_prune_after_window(tracker, clock):
    tracker.record_failure()
    clock.advance(300)
    tracker.record_failure()
    clock.advance(301)
    assert tracker.snapshot().recent_failure_count == 1


def test_degraded_after_threshold(clock):
    tracker = QuotaTracker(clock=clock)
    for _ in range(4):
        tracker.record_failure()
        clock.advance(10)
    assert tracker.snapshot().degraded is False
    tracker.record_failure()
    assert tracker.snapshot().degraded is True


def test_degraded_outlives_cooldown(clock):
    tracker = QuotaTracker(clock=clock)
    for _ in range(5):
        tracker.record_failure()
    clock.advance(200)
    health = tracker.snapshot()
    assert health.is_cooling_down is False
    assert health.degraded is True


def test_explicit_now_overrides_clock(tracker):
    tracker.record_failure(now=1000.0)
    assert tracker.snapshot(now=1180.0).is_cooling_down is False
    assert tracker.snapshot(now=1179.9).is_cooling_down is True


def test_cooldown_history_window(tracker, clock):
    tracker.record_cooldown_block("run-1", "prompt_only", 120, 1)
    clock.advance(3600)
    tracker.record_cooldown_block("run-2", "active_file", 60, 2)

    assert [e.run_id for e in tracker.cooldown_history()] == ["run-1", "run-2"]
    assert [e.run_id for e in tracker.cooldown_history(window_seconds=60)] == ["run-2"]

    clock.advance(24 * 3600 - 1800)
    assert [e.run_id for e in tracker.cooldown_history()] == ["run-2"]


def test_reset_clears_everything(tracker):
    tracker.record_failure()
    tracker.record_cooldown_block("run-1", "prompt_only", 180, 1)
    tracker.reset()
    health = tracker.snapshot()
    assert health.is_cooling_down is False
    assert health.recent_failure_count == 0
    assert tracker.cooldown_history() == []
