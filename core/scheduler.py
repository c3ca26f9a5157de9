"""Rate-limited request scheduler for the primary completion provider.

Requests are opaque async callables. They wait in a single priority queue
(high > normal > low, FIFO inside a tier) and are drained on a short tick
while both sliding windows (per-minute, per-day) have capacity. Quota and
rate-limit failures are retried at the front of the queue after a delay;
everything else is handed back to the caller unchanged.

One scheduler instance is shared by every concurrent run so the windows
enforce a provider-wide quota. All methods must be called from the event
loop that owns the scheduler.
"""

import asyncio
import logging
import re
import time
import uuid
from dataclasses import dataclass, replace

from config.defaults import DEFAULTS
from core.errors import RequestCancelledError, error_text, is_quota_error
from core.state import PRIORITIES

logger = logging.getLogger(__name__)

PRIORITY_VALUES = {"high": 3, "normal": 2, "low": 1}

MINUTE_WINDOW = 60.0
DAY_WINDOW = 24 * 60 * 60.0

_RETRY_AFTER_RE = re.compile(r"retry.*?(\d+(?:\.\d+)?)", re.IGNORECASE)
_EMA_ALPHA = 0.2


@dataclass
class QueuedRequest:
    id: str
    priority: str
    operation: object               # async callable, no arguments
    enqueued_at: float
    future: asyncio.Future
    retry_count: int = 0
    cancelled: bool = False


@dataclass(frozen=True)
class SchedulerEvent:
    type: str                       # queued|executing|completed|rate_limited|error|cancelled
    request_id: str
    queue_position: int | None = None
    duration: float | None = None   # seconds
    retry_after: float | None = None  # seconds
    error: str | None = None


@dataclass
class SchedulerMetrics:
    requests_this_minute: int = 0
    requests_today: int = 0
    queue_length: int = 0
    average_wait_time: float = 0.0  # seconds, moving average of execution time
    success_rate: float = 100.0
    total_requests: int = 0
    total_retries: int = 0
    total_errors: int = 0


class RequestScheduler:
    """Priority queue + sliding-window rate limiter + quota-aware retries."""

    def __init__(self, requests_per_minute=None, requests_per_day=None, max_retries=None,
                 base_retry_delay=None, max_retry_delay=None, tick_interval=None, clock=time.time):
        self.requests_per_minute = requests_per_minute or DEFAULTS["requests_per_minute"]
        self.requests_per_day = requests_per_day or DEFAULTS["requests_per_day"]
        self.max_retries = max_retries if max_retries is not None else DEFAULTS["scheduler_max_retries"]
        self.base_retry_delay = base_retry_delay if base_retry_delay is not None else DEFAULTS["base_retry_delay"]
        self.max_retry_delay = max_retry_delay if max_retry_delay is not None else DEFAULTS["max_retry_delay"]
        self.tick_interval = tick_interval if tick_interval is not None else DEFAULTS["scheduler_tick"]
        self._clock = clock

        self._queue = []
        self._waiting = {}          # request id -> request sitting out a retry delay
        self._minute_timestamps = []
        self._day_timestamps = []
        self._listeners = []
        self._metrics = SchedulerMetrics()
        self._task = None
        self._retry_tasks = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, operation, priority="normal") -> QueuedRequest:
        """Queue an async callable and return its handle; await handle.future for the result."""
        if priority not in PRIORITY_VALUES:
            raise ValueError(f"Unknown priority '{priority}'. Expected one of: {', '.join(PRIORITIES)}")

        loop = asyncio.get_running_loop()
        request = QueuedRequest(
            id=f"req-{uuid.uuid4().hex[:12]}",
            priority=priority,
            operation=operation,
            enqueued_at=self._clock(),
            future=loop.create_future(),
        )
        self._insert(request)
        self._emit(SchedulerEvent("queued", request.id, queue_position=self._queue.index(request)))
        self._ensure_running()
        return request

    async def enqueue(self, operation, priority="normal"):
        """Queue an async callable and wait for its result."""
        request = self.submit(operation, priority)
        return await request.future

    def cancel(self, request_id):
        """Cancel a request that has not started executing. Returns True if found."""
        request = next((r for r in self._queue if r.id == request_id), None)
        if request is not None:
            self._queue.remove(request)
        else:
            request = self._waiting.pop(request_id, None)
        if request is None:
            return False

        request.cancelled = True
        if not request.future.done():
            request.future.set_exception(RequestCancelledError("Request cancelled by user"))
        self._emit(SchedulerEvent("cancelled", request.id))
        return True

    def get_metrics(self) -> SchedulerMetrics:
        self._prune(self._clock())
        return replace(
            self._metrics,
            requests_this_minute=len(self._minute_timestamps),
            requests_today=len(self._day_timestamps),
            queue_length=len(self._queue),
        )

    def on_event(self, listener):
        """Subscribe to SchedulerEvent notifications. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def estimated_wait_time(self):
        """Seconds until a newly queued request would likely start."""
        if self._can_make_request():
            return 0.0
        now = self._clock()
        oldest = self._minute_timestamps[0] if self._minute_timestamps else now
        slot_free_in = oldest + MINUTE_WINDOW - now
        queue_delay = len(self._queue) * self._metrics.average_wait_time
        return max(0.0, slot_free_in + queue_delay)

    def clear_queue(self):
        """Cancel every request that has not started executing."""
        pending = self._queue + list(self._waiting.values())
        self._queue = []
        self._waiting = {}
        for request in pending:
            request.cancelled = True
            if not request.future.done():
                request.future.set_exception(RequestCancelledError("Queue cleared"))
            self._emit(SchedulerEvent("cancelled", request.id))

    def reset(self):
        self.clear_queue()
        self._minute_timestamps = []
        self._day_timestamps = []
        self._metrics = SchedulerMetrics()

    def close(self):
        """Stop the drain loop and pending retry timers, cancelling queued work."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        for task in list(self._retry_tasks):
            task.cancel()
        self.clear_queue()

    # ------------------------------------------------------------------
    # Queue processing
    # ------------------------------------------------------------------

    def _insert(self, request):
        value = PRIORITY_VALUES[request.priority]
        for idx, queued in enumerate(self._queue):
            if PRIORITY_VALUES[queued.priority] < value:
                self._queue.insert(idx, request)
                return
        self._queue.append(request)

    def _ensure_running(self):
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._process_queue())

    async def _process_queue(self):
        # Exits once the queue is empty; submit() and retries restart it.
        while self._queue:
            while self._queue and self._can_make_request():
                request = self._queue.pop(0)
                if request.cancelled or request.future.done():
                    continue
                await self._execute(request)
            if self._queue:
                await asyncio.sleep(self.tick_interval)

    def _prune(self, now):
        minute_cutoff = now - MINUTE_WINDOW
        day_cutoff = now - DAY_WINDOW
        self._minute_timestamps = [ts for ts in self._minute_timestamps if ts > minute_cutoff]
        self._day_timestamps = [ts for ts in self._day_timestamps if ts > day_cutoff]

    def _can_make_request(self):
        self._prune(self._clock())
        return (
            len(self._minute_timestamps) < self.requests_per_minute
            and len(self._day_timestamps) < self.requests_per_day
        )

    async def _execute(self, request):
        self._emit(SchedulerEvent("executing", request.id))
        now = self._clock()
        self._minute_timestamps.append(now)
        self._day_timestamps.append(now)
        self._metrics.total_requests += 1
        started = time.monotonic()

        try:
            result = await request.operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._handle_error(request, exc)
            return

        duration = time.monotonic() - started
        self._emit(SchedulerEvent("completed", request.id, duration=duration))
        self._update_success_rate()
        self._metrics.average_wait_time = (
            _EMA_ALPHA * duration + (1 - _EMA_ALPHA) * self._metrics.average_wait_time
        )
        if not request.future.done():
            request.future.set_result(result)

    def _retry_delay(self, message, retry_count):
        match = _RETRY_AFTER_RE.search(message)
        if match:
            seconds = float(match.group(1))
        else:
            seconds = self.base_retry_delay * (2 ** (retry_count - 1))
        return min(seconds, self.max_retry_delay)

    def _handle_error(self, request, exc):
        message = error_text(exc)
        if is_quota_error(exc) and request.retry_count < self.max_retries:
            request.retry_count += 1
            delay = self._retry_delay(message, request.retry_count)
            self._metrics.total_retries += 1
            self._emit(SchedulerEvent("rate_limited", request.id, retry_after=delay))
            logger.warning(
                "Rate limit hit for %s. Retrying in %.1fs (attempt %d/%d)",
                request.id, delay, request.retry_count, self.max_retries,
            )
            self._waiting[request.id] = request
            task = asyncio.get_running_loop().create_task(self._requeue_after(request, delay))
            self._retry_tasks.add(task)
            task.add_done_callback(self._retry_tasks.discard)
            return

        self._metrics.total_errors += 1
        self._update_success_rate()
        self._emit(SchedulerEvent("error", request.id, error=message))
        if not request.future.done():
            request.future.set_exception(exc)

    async def _requeue_after(self, request, delay):
        await asyncio.sleep(delay)
        if self._waiting.pop(request.id, None) is None:
            return
        if request.cancelled or request.future.done():
            return
        request.priority = "high"
        self._queue.insert(0, request)
        self._ensure_running()

    def _update_success_rate(self):
        total = self._metrics.total_requests
        if total:
            self._metrics.success_rate = (total - self._metrics.total_errors) / total * 100

    def _emit(self, event):
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Scheduler event listener failed for %s", event.type)
