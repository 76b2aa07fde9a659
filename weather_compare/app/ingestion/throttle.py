"""
Request throttling for the weather archive.

═══════════════════════════════════════════════════════════════════════════
STRATEGY
═══════════════════════════════════════════════════════════════════════════

The archive allows a fixed number of calls per minute. Rather than failing
when the budget is spent, ``RequestThrottle`` queues every fetch and drains
the queue with a single worker:

    1. If the current window has elapsed, start a new one (counter → 0).
    2. If the window's quota is spent, sleep until it resets.
    3. Keep consecutive dispatches at least ``window / quota`` apart
       (0.6 s at 100 calls/min) so the quota is never burst at once.
    4. Dispatch the oldest task, await it, hand its outcome to its future.

A task's failure is delivered through its own future only; the worker keeps
draining. Tasks are never withdrawn once submitted: cancelling the future
returned by ``submit`` leaves the task queued and it still runs.

Side feeds (warnings, news) use ``QuotaLimiter`` instead, a hard ceiling that
raises ``QuotaExceededError`` rather than waiting.

═══════════════════════════════════════════════════════════════════════════
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, TypeVar

from weather_compare.app.core.clock import SystemClock
from weather_compare.app.core.errors import QuotaExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Task = Callable[[], Awaitable[Any]]


class ThrottleState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"


@dataclass
class ThrottleStats:
    current_calls: int
    quota: int
    reset_in_ms: int
    queued: int = 0
    state: str = ThrottleState.IDLE.value
    dispatched_total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RequestThrottle:
    """
    FIFO queue of outbound fetches bounded by a per-window quota.

    Usage:
        throttle = RequestThrottle(quota=100, window_seconds=60)
        series = await throttle.submit(lambda: client.fetch_daily(...))
    """

    def __init__(
        self,
        quota: int = 100,
        window_seconds: float = 60.0,
        clock: Optional[SystemClock] = None,
    ) -> None:
        if quota < 1:
            raise ValueError("quota must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.quota = quota
        self.window_seconds = window_seconds
        self.spacing = window_seconds / quota
        self._clock = clock or SystemClock()

        self._queue: Deque[Tuple[Task, asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._state = ThrottleState.IDLE
        self._calls = 0
        self._window_start: Optional[float] = None
        self._last_dispatch: Optional[float] = None
        self._dispatched_total = 0

    @property
    def state(self) -> ThrottleState:
        return self._state

    @property
    def queued(self) -> int:
        return len(self._queue)

    def submit(self, task: Callable[[], Awaitable[T]]) -> "asyncio.Future[T]":
        """
        Queue ``task`` and return a future for its outcome.

        Never blocks. Must be called from the event loop that will run the
        worker; the worker is started lazily and only one ever exists.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((task, future))

        if self._worker is None or self._worker.done() or self._worker.get_loop() is not loop:
            self._state = ThrottleState.PROCESSING
            self._worker = loop.create_task(self._process())
        else:
            logger.debug(
                "Queued request behind %d others", len(self._queue) - 1,
                extra={"queue_depth": len(self._queue)},
            )
        return future

    async def _process(self) -> None:
        try:
            while self._queue:
                now = self._clock.now()

                if self._window_start is None or now - self._window_start >= self.window_seconds:
                    if self._calls:
                        logger.debug("Throttle window reset after %d calls", self._calls)
                    self._window_start = now
                    self._calls = 0

                if self._calls >= self.quota:
                    wait = self._window_start + self.window_seconds - now
                    logger.info(
                        "Throttle quota reached (%d/%d), waiting %.1fs for the next window",
                        self._calls, self.quota, wait,
                        extra={"queue_depth": len(self._queue)},
                    )
                    await self._clock.sleep(wait)
                    continue

                if self._last_dispatch is not None:
                    gap = self._last_dispatch + self.spacing - now
                    if gap > 0:
                        await self._clock.sleep(gap)
                        continue

                task, future = self._queue.popleft()
                self._calls += 1
                self._dispatched_total += 1
                self._last_dispatch = now
                logger.debug(
                    "Dispatching request %d/%d", self._calls, self.quota,
                    extra={"queue_depth": len(self._queue)},
                )

                try:
                    result = await task()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    logger.debug("Throttled request failed: %s", e)
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
        finally:
            self._worker = None
            self._state = ThrottleState.IDLE

    def stats(self) -> ThrottleStats:
        now = self._clock.now()
        calls = self._calls
        reset_in = 0.0
        if self._window_start is not None:
            remaining = self._window_start + self.window_seconds - now
            if remaining > 0:
                reset_in = remaining
            else:
                calls = 0
        return ThrottleStats(
            current_calls=calls,
            quota=self.quota,
            reset_in_ms=int(round(reset_in * 1000)),
            queued=len(self._queue),
            state=self._state.value,
            dispatched_total=self._dispatched_total,
        )

    async def shutdown(self) -> None:
        """Stop the worker and cancel anything still queued."""
        worker = self._worker
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.cancel()
        if worker is not None:
            logger.info("Request throttle stopped")


class QuotaLimiter:
    """
    Hard per-window ceiling for low-value side feeds.

    Unlike ``RequestThrottle`` it never waits: once ``max_calls`` have run in
    the current window, ``run`` raises ``QuotaExceededError``.
    """

    def __init__(
        self,
        name: str,
        max_calls: int = 10,
        window_seconds: float = 60.0,
        clock: Optional[SystemClock] = None,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        self.name = name
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock or SystemClock()
        self._calls = 0
        self._reset_at = self._clock.now() + window_seconds

    def _roll(self, now: float) -> None:
        if now > self._reset_at:
            self._calls = 0
            self._reset_at = now + self.window_seconds

    def acquire(self) -> None:
        now = self._clock.now()
        self._roll(now)
        if self._calls >= self.max_calls:
            retry_after = max(0.0, self._reset_at - now)
            logger.warning(
                "%s quota exhausted (%d/%d), retry in %.0fs",
                self.name, self._calls, self.max_calls, retry_after,
            )
            raise QuotaExceededError(self.name, retry_after=retry_after)
        self._calls += 1

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        self.acquire()
        return await task()

    def stats(self) -> ThrottleStats:
        now = self._clock.now()
        self._roll(now)
        return ThrottleStats(
            current_calls=self._calls,
            quota=self.max_calls,
            reset_in_ms=int(round(max(0.0, self._reset_at - now) * 1000)),
        )
