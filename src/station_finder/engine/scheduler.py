"""
Deferred-execution primitives for the single-threaded monitor.

Everything here runs on one asyncio loop. Timers are the only source of
deferred callbacks; provider lookups are spawned as tasks. The clock is
injectable: production code uses LoopScheduler (loop.time()), tests drive a
ManualScheduler forward explicitly.

Cancelling a timer that already fired or was already cancelled is a no-op.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Any, Callable, Coroutine, List, Optional, Set

logger = logging.getLogger(__name__)


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], Any]):
        return self.loop.call_later(max(0.0, delay), callback)

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a coroutine as a task, holding a reference until it finishes."""
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background task failed: {task.exception()!r}")

    async def wait_idle(self):
        """Wait for every spawned task, including ones spawned meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class _ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler(LoopScheduler):
    """
    Scheduler with a hand-driven clock for deterministic replay.

    Timers fire only inside advance(); spawned tasks still run on the real
    loop, so callers await wait_idle() to let lookups finish.
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start
        self._queue: List[tuple] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], Any]):
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self._now + max(0.0, delay), next(self._seq), handle, callback))
        return handle

    def advance(self, seconds: float):
        """Move the clock forward, firing due timers in deadline order."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            deadline, _, handle, callback = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = deadline
            callback()
        self._now = target

    @property
    def pending_timers(self) -> int:
        return sum(1 for entry in self._queue if not entry[2].cancelled)


class OneShotTimer:
    """Restartable single-fire timer."""

    def __init__(self, scheduler, delay: float, callback: Callable[[], Any]):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.last_fired: Optional[float] = None
        self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, delay: Optional[float] = None):
        """Arm the timer; an already armed timer is re-armed."""
        self.cancel()
        if delay is not None:
            self.delay = delay
        self._handle = self.scheduler.call_later(self.delay, self._fire)

    def reset(self):
        self.start()

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        self.last_fired = self.scheduler.now()
        self.callback()


class PeriodicTimer:
    """Fires every ``interval`` seconds until cancelled."""

    def __init__(self, scheduler, interval: float, callback: Callable[[], Any]):
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self.last_fired: Optional[float] = None
        self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self):
        self.cancel()
        self._handle = self.scheduler.call_later(self.interval, self._fire)

    def reset(self):
        self.start()

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        # Re-arm first so the callback may cancel us
        self._handle = self.scheduler.call_later(self.interval, self._fire)
        self.last_fired = self.scheduler.now()
        self.callback()


class LeadingThrottle:
    """
    Leading-edge throttle: the first call in a window runs immediately,
    further calls inside the same window are dropped.
    """

    def __init__(self, fn: Callable[..., Any], interval: float, clock: Callable[[], float]):
        self.fn = fn
        self.interval = interval
        self.clock = clock
        self.last_fired: Optional[float] = None

    def __call__(self, *args, **kwargs) -> bool:
        now = self.clock()
        if self.last_fired is not None and now - self.last_fired < self.interval:
            return False
        self.last_fired = now
        self.fn(*args, **kwargs)
        return True

    def reset(self):
        self.last_fired = None


class CancellationToken:
    """
    Captures a generation number at dispatch time.

    The token is cancelled as soon as the source generation moves on; holders
    must check it before producing any visible effect.
    """

    def __init__(self, current_generation: Callable[[], int]):
        self._current = current_generation
        self.generation = current_generation()

    @property
    def cancelled(self) -> bool:
        return self._current() != self.generation
