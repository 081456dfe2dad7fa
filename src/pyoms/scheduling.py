"""
Deferred, coalescing tasks.

The spiderfier recomputes marker statuses at most once per short delay,
however many changes request it. DeferredTask expresses that on top of
any Scheduler that can run a callback later: an explicit pump for hosts
that own their loop (and for tests), or an asyncio event loop.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol
from enum import IntEnum
import asyncio
import itertools
import logging

from sortedcontainers import SortedList

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    """Anything that can run a callback after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        ...


class ManualScheduler:
    """
    Scheduler driven by explicit calls to advance() or run_all().

    Callbacks due at the same time run in the order they were scheduled.
    Callbacks scheduled while pumping run in the same pump if they fall
    due within it.
    """

    def __init__(self):
        self.now: float = 0.0
        self._seq = itertools.count()
        self._queue = SortedList(key=lambda entry: (entry[0], entry[1]))

    def call_later(self, delay: float, callback: Callable[[], None]) -> None:
        self._queue.add((self.now + max(delay, 0.0), next(self._seq), callback))

    def pending(self) -> int:
        """Number of callbacks waiting to run."""
        return len(self._queue)

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, running every callback that falls due.

        Args:
            seconds: Time to advance by

        Returns:
            Number of callbacks run
        """
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, callback = self._queue.pop(0)
            self.now = max(self.now, due)
            callback()
            ran += 1
        self.now = target
        return ran

    def run_all(self) -> int:
        """Run callbacks until the queue is empty, advancing the clock as needed."""
        ran = 0
        while self._queue:
            due, _, callback = self._queue.pop(0)
            self.now = max(self.now, due)
            callback()
            ran += 1
        return ran


class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    The loop is fixed at construction: the given one, else the running one,
    else a new loop owned by the scheduler. Requests can be made before the
    loop runs; they fire once the host runs `loop`. With asyncio.run(),
    create the scheduler inside the coroutine so it picks up that loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = asyncio.new_event_loop()
                logger.debug("no running event loop, created %r", loop)
        self.loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)


class TaskState(IntEnum):
    """Lifecycle of a DeferredTask."""
    unscheduled = 0
    pending = 1
    fired = 2


class DeferredTask:
    """
    A callback that runs once after a delay, however often it is requested.

    Requests made while pending are coalesced into the pending run. Once
    fired, the next request schedules a fresh run. There is no cancel.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]):
        self.scheduler = scheduler
        self.delay = delay
        self.callback = callback
        self.state = TaskState.unscheduled

    def request(self) -> bool:
        """
        Ask for the callback to run.

        Returns:
            True if a run was scheduled, False if coalesced into a pending one
        """
        if self.state == TaskState.pending:
            return False
        self.state = TaskState.pending
        self.scheduler.call_later(self.delay, self._fire)
        logger.debug("deferred task scheduled in %.3fs", self.delay)
        return True

    @property
    def pending(self) -> bool:
        return self.state == TaskState.pending

    def _fire(self) -> None:
        self.state = TaskState.fired
        self.callback()
