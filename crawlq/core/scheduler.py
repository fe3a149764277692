import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from enum import Enum

from crawlq.core.queue import TaskQueue
from crawlq.core.queues.memory import MemoryTaskQueue
from crawlq.core.task import Task

logger = logging.getLogger(__name__)


class RunState(Enum):
    """Run state of a crawl. Only ACTIVE accepts new tasks and dispatches."""

    ACTIVE = "active"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


class Scheduler:
    """FIFO task scheduler with a concurrency ceiling, an interval throttle and
    quiescence detection.

    Features:
        - `push()` is synchronous and never blocks, so task injection works from any
          running pipeline. Called from another thread, it hops onto the event loop.
        - `get()` is a dispatch: it waits for the interval throttle, pops the head of
          the queue (or waits for one to be pushed) and counts the task as in flight.
          Dispatches are serialized by a FIFO lock, so start order follows queue order
          and consecutive starts are at least `interval` seconds apart.
        - `task_done()` completes a dispatch.
        - `join()` returns at quiescence: every pushed task has completed, including
          tasks handed straight to a waiting dispatch. After `close()`, quiescence is
          nothing in flight (queued tasks are left alone).

    Consumers (the engine's workers) must call `task_done()` exactly once per `get()`.
    The engine runs `concurrency` workers, which bounds `in_flight`.
    """

    __slots__ = (
        "queue",
        "concurrency",
        "interval",
        "_clock",
        "_state",
        "_waiters",
        "_closed",
        "_in_flight",
        "_pending",
        "_loop",
        "_last_dispatch",
        "_dispatch_lock",
        "_finished",
        "_pushed",
        "_dispatched",
        "_completed",
    )

    def __init__(
        self,
        queue: TaskQueue | None = None,
        *,
        concurrency: int = 1,
        interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError("concurrency must be an integer >= 1")
        if interval < 0:
            raise ValueError("interval must be >= 0")

        self.queue = queue if queue is not None else MemoryTaskQueue()
        self.concurrency = concurrency
        self.interval = float(interval)
        self._clock = clock
        self._state = RunState.ACTIVE
        self._waiters: deque[asyncio.Future[Task]] = deque()
        self._closed: bool = False
        self._in_flight: int = 0
        # pushed and not yet completed: queued, handed to a waiter or in flight
        self._pending: int = self.queue.size()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._last_dispatch: float | None = None
        self._dispatch_lock = asyncio.Lock()
        self._finished: asyncio.Event = asyncio.Event()
        self._pushed = 0
        self._dispatched = 0
        self._completed = 0
        self._update_finished()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is RunState.ACTIVE

    @property
    def in_flight(self) -> int:
        """Number of dispatched tasks not yet marked done."""
        return self._in_flight

    @property
    def last_dispatch(self) -> float | None:
        return self._last_dispatch

    def push(self, task: Task) -> bool:
        """Append `task` to the queue (or hand it to a waiting dispatch).

        Returns False, without queuing, when the scheduler is no longer active. Safe to
        call from a thread other than the event loop's: the push is then scheduled on
        the loop with `call_soon_threadsafe`.
        """
        if self._closed or not self.active:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Ignoring push() on %s scheduler: %r", self._state.value, task)
            return False

        current = _running_loop()
        if self._loop is None:
            self._loop = current
        elif current is not self._loop and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.push, task)
            return True

        self._pushed += 1
        self._pending += 1
        self._finished.clear()

        # Direct delivery to first non-cancelled waiter
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(task)
                return True

        self.queue.push(task)
        return True

    async def get(self) -> Task:
        """Dispatch the next task.

        Blocks until the interval since the previous dispatch has elapsed and a task
        is available.

        Raises:
            asyncio.CancelledError: the scheduler is closed.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        async with self._dispatch_lock:
            await self._throttle()
            task = await self._next()
            if self._closed:
                # handed over just before close(); it stays queued
                self.queue.push(task)
                raise asyncio.CancelledError

            self._last_dispatch = self._clock()
            self._in_flight += 1
            self._dispatched += 1

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Dispatching %r (in_flight=%d queued=%d)",
                    task,
                    self._in_flight,
                    self.queue.size(),
                )
            return task

    async def _throttle(self) -> None:
        if self._last_dispatch is None or self.interval <= 0:
            return
        delay = self.interval - (self._clock() - self._last_dispatch)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _next(self) -> Task:
        if self._closed:
            raise asyncio.CancelledError

        try:
            return self.queue.pop()
        except IndexError:
            pass

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Task] = loop.create_future()
        self._waiters.append(fut)

        try:
            return await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # cancelled after a hand-off: keep the task
                self.queue.push(fut.result())
            raise
        finally:
            with suppress(ValueError):
                self._waiters.remove(fut)
            if not fut.done():
                fut.cancel()

    def task_done(self) -> None:
        """Mark one dispatched task as finished (success or failure)."""
        if self._in_flight == 0:
            raise ValueError("task_done() called too many times")
        self._in_flight -= 1
        self._pending -= 1
        self._completed += 1
        self._update_finished()

    def _update_finished(self) -> None:
        if self._in_flight == 0 and (self._closed or self._pending == 0):
            self._finished.set()

    async def join(self) -> None:
        """Wait until the run reaches quiescence."""
        await self._finished.wait()

    def close(self, state: RunState = RunState.STOPPED) -> None:
        """Stop accepting tasks and dispatches.

        Features:
           - Moves the run state to `state` (STOPPED or CANCELLED); terminal.
           - Cancels waiting dispatches.
           - Leaves queued tasks in the queue; in-flight tasks keep running.
        """
        if state is RunState.ACTIVE:
            raise ValueError("close() requires a non-active state")
        if self._closed:
            # a stop can still escalate to a cancellation
            if state is RunState.CANCELLED:
                self._state = state
            return

        self._closed = True
        self._state = state

        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.cancel()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Scheduler closed (%s): in_flight=%d queued=%d",
                state.value,
                self._in_flight,
                self.queue.size(),
            )
        self._update_finished()

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> dict[str, int]:
        """Get scheduler statistics for monitoring and debugging."""
        return {
            "queued": self.queue.size(),
            "in_flight": self._in_flight,
            "pushed": self._pushed,
            "dispatched": self._dispatched,
            "completed": self._completed,
            "waiting_consumers": len(self._waiters),
            "closed": int(self._closed),
        }

    def __repr__(self) -> str:
        return (
            f"<Scheduler state={self._state.value} in_flight={self._in_flight} "
            f"queued={self.queue.size()} concurrency={self.concurrency}>"
        )


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
