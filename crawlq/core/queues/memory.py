import logging
import threading
from collections import deque

from crawlq.core.queue import TaskQueue
from crawlq.core.task import Task

logger = logging.getLogger(__name__)


class MemoryTaskQueue(TaskQueue):
    """In-memory FIFO implementation of `TaskQueue` backed by `collections.deque`.

    Concurrency:
      - Every mutation happens under a `threading.Lock`, so entries are never lost or
        duplicated whichever thread touches the deque. Pushes from worker threads
        reach it through `Scheduler.push`, which moves them onto the event loop.
      - No operation awaits; waiting for work is the scheduler's job.
    """

    def __init__(self) -> None:
        self._items: deque[Task] = deque()
        self._lock = threading.Lock()

    def push(self, task: Task) -> None:
        with self._lock:
            self._items.append(task)

    def pop(self) -> Task:
        with self._lock:
            if not self._items:
                raise IndexError("pop from an empty task queue")
            return self._items.popleft()

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            dropped = len(self._items)
            self._items.clear()
        if dropped and logger.isEnabledFor(logging.DEBUG):
            logger.debug("Cleared %d queued task(s)", dropped)

    def __repr__(self) -> str:
        return f"<MemoryTaskQueue size={self.size()}>"
