from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from crawlq.core.task import Task


class TaskQueue(ABC):
    """Abstract FIFO holder of pending tasks.

    Implementations must provide `push`, `pop`, `size`, `is_empty` and `clear`.

    Concurrency/semantics:
      - `push()` appends to the tail and never blocks; it may be called from any
        running pipeline, so implementations must not lose or duplicate entries.
      - `pop()` removes and returns the head; raises `IndexError` when empty.
      - There is no uniqueness constraint.
    """

    @abstractmethod
    def push(self, task: Task) -> None:
        """Append *task* to the tail of the queue."""
        ...

    @abstractmethod
    def pop(self) -> Task:
        """Remove and return the head of the queue.

        Raises:
            IndexError: if the queue is empty.
        """
        ...

    @abstractmethod
    def size(self) -> int:
        """Return number of queued tasks."""
        ...

    def is_empty(self) -> bool:
        return self.size() == 0

    @abstractmethod
    def clear(self) -> None:
        """Remove all queued tasks."""
        ...

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} size={self.size()}>"
