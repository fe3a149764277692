"""Error taxonomy for crawlq.

Per-attempt failures (`TransientNetworkError` and subclasses) are retried by the
pipelines. Everything else is terminal for the task it belongs to, except
`CancellationError`, which is terminal for the whole run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from crawlq.core.task import Task


class CrawlError(Exception):
    """Base class for all crawlq errors."""


class TransientNetworkError(CrawlError):
    """A single fetch/download attempt failed; eligible for retry."""


class FetchTimeoutError(TransientNetworkError):
    """A single attempt exceeded the configured timeout."""


class StreamAggregationError(TransientNetworkError):
    """First error observed on either side of a download stream.

    Attributes:
        side: "source" or "destination".
        error: the original exception.
    """

    def __init__(self, side: str, error: BaseException, url: str | None = None) -> None:
        self.side = side
        self.error = error
        self.url = url
        super().__init__(str(error) or type(error).__name__)


class ExhaustedRetryError(CrawlError):
    """The retry budget of a task was consumed without success."""

    def __init__(self, task: Task, attempts: int, error: BaseException) -> None:
        self.task = task
        self.attempts = attempts
        self.error = error
        super().__init__(
            f"{task.kind.value} {task.url!r} failed after {attempts} attempt(s): {error}"
        )


class CancellationError(CrawlError):
    """The run's cancellation token was tripped."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or "Operation canceled"
        super().__init__(self.reason)


class ProviderError(CrawlError):
    """The provider's extraction callback raised."""

    def __init__(self, task: Task, error: BaseException) -> None:
        self.task = task
        self.error = error
        super().__init__(f"parse failed for {task.url!r}: {type(error).__name__}: {error}")


__all__ = [
    "CrawlError",
    "TransientNetworkError",
    "FetchTimeoutError",
    "StreamAggregationError",
    "ExhaustedRetryError",
    "CancellationError",
    "ProviderError",
]
