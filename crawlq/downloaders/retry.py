from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from crawlq.core.cancel import CancellationToken
from crawlq.core.task import Task
from crawlq.exceptions import ExhaustedRetryError, TransientNetworkError

if TYPE_CHECKING:
    from crawlq.settings import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class FailedAttempt:
    """A failed attempt that will be retried."""

    task: Task
    attempt: int
    retries_left: int
    error: BaseException


FailedAttemptHandler = Callable[[FailedAttempt], Awaitable[None]]


class RetryPolicy:
    """Bounded retry with exponential backoff for one task's attempts.

    Behavior
        - Runs `attempt(number)` up to `retries + 1` times, strictly one after another.
        - Only `TransientNetworkError` (network errors, timeouts, stream errors) is
          retried; anything else propagates unchanged.
        - Before each re-attempt the failure is logged, `on_failed_attempt` is awaited
          and the backoff delay is slept through the cancellation token.
        - When the budget is spent, `ExhaustedRetryError` is raised from the last error.
    """

    __slots__ = ("retries", "backoff", "backoff_max", "jitter", "token", "on_failed_attempt", "_rng")

    def __init__(
        self,
        retries: int = 3,
        *,
        backoff: float = 1.0,
        backoff_max: float = 60.0,
        jitter: float = 0.0,
        token: CancellationToken | None = None,
        on_failed_attempt: FailedAttemptHandler | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Args:
        retries: additional attempts after the first (non-negative).
        backoff: base delay in seconds; the n-th retry waits `backoff * 2 ** (n - 1)`.
        backoff_max: upper bound of a single delay in seconds.
        jitter: randomize each delay within +/- this fraction.
        """
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.retries = int(retries)
        self.backoff = float(backoff)
        self.backoff_max = float(backoff_max)
        self.jitter = float(jitter)
        self.token = token if token is not None else CancellationToken()
        self.on_failed_attempt = on_failed_attempt
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        token: CancellationToken | None = None,
        on_failed_attempt: FailedAttemptHandler | None = None,
    ) -> RetryPolicy:
        return cls(
            settings.RETRY,
            backoff=settings.RETRY_BACKOFF / 1000.0,
            backoff_max=settings.RETRY_BACKOFF_MAX / 1000.0,
            jitter=settings.RETRY_BACKOFF_JITTER,
            token=token,
            on_failed_attempt=on_failed_attempt,
        )

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def compute_delay(self, retry_count: int) -> float:
        """Delay in seconds before the retry following `retry_count` earlier retries."""
        delay = min(self.backoff * (2**retry_count), self.backoff_max)
        if self.jitter > 0 and delay > 0:
            spread = self.jitter * delay
            delay = self._rng.uniform(max(0.0, delay - spread), delay + spread)
        return delay

    async def run(
        self,
        attempt: Callable[[int], Awaitable[T]],
        *,
        task: Task,
        label: str | None = None,
    ) -> T:
        """Run `attempt` with the retry budget.

        Raises:
            ExhaustedRetryError: every attempt failed with a transient error.
            CancellationError: the token tripped during an attempt or backoff.
        """
        label = label or task.method
        for number in range(1, self.attempts + 1):
            self.token.raise_if_cancelled()
            try:
                return await attempt(number)
            except TransientNetworkError as exc:
                retries_left = self.attempts - number
                logger.error(
                    "Attempt [%s]: %r %d failed. There are %d retries left.",
                    label,
                    task.url,
                    number,
                    retries_left,
                )
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug("Attempt %d of %r failed with %r", number, task, exc)
                if retries_left == 0:
                    raise ExhaustedRetryError(task, number, exc) from exc

                if self.on_failed_attempt is not None:
                    await self.on_failed_attempt(
                        FailedAttempt(task=task, attempt=number, retries_left=retries_left, error=exc)
                    )
                await self.token.sleep(self.compute_delay(number - 1))

        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["RetryPolicy", "FailedAttempt", "FailedAttemptHandler"]
