from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from crawlq.core.context import ResponseContext
from crawlq.core.provider import Provider
from crawlq.core.scheduler import RunState, Scheduler
from crawlq.core.task import DownloadTask, RequestTask, Task
from crawlq.exceptions import CancellationError, ExhaustedRetryError, ProviderError

if TYPE_CHECKING:
    from crawlq.core.crawler import Crawler
    from crawlq.downloaders.files import DownloadPipeline
    from crawlq.downloaders.http import RequestPipeline
    from crawlq.signals import SignalDispatcher

logger = logging.getLogger(__name__)


class CrawlEngine:
    """Worker pool driving tasks from the scheduler through the pipelines.

    Responsibilities
        - Seed the scheduler from `provider.start_tasks()`.
        - Run `scheduler.concurrency` workers; each dispatch is routed by task kind to
          the request pipeline (then `provider.parse`) or the download pipeline.
        - Report every failed task through the `task_error` signal and keep going.
        - Return once the scheduler reaches quiescence; always close the scheduler and
          stop the workers.
    """

    __slots__ = ("scheduler", "requests", "downloads", "provider", "signals", "crawler", "_running")

    def __init__(
        self,
        scheduler: Scheduler,
        requests: RequestPipeline,
        downloads: DownloadPipeline,
        provider: Provider,
        *,
        signals: SignalDispatcher | None = None,
        crawler: Crawler | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.requests = requests
        self.downloads = downloads
        self.provider = provider
        self.signals = signals
        self.crawler = crawler
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def crawl(self) -> None:
        """Run the crawl until quiescence, stop or cancellation.

        Workflow:
          1. Push the provider's seed tasks.
          2. Spawn `scheduler.concurrency` workers.
          3. Await `scheduler.join()`.
          4. Close the scheduler (queued tasks stay queued) and cancel the workers.
        """
        if self._running:
            raise RuntimeError("CrawlEngine.crawl() is already running")
        self._running = True
        workers: list[asyncio.Task[None]] = []

        try:
            await self._seed()
            workers = [
                asyncio.create_task(self._worker(i), name=f"crawlq-worker-{i}")
                for i in range(self.scheduler.concurrency)
            ]
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Workers spawned: %d for provider=%s", len(workers), self.provider.name)

            await self.scheduler.join()
        finally:
            self._running = False
            if not self.scheduler.closed:
                self.scheduler.close(RunState.STOPPED)
            for w in workers:
                w.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Workers stopped: %r", self.scheduler)

    async def _seed(self) -> None:
        seeded = 0
        async for task in self.provider.start_tasks():
            if isinstance(task, str):
                task = RequestTask(url=task)
            if self.scheduler.push(task):
                seeded += 1
        logger.info("Seeded %d task(s) for provider=%s", seeded, self.provider.name)

    async def _worker(self, worker_id: int) -> None:
        while True:
            try:
                task = await self.scheduler.get()
            except asyncio.CancelledError:
                break

            try:
                await self._emit("task_dispatched", task=task)
                await self.process(task)
                await self._emit("task_completed", task=task)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._report(task, exc)
            finally:
                self.scheduler.task_done()

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Worker %s stopped", worker_id)

    async def process(self, task: Task) -> None:
        """Execute one dispatched task.

        Raises:
            ExhaustedRetryError: the fetch or download exhausted its retries.
            ProviderError: `provider.parse` raised.
            CancellationError: the crawl was cancelled.
        """
        if isinstance(task, RequestTask):
            page, config = await self.requests.execute(task)
            await self._parse(task, ResponseContext(page, config, self))
        elif isinstance(task, DownloadTask):
            await self.downloads.execute(task)
        else:
            raise TypeError(f"Unsupported task type: {type(task).__name__}")

    async def _parse(self, task: RequestTask, response: ResponseContext) -> None:
        try:
            result = self.provider.parse(response)
            if inspect.isawaitable(result):
                await result
        except CancellationError:
            raise
        except Exception as exc:
            raise ProviderError(task, exc) from exc

    async def download(self, task: DownloadTask) -> Path:
        """Inline download for `ResponseContext.download`; bypasses the scheduler."""
        return await self.downloads.execute(task)

    async def _report(self, task: Task, exc: Exception) -> None:
        if isinstance(exc, CancellationError):
            logger.warning("%r aborted: %s", task, exc.reason)
        elif isinstance(exc, ExhaustedRetryError):
            logger.error("%s", exc)
        elif isinstance(exc, ProviderError):
            logger.error("Provider %s failed on %r", self.provider.name, task, exc_info=exc.error)
        else:
            logger.error("Unhandled error for %r", task, exc_info=exc)
        await self._emit("task_error", task=task, error=exc)

    async def _emit(self, signal: str, **payload: object) -> None:
        if self.signals is not None:
            await self.signals.send_async(signal, **payload)


__all__ = ["CrawlEngine"]
