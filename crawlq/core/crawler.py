from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

import aiohttp

from crawlq import signals
from crawlq.core.cancel import CancellationToken
from crawlq.core.engine import CrawlEngine
from crawlq.core.provider import Provider
from crawlq.core.scheduler import RunState, Scheduler
from crawlq.core.stats import StatsCollector
from crawlq.core.task import Task
from crawlq.downloaders.files import DownloadPipeline
from crawlq.downloaders.http import RequestPipeline, build_session
from crawlq.downloaders.retry import FailedAttempt, RetryPolicy
from crawlq.exceptions import CancellationError
from crawlq.resolvers import Resolvers
from crawlq.settings import Priority, Settings

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException, Task], object]


class Crawler:
    """High-level crawl API: wiring, run state and error notification.

    Responsibilities
        - Accept a `Provider` (instance or class) and a `Settings` snapshot; apply the
          provider's `custom_settings` on top.
        - Own the run state (through the scheduler) and the cancellation token.
        - Create the aiohttp session, both pipelines and the engine when `crawl()` runs.
        - Feed the `StatsCollector` from the crawl's signals and deliver every task
          failure to the `on_error` handlers as `(error, task)`.
        - Clean up deterministically: disconnect only handlers it connected and close
          the session it created.

    A crawler runs once.
    """

    def __init__(
        self,
        provider: Provider | type[Provider],
        runtime_settings: Settings | None = None,
        *,
        proxy: object = None,
        user_agent: object = None,
        headers: object = None,
        auth: object = None,
    ) -> None:
        if inspect.isclass(provider):
            provider = provider()
        if not isinstance(provider, Provider):
            raise TypeError(f"provider must be a Provider, got {type(provider).__name__}")

        self.provider = provider
        self.runtime_settings = self._build_final_settings(runtime_settings or Settings())
        self.resolvers = Resolvers.from_settings(
            self.runtime_settings, proxy=proxy, user_agent=user_agent, headers=headers, auth=auth
        )
        self.token = CancellationToken()
        self.scheduler = Scheduler(
            concurrency=self.runtime_settings.CONCURRENCY,
            interval=self.runtime_settings.interval_seconds,
        )
        self.stats = StatsCollector()
        self.signals = signals.signals_registry.for_sender(self)
        self.engine: CrawlEngine | None = None
        self.session: aiohttp.ClientSession | None = None

        self._error_handlers: list[ErrorHandler] = []
        self._handlers: list[tuple[str, Callable[..., Awaitable[object | None]]]] = []
        self._started = False
        self._stop_requested = False
        self._finalized = False

    # Run state

    @property
    def active(self) -> bool:
        """True until the crawl is stopped, cancelled or finished."""
        return self.scheduler.active

    @property
    def state(self) -> RunState:
        return self.scheduler.state

    def on_error(self, handler: ErrorHandler) -> Crawler:
        """Subscribe `handler(error, task)` (sync or async) to task failures.

        Receives exhausted fetches/downloads, provider errors and cancellation
        rejections. Returns the crawler for chaining.
        """
        if not callable(handler):
            raise TypeError("error handler must be callable")
        self._error_handlers.append(handler)
        return self

    def stop(self) -> None:
        """Stop dispatching new tasks; tasks in flight finish normally."""
        if not self.scheduler.closed:
            logger.info("Stopping provider: %s", self.provider.name)
        self._stop_requested = True
        self.scheduler.close(RunState.STOPPED)

    def cancel(self, reason: str = "Operation canceled by the user.") -> None:
        """Abort every in-flight network operation and stop dispatching. Terminal."""
        self.token.cancel(reason)
        self.scheduler.close(RunState.CANCELLED)

    # Lifecycle

    def start(self) -> None:
        """Blocking entry point: run `crawl()` on a fresh event loop."""
        asyncio.run(self.crawl())

    async def __aenter__(self) -> Crawler:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self._finalize()
        await self._cleanup_resources()
        return False

    async def crawl(self) -> None:
        """Execute the full crawl.

        Workflow:
          1. Connect stats and error handlers to this crawler's signals.
          2. Create the session, retry policy, pipelines and engine.
          3. Call `provider.open_provider()`, emit `crawl_started`, run the engine.
          4. Finalize and clean up in all cases.

        Raises:
            CancellationError: the crawl was cancelled (raised after cleanup).
            RuntimeError: the crawler was already used.
        """
        if self._started:
            raise RuntimeError("Crawler instances are single-use; create a new Crawler")
        self._started = True

        settings = self.runtime_settings
        logger.info("Starting provider: %s", self.provider.name)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Runtime settings:\n%s", settings.to_json().decode())

        try:
            self._setup_handlers()

            self.session = build_session(settings)
            retry = RetryPolicy.from_settings(
                settings, token=self.token, on_failed_attempt=self._on_failed_attempt
            )
            requests = RequestPipeline(
                self.session,
                settings,
                provider=self.provider,
                resolvers=self.resolvers,
                token=self.token,
                retry=retry,
                signals=self.signals,
            )
            downloads = DownloadPipeline(
                self.session, settings, token=self.token, retry=retry, signals=self.signals
            )
            self.engine = CrawlEngine(
                self.scheduler,
                requests,
                downloads,
                self.provider,
                signals=self.signals,
                crawler=self,
            )

            await self.provider.open_provider(self)
            await self.signals.send_async("crawl_started", provider=self.provider)
            await self.engine.crawl()
        finally:
            await self._finalize()
            await self._cleanup_resources()

        if self.token.cancelled:
            raise CancellationError(self.token.reason)

    def _finish_reason(self) -> str:
        if self.token.cancelled:
            return "cancelled"
        if self._stop_requested:
            return "stopped"
        return "finished"

    async def _finalize(self) -> None:
        """Run the provider close hook, emit `crawl_finished` and log stats. Idempotent."""
        if self._finalized:
            return
        self._finalized = True
        if not self.scheduler.closed:
            self.scheduler.close(RunState.STOPPED)

        reason = self._finish_reason()
        try:
            await self.provider.close_provider(self, reason)
        except Exception:
            logger.exception("Error in provider.close_provider hook")

        await self.signals.send_async("crawl_finished", provider=self.provider, reason=reason)
        logger.info("Provider %s %s. Final stats:\n%s", self.provider.name, reason, self.stats.format_stats())

    async def _cleanup_resources(self) -> None:
        """Disconnect handlers and close the session. Safe to call multiple times."""
        for signal_name, handler in self._handlers:
            self.signals.disconnect(signal_name, handler)
        self._handlers = []

        if self.session is not None:
            if not self.session.closed:
                await self.session.close()
            self.session = None

    def _build_final_settings(self, base: Settings) -> Settings:
        """Apply the provider's `custom_settings` (class, then instance) to `base`."""
        overrides: dict[str, object] = {}
        for source in (type(self.provider), self.provider):
            custom = getattr(source, "custom_settings", None) or {}
            if not isinstance(custom, dict):
                raise TypeError("Provider.custom_settings must be a dict")
            overrides.update({k: v for k, v in custom.items() if v is not None})
        if not overrides:
            return base
        return base.with_overrides(overrides, priority=Priority.PROVIDER)

    # Signal handlers

    async def _on_failed_attempt(self, failed: FailedAttempt) -> None:
        await self.signals.send_async(
            "attempt_failed",
            task=failed.task,
            attempt=failed.attempt,
            retries_left=failed.retries_left,
            error=failed.error,
        )

    async def _deliver_error(self, error: BaseException, task: Task) -> None:
        for handler in list(self._error_handlers):
            try:
                result = handler(error, task)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error handler %r failed for %r", handler, task)

    def _setup_handlers(self) -> None:
        stats = self.stats

        async def on_crawl_started(sender, provider, **kwargs):
            stats.open_provider(provider)

        async def on_crawl_finished(sender, provider, reason, **kwargs):
            stats.close_provider(provider, reason=reason)

        async def on_task_dispatched(sender, task, **kwargs):
            stats.inc_value("engine/task_dispatched_count")

        async def on_task_completed(sender, task, **kwargs):
            stats.inc_value("engine/task_completed_count")

        async def on_task_error(sender, task, error, **kwargs):
            stats.inc_value("engine/error_count")
            await self._deliver_error(error, task)

        async def on_attempt_failed(sender, task, **kwargs):
            stats.inc_value("downloader/attempt_failed_count")

        async def on_response_received(sender, page, **kwargs):
            stats.inc_value(f"downloader/response_status_{int(page.status_code)}")

        async def on_bytes_received(sender, size, **kwargs):
            stats.inc_value("downloader/bytes_downloaded", count=size)

        async def on_download_completed(sender, task, **kwargs):
            stats.inc_value("downloader/file_count")

        for signal_name, handler in (
            ("crawl_started", on_crawl_started),
            ("crawl_finished", on_crawl_finished),
            ("task_dispatched", on_task_dispatched),
            ("task_completed", on_task_completed),
            ("task_error", on_task_error),
            ("attempt_failed", on_attempt_failed),
            ("response_received", on_response_received),
            ("bytes_received", on_bytes_received),
            ("download_completed", on_download_completed),
        ):
            self.signals.connect(signal_name, handler, weak=False)
            self._handlers.append((signal_name, handler))

    def __repr__(self) -> str:
        return f"<Crawler provider={self.provider.name!r} state={self.state.value}>"


__all__ = ["Crawler"]
