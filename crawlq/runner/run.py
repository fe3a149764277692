from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping

from crawlq.core.crawler import Crawler
from crawlq.core.provider import Provider
from crawlq.core.task import Task
from crawlq.exceptions import CancellationError
from crawlq.runner.logging import setup_logging
from crawlq.settings import Settings

logger = logging.getLogger(__name__)

# runner-only keys, never passed to Settings
_RUNNER_KEYS = {"SETTINGS_FILE", "CONFIGURE_LOGGING"}


def _log_error(error: BaseException, task: Task) -> None:
    logger.warning("Request failed on %s: %s", task.url, error)


async def run_async(
    provider_cls: type[Provider] | Provider,
    runtime_settings: Settings,
    *,
    resolvers: Mapping[str, object] | None = None,
    on_error: Callable[[BaseException, Task], object] | None = None,
) -> Crawler:
    """Run one crawl and return the finished crawler (for its stats).

    Cancellation is logged rather than raised.
    """
    crawler = Crawler(provider_cls, runtime_settings, **dict(resolvers or {}))
    crawler.on_error(on_error or _log_error)
    try:
        await crawler.crawl()
    except CancellationError as exc:
        logger.warning("Crawl cancelled: %s", exc.reason)
    return crawler


class CrawlRunner:
    """Programmatic runner: settings from a plain dict, then `crawl` / `crawl_sync`.

    Keys are setting names (any case); `settings_file` points at a TOML/JSON file
    loaded underneath them. Logging is configured from the resulting settings unless
    `configure_logging=False` is given.
    """

    def __init__(self, settings: Mapping[str, object] | None = None) -> None:
        raw = dict(settings or {})
        upper = {str(k).upper(): v for k, v in raw.items()}
        config_file = upper.get("SETTINGS_FILE")
        overrides = {k: v for k, v in upper.items() if k not in _RUNNER_KEYS}

        self.runtime_settings = Settings.load(
            config_file=str(config_file) if config_file else None, **overrides
        )
        if upper.get("CONFIGURE_LOGGING", True):
            s = self.runtime_settings
            setup_logging(s.LOG_LEVEL, s.LOG_FILE, s.LOG_FORMAT, s.LOG_DATEFORMAT)

    async def crawl(
        self, provider_cls: type[Provider] | Provider, **resolvers: object
    ) -> Crawler:
        """Async entrypoint: await this from an existing event loop."""
        return await run_async(provider_cls, self.runtime_settings, resolvers=resolvers)

    def crawl_sync(
        self, provider_cls: type[Provider] | Provider, **resolvers: object
    ) -> Crawler:
        """Blocking wrapper around `crawl()`.

        Raises:
            RuntimeError: if called from inside a running event loop.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.crawl(provider_cls, **resolvers))
        raise RuntimeError(
            "Event loop is already running; use `await CrawlRunner.crawl(...)` instead"
        )


__all__ = ["CrawlRunner", "run_async"]
