import asyncio
import logging
import time

import aiohttp

from crawlq.core.cancel import CancellationToken
from crawlq.core.provider import Provider
from crawlq.core.request import REFERENCE_HEADER, RequestConfig, encode_body, merge_headers
from crawlq.core.response import Page
from crawlq.core.task import RequestTask
from crawlq.downloaders.retry import RetryPolicy
from crawlq.exceptions import FetchTimeoutError, TransientNetworkError
from crawlq.resolvers import Resolved, Resolvers
from crawlq.settings import Settings
from crawlq.signals import SignalDispatcher

logger = logging.getLogger(__name__)


def build_session(settings: Settings) -> aiohttp.ClientSession:
    """Create the aiohttp session shared by both pipelines.

    `DOWNLOADER_SETTINGS` keys map onto the connector:
      - max_connections -> limit
      - max_connections_per_host -> limit_per_host
      - dns_cache_ttl -> ttl_dns_cache
      - enable_cleanup_closed -> enable_cleanup_closed
      - keepalive_timeout -> keepalive_timeout

    The session has no timeout of its own; every attempt is bounded by `TIMEOUT`.
    """
    cfg = settings.DOWNLOADER_SETTINGS
    connector = aiohttp.TCPConnector(
        limit=int(cfg.get("max_connections", 100)),
        limit_per_host=int(cfg.get("max_connections_per_host", 10)),
        ttl_dns_cache=int(cfg.get("dns_cache_ttl", 300)),
        enable_cleanup_closed=bool(cfg.get("enable_cleanup_closed", True)),
        keepalive_timeout=float(cfg.get("keepalive_timeout", 60.0)),
    )
    return aiohttp.ClientSession(
        connector=connector, timeout=aiohttp.ClientTimeout(total=None)
    )


class RequestPipeline:
    """Fetch a `RequestTask` into a `Page`.

    Responsibilities:
      - Per attempt: run the resolvers, merge the request config, call the provider's
        `before_request` hook, then perform the request under the cancellation token
        and the per-attempt timeout.
      - Convert timeouts and aiohttp errors (including non-2xx statuses) into
        `TransientNetworkError` so the retry policy retries them.
      - Emit `response_received` / `bytes_received` through the crawl's dispatcher.

    Notes:
      - Header precedence, lowest first: `Reference` (the task URL), settings
        defaults and `USER_AGENT`, provider `default_headers`, task headers, headers
        resolver, user-agent resolver.
      - The session is borrowed; the pipeline never closes it.
    """

    __slots__ = ("session", "settings", "provider", "resolvers", "token", "retry", "signals")

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: Settings,
        *,
        provider: Provider | None = None,
        resolvers: Resolvers | None = None,
        token: CancellationToken | None = None,
        retry: RetryPolicy | None = None,
        signals: SignalDispatcher | None = None,
    ) -> None:
        self.session = session
        self.settings = settings
        self.provider = provider
        self.resolvers = resolvers if resolvers is not None else Resolvers()
        self.token = token if token is not None else CancellationToken()
        self.retry = retry if retry is not None else RetryPolicy.from_settings(settings, token=self.token)
        self.signals = signals

    def build_config(self, task: RequestTask, resolved: Resolved) -> RequestConfig:
        user_agent = self.settings.USER_AGENT
        headers = merge_headers(
            {REFERENCE_HEADER: task.url},
            self.settings.DEFAULT_REQUEST_HEADERS,
            {"User-Agent": user_agent} if user_agent else None,
            getattr(self.provider, "default_headers", None),
            task.headers,
            resolved.headers,
            {"User-Agent": resolved.user_agent} if resolved.user_agent else None,
        )
        return RequestConfig(
            url=task.url,
            method=task.method,
            body=task.body,
            headers=headers,
            proxy=resolved.proxy,
            auth=resolved.auth,
            timeout=self.settings.TIMEOUT,
        )

    async def prepare(self, task: RequestTask) -> RequestConfig:
        """Resolve and merge the config for one attempt, then apply `before_request`."""
        resolved = await self.token.run(self.resolvers.resolve(task.url, task.method, task.body))
        config = self.build_config(task, resolved)
        if self.provider is not None:
            await self.provider.before_request(config)
        return config

    async def execute(self, task: RequestTask) -> tuple[Page, RequestConfig]:
        """Fetch `task` with retries.

        Returns the page and the config of the successful attempt.

        Raises:
            ExhaustedRetryError: every attempt failed.
            CancellationError: the crawl was cancelled.
        """

        async def attempt(number: int) -> tuple[Page, RequestConfig]:
            config = await self.prepare(task)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Attempt %d: %s %s", number, config.method, config.url)
            return await self.fetch(config, task), config

        return await self.retry.run(attempt, task=task, label=task.method)

    async def fetch(self, config: RequestConfig, task: RequestTask | None = None) -> Page:
        """Perform one network attempt for `config`."""
        started = time.perf_counter()
        try:
            async with asyncio.timeout(config.timeout / 1000.0):
                page = await self.token.run(self._request(config, task))
        except TimeoutError as exc:
            raise FetchTimeoutError(
                f"timeout of {config.timeout:g}ms exceeded for {config.url}"
            ) from exc
        except aiohttp.ClientResponseError as exc:
            raise TransientNetworkError(f"HTTP {exc.status} {exc.message} for {config.url}") from exc
        except aiohttp.ClientError as exc:
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc
        page.elapsed = time.perf_counter() - started

        if self.signals is not None:
            await self.signals.send_async("response_received", page=page, task=task)
            await self.signals.send_async("bytes_received", size=len(page.content), task=task)
        return page

    async def _request(self, config: RequestConfig, task: RequestTask | None) -> Page:
        headers = dict(config.headers)
        data = encode_body(config.body, headers)
        async with self.session.request(
            config.method,
            config.url,
            headers=headers,
            data=data,
            proxy=config.proxy,
            auth=config.auth,
            raise_for_status=True,
        ) as resp:
            return await Page.from_response(resp, task=task)


__all__ = ["RequestPipeline", "build_session"]
