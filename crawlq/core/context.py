from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from lxml import html

from crawlq.core.request import REFERENCE_HEADER, RequestConfig, drop_headers, merge_headers
from crawlq.core.response import Page
from crawlq.core.task import DownloadOptions, DownloadTask, RequestTask

if TYPE_CHECKING:
    from crawlq.core.crawler import Crawler
    from crawlq.core.engine import CrawlEngine

logger = logging.getLogger(__name__)

# Not meaningful for a binary fetch
_DOWNLOAD_DROPPED_HEADERS = ("Accept",)


class ResponseContext:
    """What a provider's `parse()` receives for one successful fetch.

    Bundles the fetched `Page`, lxml document queries and the task-injecting actions:

    - `follow(url_or_request)` queues a new request, with the `Reference` header set
      to the originating URL unless the caller overrides it.
    - `retry()` queues the exact request that produced this response again. This is a
      new, independent task: anything `parse()` did for this response will be done
      again for the retried one.
    - `queue_download(url, filepath, options)` queues a download that inherits this
      request's headers (minus `Accept`) and proxy.
    - `download(url, filepath, options)` performs the same download inline.

    Injection is a no-op once the crawl is no longer active.
    """

    __slots__ = ("page", "config", "_engine", "_doc")

    def __init__(self, page: Page, config: RequestConfig, engine: CrawlEngine) -> None:
        self.page = page
        self.config = config
        self._engine = engine
        self._doc: html.HtmlElement | None = None

    # Response data

    @property
    def url(self) -> str:
        return self.page.url

    @property
    def status_code(self) -> int:
        return self.page.status_code

    @property
    def headers(self) -> dict[str, str]:
        return self.page.headers

    @property
    def content(self) -> bytes:
        return self.page.content

    @property
    def elapsed(self) -> float:
        """Seconds the successful attempt took."""
        return self.page.elapsed

    @property
    def crawler(self) -> Crawler | None:
        return self._engine.crawler

    @property
    def active(self) -> bool:
        return self._engine.scheduler.active

    def text(self, encoding: str | None = None) -> str:
        return self.page.text(encoding)

    def json(self) -> object:
        return self.page.json()

    # Document queries

    @property
    def doc(self) -> html.HtmlElement:
        """Lazily parsed lxml document."""
        if self._doc is None:
            content = self.page.content
            if not content.strip():
                self._doc = html.Element("html")
            else:
                self._doc = html.fromstring(content, base_url=self.page.url)
        return self._doc

    def css(self, selector: str) -> list[html.HtmlElement]:
        return self.doc.cssselect(selector)

    def xpath(self, expr: str, **variables: object) -> list[object]:
        return self.doc.xpath(expr, **variables)

    def urljoin(self, href: str) -> str:
        return self.page.urljoin(href)

    # Task injection

    def follow(self, target: str | Mapping[str, object] | RequestTask | None) -> RequestTask | None:
        """Queue a request for `target`: a URL, a `{url, method, body, headers}`
        mapping or a `RequestTask`. Returns the queued task, or None when nothing was
        queued.
        """
        if not target or not self.active:
            return None

        default = {REFERENCE_HEADER: self.config.url}
        if isinstance(target, str):
            task = RequestTask(url=target, headers=default)
        else:
            given = target if isinstance(target, RequestTask) else RequestTask.from_dict(target)
            task = RequestTask(
                url=given.url,
                method=given.method,
                body=given.body,
                headers=merge_headers(default, given.headers),
            )
        return task if self._engine.scheduler.push(task) else None

    def retry(self) -> RequestTask | None:
        """Queue the request that produced this response again."""
        if not self.active:
            return None
        task = RequestTask(
            url=self.config.url,
            method=self.config.method,
            body=self.config.body,
            headers=dict(self.config.headers),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Re-queuing %r on provider request", task)
        return task if self._engine.scheduler.push(task) else None

    def download_options(
        self, options: DownloadOptions | Mapping[str, object] | None = None
    ) -> DownloadOptions:
        """Options for a download started from this response.

        Headers and proxy are inherited from this request (without `Accept`); fields
        given in `options` replace the inherited ones.
        """
        inherited = DownloadOptions(
            headers=drop_headers(self.config.headers, _DOWNLOAD_DROPPED_HEADERS),
            proxy=self.config.proxy,
        )
        if options is None:
            return inherited

        given = DownloadOptions.coerce(options)
        if isinstance(options, Mapping):
            replace_headers = "headers" in options
            replace_proxy = "proxy" in options
        else:
            replace_headers = bool(given.headers)
            replace_proxy = given.proxy is not None
        return DownloadOptions(
            headers=given.headers if replace_headers else inherited.headers,
            proxy=given.proxy if replace_proxy else inherited.proxy,
        )

    def queue_download(
        self,
        url: str,
        filepath: str | Path,
        options: DownloadOptions | Mapping[str, object] | None = None,
    ) -> DownloadTask | None:
        """Queue a download of `url` to `filepath` and return without waiting."""
        if not url or not self.active:
            return None
        task = DownloadTask(url=url, filepath=Path(filepath), options=self.download_options(options))
        return task if self._engine.scheduler.push(task) else None

    async def download(
        self,
        url: str,
        filepath: str | Path,
        options: DownloadOptions | Mapping[str, object] | None = None,
    ) -> Path:
        """Download `url` to `filepath` now, outside the queue and concurrency limit.

        Raises:
            ExhaustedRetryError: every attempt failed.
            CancellationError: the crawl was cancelled.
        """
        task = DownloadTask(url=url, filepath=Path(filepath), options=self.download_options(options))
        await self._engine.download(task)
        return task.filepath

    def __repr__(self) -> str:
        return f"<ResponseContext {self.config.method} {self.page.url!r} status={self.page.status_code}>"


__all__ = ["ResponseContext"]
