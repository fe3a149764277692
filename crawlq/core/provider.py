from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from crawlq.core.context import ResponseContext
from crawlq.core.request import RequestConfig
from crawlq.core.task import RequestTask

if TYPE_CHECKING:
    from crawlq.core.crawler import Crawler


class Provider(ABC):
    """Abstract base class for user providers.

    Class attributes:
      - name (str): provider identifier (required)
      - urls (list[str]): seed URLs (required unless `start_tasks` is overridden)
      - default_headers (dict[str, str]): headers sent with every request of this provider
      - custom_settings (dict[str, object]): settings overriding the runtime settings
    """

    name: str
    urls: list[str] = []
    default_headers: dict[str, str] = {}
    custom_settings: dict[str, object] = {}

    def __init__(self) -> None:
        if not getattr(self, "name", None) or not isinstance(self.name, str):
            raise TypeError("Provider must define a non-empty `name: str` class attribute")
        if not isinstance(self.urls, (list, tuple)):
            raise TypeError("Provider `urls` must be a list[str]")
        self.crawler: Crawler | None = None

    @abstractmethod
    async def parse(self, response: ResponseContext) -> object:
        """Extract data from a fetched response. The return value is ignored.

        Use `response.follow()`, `response.queue_download()`, `response.download()`
        and `response.retry()` to add work to the crawl. A raised exception is reported
        as a provider error for this task only.
        """
        raise NotImplementedError

    async def start_tasks(self) -> AsyncIterator[RequestTask]:
        """Seed tasks; one GET per entry of `urls` by default."""
        for url in self.urls:
            yield RequestTask(url=url)

    async def before_request(self, config: RequestConfig) -> None:
        """Called with the resolved config right before each attempt; may mutate it."""
        return None

    async def open_provider(self, crawler: Crawler) -> None:
        """Lifecycle hook called before seeding."""
        self.crawler = crawler

    async def close_provider(self, crawler: Crawler, reason: str) -> None:
        """Lifecycle hook called after the crawl ends. Override to release resources."""
        return None


__all__ = ["Provider"]
