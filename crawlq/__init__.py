from __future__ import annotations

__version__ = "0.1.0"

from crawlq.core.context import ResponseContext
from crawlq.core.crawler import Crawler
from crawlq.core.provider import Provider
from crawlq.core.request import RequestConfig
from crawlq.core.task import DownloadOptions, DownloadTask, RequestTask
from crawlq.exceptions import (
    CancellationError,
    CrawlError,
    ExhaustedRetryError,
    FetchTimeoutError,
    ProviderError,
    StreamAggregationError,
    TransientNetworkError,
)
from crawlq.resolvers import RandomUserAgent, Resolvers
from crawlq.settings import Settings

__all__ = [
    "Crawler",
    "Provider",
    "ResponseContext",
    "RequestConfig",
    "RequestTask",
    "DownloadTask",
    "DownloadOptions",
    "Resolvers",
    "RandomUserAgent",
    "Settings",
    "CrawlError",
    "TransientNetworkError",
    "FetchTimeoutError",
    "StreamAggregationError",
    "ExhaustedRetryError",
    "CancellationError",
    "ProviderError",
]
