"""Attempt pipelines for crawlq tasks.

- RequestPipeline: fetch a request task into a page (aiohttp)
- DownloadPipeline: stream a download task to its file (aiohttp + aiofiles)
- RetryPolicy: bounded retry with backoff shared by both
"""

from crawlq.downloaders.files import DownloadPipeline
from crawlq.downloaders.http import RequestPipeline, build_session
from crawlq.downloaders.retry import FailedAttempt, RetryPolicy

__all__ = ["DownloadPipeline", "RequestPipeline", "RetryPolicy", "FailedAttempt", "build_session"]
