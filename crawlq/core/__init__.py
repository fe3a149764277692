from crawlq.core import queues
from crawlq.core.cancel import CancellationToken
from crawlq.core.context import ResponseContext
from crawlq.core.crawler import Crawler
from crawlq.core.engine import CrawlEngine
from crawlq.core.provider import Provider
from crawlq.core.queue import TaskQueue
from crawlq.core.scheduler import RunState, Scheduler
from crawlq.core.stats import StatsCollector

__all__ = [
    "CancellationToken",
    "Crawler",
    "CrawlEngine",
    "Provider",
    "ResponseContext",
    "RunState",
    "Scheduler",
    "StatsCollector",
    "TaskQueue",
    "queues",
]
