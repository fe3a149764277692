from crawlq.runner.logging import setup_logging
from crawlq.runner.run import CrawlRunner, run_async

__all__ = ["CrawlRunner", "run_async", "setup_logging"]
