"""Tests for crawlq.core.provider.Provider"""

import pytest

from crawlq.core.provider import Provider
from crawlq.core.request import RequestConfig
from crawlq.core.task import RequestTask


class DummyProvider(Provider):
    """Concrete Provider for testing."""

    name = "test_provider"
    urls = ["https://example.com/1", "https://example.com/2"]

    async def parse(self, response):
        pass


def test_provider_init_valid():
    provider = DummyProvider()
    assert provider.name == "test_provider"
    assert provider.crawler is None


def test_provider_init_missing_name():
    """Provider raises TypeError if name is missing."""

    class NoName(Provider):
        urls = ["https://example.com"]

        async def parse(self, response):
            pass

    with pytest.raises(TypeError, match="must define a non-empty `name: str`"):
        NoName()


def test_provider_init_rejects_non_list_urls():
    class BadUrls(Provider):
        name = "bad"
        urls = "https://example.com"

        async def parse(self, response):
            pass

    with pytest.raises(TypeError, match="must be a list"):
        BadUrls()


def test_provider_requires_parse():
    class NoParse(Provider):
        name = "no_parse"

    with pytest.raises(TypeError):
        NoParse()


@pytest.mark.asyncio
async def test_start_tasks_yields_one_get_per_url():
    provider = DummyProvider()
    tasks = [task async for task in provider.start_tasks()]

    assert all(isinstance(t, RequestTask) for t in tasks)
    assert [t.url for t in tasks] == DummyProvider.urls
    assert all(t.method == "GET" for t in tasks)


@pytest.mark.asyncio
async def test_hooks_default_behavior():
    provider = DummyProvider()
    crawler = object()
    config = RequestConfig("https://example.com", "GET", None, {"Accept": "*/*"})

    await provider.open_provider(crawler)
    assert provider.crawler is crawler
    assert await provider.before_request(config) is None
    assert config.headers == {"Accept": "*/*"}
    assert await provider.close_provider(crawler, "finished") is None
