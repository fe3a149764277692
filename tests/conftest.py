"""Shared fixtures for crawlq tests."""

from __future__ import annotations

from collections.abc import Callable

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from crawlq.settings import Settings


@pytest.fixture
def fast_settings() -> Settings:
    """Settings without backoff delays and with a short timeout."""
    return Settings(
        CONCURRENCY=2,
        TIMEOUT=2000.0,
        RETRY=0,
        RETRY_BACKOFF=0.0,
        USER_AGENT="crawlq-tests",
    )


@pytest_asyncio.fixture
async def make_server():
    """Start aiohttp TestServers from a `{path: handler}` mapping; closed on teardown."""
    servers: list[TestServer] = []

    async def _make(routes: dict[str, Callable]) -> TestServer:
        app = web.Application()
        for path, handler in routes.items():
            app.router.add_route("*", path, handler)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return server

    yield _make

    for server in servers:
        await server.close()

