"""Tests for crawlq.downloaders.files

Covers:
- StreamErrors keeps only the first error
- Streaming a response body to disk, creating parent directories
- Source and destination failures surface as one StreamAggregationError
- Partial files are removed after a failed attempt
- Retry, timeout and signals around a download
"""

import asyncio
from contextlib import asynccontextmanager

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web

from crawlq.core.task import DownloadOptions, DownloadTask
from crawlq.downloaders.files import DownloadPipeline, StreamErrors
from crawlq.downloaders.retry import RetryPolicy
from crawlq.exceptions import ExhaustedRetryError, FetchTimeoutError, StreamAggregationError
from crawlq.settings import Settings
from crawlq.signals import SignalRegistry


@pytest.fixture
def settings():
    return Settings(TIMEOUT=1000.0, RETRY=0, RETRY_BACKOFF=0.0, DOWNLOAD_CHUNK_SIZE=4)


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as s:
        yield s


class FailingSink:
    """Sink that fails on its n-th write."""

    def __init__(self, fail_at: int, error: Exception) -> None:
        self.fail_at = fail_at
        self.error = error
        self.writes: list[bytes] = []

    async def write(self, data: bytes) -> int:
        if len(self.writes) + 1 >= self.fail_at:
            raise self.error
        self.writes.append(data)
        return len(data)


class ScriptedPipeline(DownloadPipeline):
    """Download pipeline whose source and destination are scripted in memory."""

    def __init__(self, settings, *, chunks, source_error=None, sink=None, **kwargs):
        super().__init__(None, settings, **kwargs)
        self.chunks = chunks
        self.source_error = source_error
        self.sink = sink

    @asynccontextmanager
    async def _open_source(self, task):
        async def gen():
            for chunk in self.chunks:
                await asyncio.sleep(0)
                yield chunk
            if self.source_error is not None:
                raise self.source_error

        yield gen()

    def _open_destination(self, path):
        if self.sink is None:
            return super()._open_destination(path)

        @asynccontextmanager
        async def opened():
            path.write_bytes(b"partial")
            yield self.sink

        return opened()


# StreamErrors Tests


def test_stream_errors_keeps_first_error():
    errors = StreamErrors("https://example.com/f")
    first = OSError("disk full")

    assert errors.record("destination", first) is True
    assert errors.record("source", ConnectionResetError("reset")) is False
    assert errors.first.side == "destination"
    assert errors.first.error is first

    with pytest.raises(StreamAggregationError, match="disk full"):
        errors.raise_first()


def test_stream_errors_without_error_does_not_raise():
    errors = StreamErrors()
    errors.raise_first()
    assert errors.first is None


# Streaming Tests


@pytest.mark.asyncio
async def test_download_streams_to_nested_path(make_server, session, settings, tmp_path):
    payload = b"0123456789" * 100

    async def blob(request):
        return web.Response(body=payload)

    server = await make_server({"/blob": blob})
    pipeline = DownloadPipeline(session, settings)
    target = tmp_path / "a" / "b" / "blob.bin"

    path = await pipeline.execute(DownloadTask(str(server.make_url("/blob")), target))

    assert path == target
    assert target.read_bytes() == payload


@pytest.mark.asyncio
async def test_download_sends_option_headers(make_server, session, settings, tmp_path):
    seen = {}

    async def blob(request):
        seen.update(request.headers)
        return web.Response(body=b"x")

    server = await make_server({"/blob": blob})
    pipeline = DownloadPipeline(session, settings)
    task = DownloadTask(
        str(server.make_url("/blob")),
        tmp_path / "x.bin",
        DownloadOptions(headers={"Cookie": "sid=1", "Reference": "https://example.com/"}),
    )

    await pipeline.execute(task)
    assert seen["Cookie"] == "sid=1"
    assert seen["Reference"] == "https://example.com/"


@pytest.mark.asyncio
async def test_non_2xx_download_is_exhausted_and_leaves_no_file(make_server, session, settings, tmp_path):
    hits = []

    async def missing(request):
        hits.append(1)
        return web.Response(status=404)

    server = await make_server({"/missing": missing})
    pipeline = DownloadPipeline(session, settings, retry=RetryPolicy(1, backoff=0))
    target = tmp_path / "missing.bin"

    with pytest.raises(ExhaustedRetryError) as exc_info:
        await pipeline.execute(DownloadTask(str(server.make_url("/missing")), target))

    assert len(hits) == 2
    assert isinstance(exc_info.value.error, StreamAggregationError)
    assert exc_info.value.error.side == "source"
    assert not target.exists()


# Stream Failure Tests


@pytest.mark.asyncio
async def test_source_error_mid_stream_removes_partial_file(settings, tmp_path):
    pipeline = ScriptedPipeline(
        settings, chunks=[b"aaaa", b"bbbb"], source_error=ConnectionResetError("peer reset")
    )
    target = tmp_path / "out.bin"

    with pytest.raises(ExhaustedRetryError) as exc_info:
        await pipeline.execute(DownloadTask("https://example.com/f", target))

    error = exc_info.value.error
    assert isinstance(error, StreamAggregationError)
    assert error.side == "source"
    assert isinstance(error.error, ConnectionResetError)
    assert not target.exists()


@pytest.mark.asyncio
async def test_destination_error_is_reported_once(settings, tmp_path):
    """A write failure stops the reader and is the only error reported."""
    sink = FailingSink(fail_at=2, error=OSError("disk full"))
    pipeline = ScriptedPipeline(
        settings,
        chunks=[b"aaaa"] * 50,
        source_error=RuntimeError("never reached"),
        sink=sink,
    )
    target = tmp_path / "out.bin"

    with pytest.raises(ExhaustedRetryError) as exc_info:
        await pipeline.execute(DownloadTask("https://example.com/f", target))

    error = exc_info.value.error
    assert error.side == "destination"
    assert str(error) == "disk full"
    assert sink.writes == [b"aaaa"]
    assert not target.exists()


@pytest.mark.asyncio
async def test_stream_error_is_retried(settings, tmp_path):
    class Flaky(ScriptedPipeline):
        attempts = 0

        @asynccontextmanager
        async def _open_source(self, task):
            Flaky.attempts += 1
            if Flaky.attempts == 1:
                raise ConnectionResetError("first attempt fails")
            async with super()._open_source(task) as chunks:
                yield chunks

    pipeline = Flaky(settings, chunks=[b"data"], retry=RetryPolicy(2, backoff=0))
    target = tmp_path / "out.bin"

    assert await pipeline.execute(DownloadTask("https://example.com/f", target)) == target
    assert target.read_bytes() == b"data"
    assert Flaky.attempts == 2


@pytest.mark.asyncio
async def test_slow_source_times_out(tmp_path):
    class Stalled(ScriptedPipeline):
        @asynccontextmanager
        async def _open_source(self, task):
            async def gen():
                await asyncio.sleep(10)
                yield b"late"

            yield gen()

    settings = Settings(TIMEOUT=50.0, RETRY=0, RETRY_BACKOFF=0.0)
    pipeline = Stalled(settings, chunks=[])

    with pytest.raises(ExhaustedRetryError) as exc_info:
        await pipeline.execute(DownloadTask("https://example.com/f", tmp_path / "f"))
    assert isinstance(exc_info.value.error, FetchTimeoutError)
    assert not (tmp_path / "f").exists()


# Signal Tests


@pytest.mark.asyncio
async def test_download_emits_completion_signals(settings, tmp_path):
    registry = SignalRegistry()
    dispatcher = registry.for_sender(object())
    seen = []

    async def on_bytes(sender, size, task, **kwargs):
        seen.append(("bytes", size))

    async def on_done(sender, task, path, size, **kwargs):
        seen.append(("done", path, size))

    dispatcher.connect("bytes_received", on_bytes)
    dispatcher.connect("download_completed", on_done)

    pipeline = ScriptedPipeline(settings, chunks=[b"ab", b"cde"], signals=dispatcher)
    target = tmp_path / "f.bin"
    await pipeline.execute(DownloadTask("https://example.com/f", target))

    assert seen == [("bytes", 5), ("done", target, 5)]


@pytest.mark.asyncio
async def test_destination_fails_before_delayed_source_error(settings, tmp_path):
    """Destination fails first, source would fail 5 ms later: one error, the first one."""

    class Racing(ScriptedPipeline):
        @asynccontextmanager
        async def _open_source(self, task):
            async def gen():
                yield b"data"
                await asyncio.sleep(0.005)
                raise ConnectionResetError("source failed late")

            yield gen()

    sink = FailingSink(fail_at=1, error=OSError("destination failed first"))
    pipeline = Racing(settings, chunks=[], sink=sink)

    with pytest.raises(ExhaustedRetryError) as exc_info:
        await pipeline.execute(DownloadTask("https://example.com/f", tmp_path / "f"))

    error = exc_info.value.error
    assert isinstance(error, StreamAggregationError)
    assert error.side == "destination"
    assert str(error) == "destination failed first"
