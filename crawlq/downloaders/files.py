import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager, suppress
from pathlib import Path
from typing import Protocol

import aiofiles
import aiohttp

from crawlq.core.cancel import CancellationToken
from crawlq.core.task import DownloadTask
from crawlq.downloaders.retry import RetryPolicy
from crawlq.exceptions import FetchTimeoutError, StreamAggregationError
from crawlq.settings import Settings
from crawlq.signals import SignalDispatcher

logger = logging.getLogger(__name__)


class Sink(Protocol):
    async def write(self, data: bytes) -> object: ...


class StreamErrors:
    """Keeps the first error of a download attempt.

    Either side of the transfer may fail, possibly both. Only the first recorded error
    is reported; later ones are logged at debug level and dropped.
    """

    __slots__ = ("url", "_first")

    def __init__(self, url: str | None = None) -> None:
        self.url = url
        self._first: StreamAggregationError | None = None

    @property
    def first(self) -> StreamAggregationError | None:
        return self._first

    def record(self, side: str, error: BaseException) -> bool:
        """Record `error` from `side`. Returns False if an earlier error already won."""
        if self._first is not None:
            logger.debug(
                "Suppressed %s stream error for %s after %s error: %r",
                side,
                self.url,
                self._first.side,
                error,
            )
            return False
        self._first = StreamAggregationError(side, error, self.url)
        return True

    def raise_first(self) -> None:
        if self._first is not None:
            raise self._first


class DownloadPipeline:
    """Stream a `DownloadTask` to its file.

    Features:
      - Creates the destination directory, then streams the response body into the
        file with a reader and a writer running concurrently.
      - The first error from either stream (including opening or closing it) fails the
        attempt as `StreamAggregationError`; the other side is stopped.
      - Attempts share the request pipeline's timeout, retry budget and cancellation.

    Override `_open_source` / `_open_destination` to change where bytes come from or
    go to.
    """

    __slots__ = ("session", "settings", "token", "retry", "signals", "chunk_size", "buffer")

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        settings: Settings,
        *,
        token: CancellationToken | None = None,
        retry: RetryPolicy | None = None,
        signals: SignalDispatcher | None = None,
        buffer: int = 8,
    ) -> None:
        self.session = session
        self.settings = settings
        self.token = token if token is not None else CancellationToken()
        self.retry = retry if retry is not None else RetryPolicy.from_settings(settings, token=self.token)
        self.signals = signals
        self.chunk_size = settings.DOWNLOAD_CHUNK_SIZE
        self.buffer = buffer

    async def execute(self, task: DownloadTask) -> Path:
        """Download `task` with retries and return the written path.

        Raises:
            ExhaustedRetryError: every attempt failed.
            CancellationError: the crawl was cancelled.
        """
        await asyncio.to_thread(task.filepath.parent.mkdir, parents=True, exist_ok=True)

        async def attempt(number: int) -> int:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Attempt %d: download %s -> %s", number, task.url, task.filepath)
            return await self.transfer(task)

        size = await self.retry.run(attempt, task=task, label="download")

        if self.signals is not None:
            await self.signals.send_async("bytes_received", size=size, task=task)
            await self.signals.send_async(
                "download_completed", task=task, path=task.filepath, size=size
            )
        logger.info("Downloaded %s -> %s (%d bytes)", task.url, task.filepath, size)
        return task.filepath

    async def transfer(self, task: DownloadTask) -> int:
        """One attempt: returns the number of bytes written."""
        try:
            async with asyncio.timeout(self.settings.timeout_seconds):
                return await self.token.run(self._transfer(task))
        except TimeoutError as exc:
            raise FetchTimeoutError(
                f"timeout of {self.settings.TIMEOUT:g}ms exceeded for {task.url}"
            ) from exc

    async def _transfer(self, task: DownloadTask) -> int:
        errors = StreamErrors(task.url)
        try:
            return await self._pump(task, errors)
        except (StreamAggregationError, asyncio.CancelledError):
            # a timeout or cancellation also leaves a partial file behind
            with suppress(OSError):
                await asyncio.to_thread(task.filepath.unlink, missing_ok=True)
            raise

    async def _pump(self, task: DownloadTask, errors: StreamErrors) -> int:
        queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=self.buffer)

        async def read() -> None:
            try:
                async with self._open_source(task) as chunks:
                    async for chunk in chunks:
                        if chunk:
                            await queue.put(chunk)
            except Exception as exc:
                errors.record("source", exc)
                raise
            await queue.put(None)

        async def write() -> int:
            written = 0
            try:
                async with self._open_destination(task.filepath) as sink:
                    while (chunk := await queue.get()) is not None:
                        await sink.write(chunk)
                        written += len(chunk)
            except Exception as exc:
                errors.record("destination", exc)
                raise
            return written

        reader = asyncio.create_task(read())
        writer = asyncio.create_task(write())
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for t in (reader, writer):
                if not t.done():
                    t.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

        errors.raise_first()
        return writer.result()

    @asynccontextmanager
    async def _open_source(self, task: DownloadTask) -> AsyncIterator[AsyncIterator[bytes]]:
        if self.session is None:
            raise RuntimeError("DownloadPipeline has no session")
        async with self.session.get(
            task.url,
            headers=task.options.headers or None,
            proxy=task.options.proxy,
            raise_for_status=True,
        ) as resp:
            yield resp.content.iter_chunked(self.chunk_size)

    def _open_destination(self, path: Path) -> AbstractAsyncContextManager[Sink]:
        return aiofiles.open(path, "wb")


__all__ = ["DownloadPipeline", "StreamErrors", "Sink"]
