from __future__ import annotations

import codecs
import logging

import aiohttp
import orjson
from charset_normalizer import from_bytes

from crawlq.core.task import Task
from crawlq.utils.url import urljoin

logger = logging.getLogger(__name__)


class Page:
    """Raw response of a successful fetch.

    Holds the final URL, body bytes, status, headers and the wall-clock time the
    attempt took (`elapsed`, seconds). Text is decoded lazily using the declared
    charset or, failing that, charset detection.
    """

    __slots__ = (
        "url",
        "content",
        "status_code",
        "headers",
        "task",
        "elapsed",
        "_encoding",
    )

    def __init__(
        self,
        url: str,
        content: bytes,
        status_code: int,
        headers: dict[str, str],
        task: Task | None = None,
        encoding: str | None = None,
        elapsed: float = 0.0,
    ) -> None:
        self.url = url
        self.content = content
        self.status_code = status_code
        self.headers = headers
        self.task = task
        self.elapsed = elapsed
        self._encoding = encoding

    @classmethod
    async def from_response(
        cls, resp: aiohttp.ClientResponse, task: Task | None = None
    ) -> Page:
        """Read the whole body of `resp`. Call inside the `async with session.request()` block."""
        return cls(
            url=str(resp.url),
            content=await resp.read(),
            status_code=resp.status,
            headers=dict(resp.headers),
            task=task,
            encoding=resp.charset,
        )

    @property
    def encoding(self) -> str:
        if self._encoding is not None and not _is_known_codec(self._encoding):
            logger.debug("Unknown charset %r declared by %s; detecting", self._encoding, self.url)
            self._encoding = None
        if self._encoding is None:
            best = from_bytes(self.content, steps=16).best()
            self._encoding = str(best.encoding) if best is not None else "utf-8"
        return self._encoding

    def text(self, encoding: str | None = None) -> str:
        return self.content.decode(encoding or self.encoding, errors="replace")

    def json(self) -> object:
        try:
            return orjson.loads(self.content)
        except orjson.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse JSON for {self.url!r}: {exc}") from exc

    def urljoin(self, href: str) -> str:
        """Resolve `href` against the page URL."""
        return urljoin(self.url, href)

    def __repr__(self) -> str:
        return (
            f"Page(url={self.url!r}, status={self.status_code}, size={len(self.content)} bytes, "
            f"elapsed={self.elapsed:.3f}s)"
        )


def _is_known_codec(name: str) -> bool:
    try:
        codecs.lookup(name)
    except LookupError:
        return False
    return True


__all__ = ["Page"]
