from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import ClassVar

logger = logging.getLogger(__name__)


class TaskKind(Enum):
    """Closed set of task kinds handled by the engine."""

    REQUEST = "request"
    DOWNLOAD = "download"


@dataclass(slots=True)
class RequestTask:
    """Fetch-and-parse unit of work.

    Attributes
    - url: request URL (used verbatim; crawlq does not normalize URLs).
    - method: HTTP method (e.g. "GET", "POST").
    - body: request payload. `bytes`/`str` are sent as-is, dicts and lists as JSON.
    - headers: caller-supplied headers; they override provider defaults but are
      overridden by resolver headers.

    Notes
    - There is no dedupe key: pushing the same URL twice yields two executions.
    """

    kind: ClassVar[TaskKind] = TaskKind.REQUEST

    url: str
    method: str = "GET"
    body: object = None
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.url, str) or not self.url:
            raise TypeError("RequestTask.url must be a non-empty str")
        self.method = str(self.method or "GET").upper()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RequestTask:
        """Create a RequestTask from a `{url, method, body, headers}` mapping.

        Raises TypeError for a missing/empty url or non-mapping headers.
        """
        if not isinstance(data, Mapping):
            raise TypeError("RequestTask.from_dict expects a mapping")

        url = data.get("url")
        if not isinstance(url, str) or not url:
            raise TypeError("RequestTask.from_dict: 'url' must be a non-empty str")

        headers_raw = data.get("headers") or {}
        if not isinstance(headers_raw, Mapping):
            raise TypeError("RequestTask.from_dict: 'headers' must be a mapping")
        headers = {str(k): str(v) for k, v in headers_raw.items()}

        method = data.get("method") or "GET"
        if not isinstance(method, str):
            method = str(method)

        return cls(url=url, method=method, body=data.get("body"), headers=headers)

    def __repr__(self) -> str:
        return f"RequestTask({self.method} {self.url!r})"


@dataclass(slots=True)
class DownloadOptions:
    """Options for a download: headers to send and an optional proxy URL."""

    headers: dict[str, str] = field(default_factory=dict)
    proxy: str | None = None

    @classmethod
    def coerce(cls, value: DownloadOptions | Mapping[str, object] | None) -> DownloadOptions:
        if value is None:
            return cls()
        if isinstance(value, DownloadOptions):
            return cls(headers=dict(value.headers), proxy=value.proxy)
        if not isinstance(value, Mapping):
            raise TypeError("download options must be DownloadOptions, a mapping or None")
        unknown = set(value) - {"headers", "proxy"}
        if unknown:
            raise TypeError(f"Unknown download option(s): {', '.join(sorted(map(str, unknown)))}")
        headers = value.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise TypeError("download option 'headers' must be a mapping")
        proxy = value.get("proxy")
        return cls(
            headers={str(k): str(v) for k, v in headers.items()},
            proxy=str(proxy) if proxy else None,
        )


@dataclass(slots=True)
class DownloadTask:
    """Stream-to-file unit of work."""

    kind: ClassVar[TaskKind] = TaskKind.DOWNLOAD
    method: ClassVar[str] = "GET"
    body: ClassVar[None] = None

    url: str
    filepath: Path
    options: DownloadOptions = field(default_factory=DownloadOptions)

    def __post_init__(self) -> None:
        if not isinstance(self.url, str) or not self.url:
            raise TypeError("DownloadTask.url must be a non-empty str")
        self.filepath = Path(self.filepath)

    @property
    def headers(self) -> dict[str, str]:
        return self.options.headers

    def __repr__(self) -> str:
        return f"DownloadTask({self.url!r} -> {str(self.filepath)!r})"


Task = RequestTask | DownloadTask

__all__ = ["TaskKind", "RequestTask", "DownloadOptions", "DownloadTask", "Task"]
