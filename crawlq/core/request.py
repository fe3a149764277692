from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import aiohttp
import orjson

REFERENCE_HEADER = "Reference"


def merge_headers(*layers: Mapping[str, object] | None) -> dict[str, str]:
    """Merge header mappings left to right; later layers win.

    Header names compare case-insensitively. When a later layer overrides a name the
    later spelling is kept. `None` layers and `None` values are skipped.
    """
    merged: dict[str, str] = {}
    names: dict[str, str] = {}
    for layer in layers:
        if not layer:
            continue
        for k, v in layer.items():
            if v is None:
                continue
            key = str(k)
            low = key.lower()
            prev = names.get(low)
            if prev is not None and prev != key:
                del merged[prev]
            names[low] = key
            merged[key] = str(v)
    return merged


def drop_headers(headers: Mapping[str, str], names: Iterable[str]) -> dict[str, str]:
    """Return a copy of `headers` without `names` (case-insensitive)."""
    drop = {n.lower() for n in names}
    return {k: v for k, v in headers.items() if k.lower() not in drop}


def encode_body(body: object, headers: dict[str, str]) -> bytes | str | None:
    """Encode a request body for aiohttp.

    JSON values (dict/list/number/bool) are serialized with orjson and a JSON
    Content-Type is added unless one is already present.
    """
    if body is None or isinstance(body, (bytes, str)):
        return body
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    if isinstance(body, (dict, list, int, float, bool)):
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"
        return orjson.dumps(body)
    raise TypeError(f"Unsupported request body type: {type(body).__name__}")


def coerce_auth(value: object) -> aiohttp.BasicAuth | None:
    """Accept `aiohttp.BasicAuth`, a `(login, password)` pair or None."""
    if value is None or isinstance(value, aiohttp.BasicAuth):
        return value
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return aiohttp.BasicAuth(str(value[0]), str(value[1]))
    raise TypeError("auth resolver must return aiohttp.BasicAuth, (login, password) or None")


@dataclass(slots=True)
class RequestConfig:
    """Resolved request configuration for a single attempt.

    Built by the request pipeline from the task, the settings, the provider defaults
    and the resolvers. Handed to `Provider.before_request`, which may mutate it in
    place before the network call.

    Attributes
    - timeout: per-attempt timeout in milliseconds.
    """

    url: str
    method: str = "GET"
    body: object = None
    headers: dict[str, str] = field(default_factory=dict)
    proxy: str | None = None
    auth: aiohttp.BasicAuth | None = None
    timeout: float = 30000.0


__all__ = [
    "REFERENCE_HEADER",
    "RequestConfig",
    "merge_headers",
    "drop_headers",
    "encode_body",
    "coerce_auth",
]
