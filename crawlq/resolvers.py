from __future__ import annotations

import asyncio
import inspect
import logging
import random
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import aiohttp

from crawlq.core.request import coerce_auth
from crawlq.settings import RESOLVER_KINDS
from crawlq.utils.settings import resolve_dotted_path

logger = logging.getLogger(__name__)

ResolverFunc = Callable[[str, str, object], Awaitable[object | None]]


@runtime_checkable
class Resolver(Protocol):
    """Object form of a resolver: an async `resolve(url, method, body)` method."""

    async def resolve(self, url: str, method: str, body: object) -> object | None: ...


def as_resolver(value: object, *, kind: str = "resolver") -> ResolverFunc | None:
    """Normalize a resolver given as a coroutine function, a `Resolver` object, a
    `Resolver` class (instantiated without arguments) or a dotted path to either.

    Returns None for None.
    """
    if value is None:
        return None

    target = resolve_dotted_path(value, token_name=kind)
    if inspect.isclass(target):
        target = target()

    if inspect.iscoroutinefunction(target):
        return target
    if isinstance(target, Resolver) and inspect.iscoroutinefunction(target.resolve):
        return target.resolve
    if callable(target) and inspect.iscoroutinefunction(getattr(target, "__call__", None)):
        return target
    raise TypeError(
        f"{kind} resolver must be an async callable or have an async resolve(), got {target!r}"
    )


@dataclass(slots=True)
class Resolved:
    """Values produced by one round of resolution. Absent values are None."""

    proxy: str | None = None
    user_agent: str | None = None
    headers: dict[str, str] | None = None
    auth: aiohttp.BasicAuth | None = None


class Resolvers:
    """The four optional per-attempt resolvers: proxy, user_agent, headers and auth.

    `resolve()` calls every configured resolver concurrently and waits for all of them;
    the first failure propagates.
    """

    __slots__ = ("proxy", "user_agent", "headers", "auth")

    def __init__(
        self,
        *,
        proxy: object = None,
        user_agent: object = None,
        headers: object = None,
        auth: object = None,
    ) -> None:
        self.proxy = as_resolver(proxy, kind="proxy")
        self.user_agent = as_resolver(user_agent, kind="user_agent")
        self.headers = as_resolver(headers, kind="headers")
        self.auth = as_resolver(auth, kind="auth")

    @classmethod
    def from_settings(cls, settings: object, **given: object) -> Resolvers:
        """Combine explicitly given resolvers with dotted paths from `settings.RESOLVERS`.

        Explicit (non-None) arguments win over configured paths.
        """
        configured: Mapping[str, object] = getattr(settings, "RESOLVERS", None) or {}
        chosen = {
            kind: given.get(kind) if given.get(kind) is not None else configured.get(kind)
            for kind in RESOLVER_KINDS
        }
        return cls(**chosen)

    def __bool__(self) -> bool:
        return any(getattr(self, kind) is not None for kind in RESOLVER_KINDS)

    async def resolve(self, url: str, method: str, body: object) -> Resolved:
        async def _call(fn: ResolverFunc | None) -> object | None:
            if fn is None:
                return None
            return await fn(url, method, body)

        proxy, user_agent, headers, auth = await asyncio.gather(
            _call(self.proxy),
            _call(self.user_agent),
            _call(self.headers),
            _call(self.auth),
        )

        if headers is not None and not isinstance(headers, Mapping):
            raise TypeError(f"headers resolver must return a mapping, got {type(headers).__name__}")

        resolved = Resolved(
            proxy=str(proxy) if proxy else None,
            user_agent=str(user_agent) if user_agent else None,
            headers={str(k): str(v) for k, v in headers.items()} if headers else None,
            auth=coerce_auth(auth),
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Resolved %s %s: proxy=%s user_agent=%s headers=%s auth=%s",
                method,
                url,
                resolved.proxy,
                resolved.user_agent,
                sorted(resolved.headers or ()),
                resolved.auth is not None,
            )
        return resolved

    def __repr__(self) -> str:
        kinds = [kind for kind in RESOLVER_KINDS if getattr(self, kind) is not None]
        return f"<Resolvers {', '.join(kinds) or 'none'}>"


DEFAULT_USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
)


class RandomUserAgent:
    """User-agent resolver returning a random entry of `user_agents` on every call."""

    def __init__(
        self, user_agents: Sequence[str] | None = None, *, rng: random.Random | None = None
    ) -> None:
        self.user_agents = tuple(user_agents) if user_agents is not None else DEFAULT_USER_AGENTS
        if not self.user_agents:
            raise ValueError("RandomUserAgent needs at least one user agent")
        self._rng = rng or random.Random()

    async def resolve(self, url: str, method: str, body: object) -> str:
        return self._rng.choice(self.user_agents)


__all__ = [
    "Resolver",
    "ResolverFunc",
    "Resolved",
    "Resolvers",
    "RandomUserAgent",
    "DEFAULT_USER_AGENTS",
    "as_resolver",
]
