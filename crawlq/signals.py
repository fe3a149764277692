import asyncio
import inspect
import logging
import weakref
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[object | None]]

SUPPORTED_SIGNALS: list[str] = [
    # Run lifecycle
    "crawl_started",
    "crawl_finished",
    # Task lifecycle
    "task_dispatched",
    "task_completed",
    "task_error",
    # Attempts
    "attempt_failed",
    "response_received",
    "bytes_received",
    "download_completed",
]


class _Receiver:
    """A registered handler.

    Holds a weak reference by default (WeakMethod for bound methods) so that
    connecting an object's method does not keep the object alive. `sender` restricts
    delivery to one sender, compared by identity.
    """

    __slots__ = ("_strong", "_ref", "priority", "sender")

    def __init__(self, fn: Handler, *, weak: bool, priority: int, sender: object) -> None:
        self._strong: Handler | None = None
        self._ref: weakref.ref[Handler] | None = None
        self.priority = priority
        self.sender = sender

        if not weak:
            self._strong = fn
        elif getattr(fn, "__self__", None) is not None:
            self._ref = weakref.WeakMethod(fn)
        else:
            self._ref = weakref.ref(fn)

    def resolve(self) -> Handler | None:
        if self._strong is not None:
            return self._strong
        return self._ref() if self._ref is not None else None

    def accepts(self, sender: object) -> bool:
        return self.sender is None or self.sender is sender


class SignalRegistry:
    """Registry of async signal handlers.

    Handlers are invoked as `await handler(sender, **payload)`, highest priority
    first. Handler exceptions are logged and swallowed unless the sender asks for
    them to be raised. Dead weak references are pruned when a signal is sent.
    """

    def __init__(self, *, max_concurrency: int | None = None) -> None:
        self._receivers: dict[str, list[_Receiver]] = {name: [] for name in SUPPORTED_SIGNALS}
        self._max_concurrency = max_concurrency

    def _check_signal(self, signal: str) -> list[_Receiver]:
        try:
            return self._receivers[signal]
        except KeyError:
            raise ValueError(f"Unknown signal: {signal!r}") from None

    def connect(
        self,
        signal: str,
        handler: Handler,
        *,
        weak: bool = True,
        priority: int = 0,
        sender: object = None,
    ) -> None:
        """Register an async handler for `signal`.

        Raises:
            ValueError: if signal is unknown.
            TypeError: if handler is not an async function.
        """
        receivers = self._check_signal(signal)
        if not inspect.iscoroutinefunction(handler):
            raise TypeError("Signal handlers must be `async def` callables")

        for r in receivers:
            if r.resolve() == handler and r.sender is sender:
                return

        receivers.append(_Receiver(handler, weak=weak, priority=priority, sender=sender))
        receivers.sort(key=lambda r: r.priority, reverse=True)

    def disconnect(self, signal: str, handler: Handler, *, sender: object = None) -> None:
        """Unregister `handler`. With `sender`, only that sender's registration is removed."""
        if signal not in self._receivers:
            return
        self._receivers[signal] = [
            r
            for r in self._receivers[signal]
            if r.resolve() is not None
            and not (r.resolve() == handler and (sender is None or r.sender is sender))
        ]

    def receivers(self, signal: str, sender: object = None) -> list[Handler]:
        """Live handlers for `signal` that accept `sender`."""
        receivers = self._check_signal(signal)
        live = [(r, r.resolve()) for r in receivers]
        if any(fn is None for _, fn in live):
            self._receivers[signal] = [r for r, fn in live if fn is not None]
        return [fn for r, fn in live if fn is not None and r.accepts(sender)]

    async def send_async(
        self,
        signal: str,
        *,
        sender: object = None,
        concurrent: bool = False,
        raise_exceptions: bool = False,
        **payload: object,
    ) -> list[object]:
        """Emit `signal` and return the non-None handler results.

        Sequential delivery preserves priority order; concurrent delivery runs all
        handlers at once, bounded by the registry's `max_concurrency`.
        """
        handlers = self.receivers(signal, sender)
        if not handlers:
            return []

        async def _call(fn: Handler) -> object | None:
            try:
                return await fn(sender, **payload)
            except Exception:
                logger.exception("Signal handler for %s failed", signal)
                if raise_exceptions:
                    raise
                return None

        if not concurrent:
            results = [await _call(fn) for fn in handlers]
        else:
            sem = asyncio.Semaphore(self._max_concurrency) if self._max_concurrency else None

            async def _bounded(fn: Handler) -> object | None:
                if sem is None:
                    return await _call(fn)
                async with sem:
                    return await _call(fn)

            results = await asyncio.gather(*(_bounded(fn) for fn in handlers))
        return [r for r in results if r is not None]

    def for_sender(self, sender: object) -> "SignalDispatcher":
        return SignalDispatcher(self, sender)


class SignalDispatcher:
    """Registry proxy bound to one sender.

    `connect()` / `disconnect()` default their sender filter to the bound sender and
    `send_async()` always sends as the bound sender. Components of one crawl share the
    crawler's dispatcher so that handlers subscribed on the crawler see every event
    of that crawl and nothing from other crawlers.
    """

    __slots__ = ("registry", "sender")

    def __init__(self, registry: SignalRegistry, sender: object) -> None:
        self.registry = registry
        self.sender = sender

    def connect(
        self,
        signal: str,
        handler: Handler,
        *,
        weak: bool = True,
        priority: int = 0,
    ) -> None:
        self.registry.connect(signal, handler, weak=weak, priority=priority, sender=self.sender)

    def disconnect(self, signal: str, handler: Handler) -> None:
        self.registry.disconnect(signal, handler, sender=self.sender)

    async def send_async(
        self,
        signal: str,
        *,
        concurrent: bool = False,
        raise_exceptions: bool = False,
        **payload: object,
    ) -> list[object]:
        return await self.registry.send_async(
            signal,
            sender=self.sender,
            concurrent=concurrent,
            raise_exceptions=raise_exceptions,
            **payload,
        )


# === Global Instance ===
signals_registry = SignalRegistry()


__all__ = [
    "SUPPORTED_SIGNALS",
    "SignalDispatcher",
    "SignalRegistry",
    "signals_registry",
]
