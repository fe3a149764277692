from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from crawlq.exceptions import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-way switch shared by every network operation of a run.

    Operations run through `run()`; once `cancel()` is called every pending
    `run()` aborts its awaitable and raises `CancellationError`, and every later
    `run()` raises immediately. A token is never reset.
    """

    __slots__ = ("_event", "_reason")

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "Operation canceled by the user.") -> bool:
        """Trip the token. Returns False if it was already tripped."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        logger.info("Cancellation requested: %s", reason)
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self._reason)

    async def run(self, aw: Awaitable[T]) -> T:
        """Await `aw` unless the token trips first.

        Raises:
            CancellationError: the token was tripped before or while `aw` ran.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise CancellationError(self._reason)

        op = asyncio.ensure_future(aw)
        tripped = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({op, tripped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # outer cancellation (e.g. asyncio.timeout): the operation is torn down
            # before this returns
            op.cancel()
            tripped.cancel()
            await asyncio.gather(op, return_exceptions=True)
            raise

        if op.done():
            tripped.cancel()
            return op.result()

        op.cancel()
        try:
            await op
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Operation failed while being cancelled", exc_info=True)
        raise CancellationError(self._reason)

    async def sleep(self, delay: float) -> None:
        """Sleep for `delay` seconds; abort with `CancellationError` on trip."""
        if delay <= 0:
            self.raise_if_cancelled()
            return
        await self.run(asyncio.sleep(delay))

    def __repr__(self) -> str:
        return f"<CancellationToken cancelled={self.cancelled}>"
