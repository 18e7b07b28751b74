"""Cancellation scopes.

Lifetime is the process-wide shutdown token. Scope adds a deadline on top of
it, or stands alone when work has to outlive shutdown (probe cleanup).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import timedelta
from typing import TypeVar

from ..errors import CheckCancelled, CheckTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Lifetime:
    """Shared cancellation token, fired once on shutdown."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.cause: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, cause: str = "shutdown") -> None:
        # First cause wins
        if self._event.is_set():
            return
        self.cause = cause
        self._event.set()
        logger.debug("Lifetime cancelled: %s", cause)

    async def wait(self) -> None:
        await self._event.wait()


class Scope:
    """A deadline, optionally bound to a Lifetime.

    Every awaitable run through the scope is abandoned as soon as either the
    deadline passes (CheckTimeout) or the lifetime fires (CheckCancelled).
    """

    def __init__(self, timeout: timedelta, lifetime: Lifetime | None = None) -> None:
        loop = asyncio.get_running_loop()
        self.timeout = timeout
        self.lifetime = lifetime
        self.deadline = loop.time() + timeout.total_seconds()

    def remaining(self) -> float:
        return max(self.deadline - asyncio.get_running_loop().time(), 0.0)

    def check(self) -> None:
        """Raise if the scope is already done, without suspending."""
        if self.lifetime is not None and self.lifetime.cancelled:
            raise CheckCancelled(self.lifetime.cause or "shutdown")
        if self.remaining() <= 0:
            raise CheckTimeout(self.timeout)

    async def run(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the scope ends first."""
        try:
            self.check()
        except (CheckCancelled, CheckTimeout):
            if asyncio.iscoroutine(aw):
                aw.close()
            raise
        work = asyncio.ensure_future(aw)
        waiters: set[asyncio.Future[object]] = {work}
        stop: asyncio.Future[None] | None = None
        if self.lifetime is not None:
            stop = asyncio.ensure_future(self.lifetime.wait())
            waiters.add(stop)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if stop is not None:
                stop.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.wait({work})
        if not work.cancelled() and work.exception() is not None:
            logger.debug("Abandoned operation failed: %r", work.exception())

        if self.lifetime is not None and self.lifetime.cancelled:
            raise CheckCancelled(self.lifetime.cause or "shutdown")
        raise CheckTimeout(self.timeout)

    async def sleep(self, seconds: float) -> None:
        await self.run(asyncio.sleep(seconds))
