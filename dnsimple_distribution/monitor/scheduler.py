"""Monitor scheduler — launches a distribution check on every interval tick.

Each cycle runs as its own asyncio task, so a slow cycle never delays the
next tick. Results are published to an unbounded queue and consumed through
``Monitor.results()``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from ..errors import CheckFailed
from .engine import (
    DEFAULT_CLEANUP_TIMEOUT,
    DEFAULT_RECORD_TTL,
    CheckResult,
    DistributionCheck,
    ProbeNamer,
    RecordAPI,
)
from .lifetime import Lifetime

logger = logging.getLogger(__name__)


class Ticker(Protocol):
    """Periodic timer; ``next_tick`` returns when the next tick is due."""

    async def next_tick(self) -> None: ...


class IntervalTicker:
    """Wall-clock aligned ticker.

    With ``align`` the first tick lands on the next multiple of the interval
    (the top of the minute for a one-minute interval); later ticks follow
    every interval. Ticks missed by a late caller are dropped, not queued.
    """

    def __init__(
        self,
        interval: timedelta,
        align: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.interval = interval.total_seconds()
        self.align = align
        self._clock = clock
        self._next: float | None = None

    def first_delay(self) -> float:
        """Seconds until the first tick."""
        if not self.align:
            return self.interval
        return self.interval - (self._clock() % self.interval)

    async def next_tick(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._next is None:
            delay = self.first_delay()
            logger.info("Sleeping until next interval (delay=%.3fs)", delay)
            self._next = now + delay
        else:
            self._next += self.interval
            while self._next < now:
                self._next += self.interval
        await asyncio.sleep(self._next - now)


class Monitor:
    """Runs a DistributionCheck per tick until the lifetime ends.

    Lifecycle:
        monitor = Monitor(client, account_id, zone, ...)
        await monitor.start()
        async for result in monitor.results(): ...
        await monitor.stop()
        await monitor.drain()
        monitor.close()
    """

    def __init__(
        self,
        api: RecordAPI,
        account_id: str,
        zone: str,
        interval: timedelta = timedelta(minutes=1),
        poll: timedelta = timedelta(seconds=2),
        timeout: timedelta = timedelta(minutes=10),
        lifetime: Lifetime | None = None,
        cleanup_timeout: timedelta = DEFAULT_CLEANUP_TIMEOUT,
        record_ttl: int | None = DEFAULT_RECORD_TTL,
        max_in_flight: int = 0,
        ticker: Ticker | None = None,
    ) -> None:
        self.api = api
        self.account_id = account_id
        self.zone = zone
        self.interval = interval
        self.poll = poll
        self.timeout = timeout
        self.lifetime = lifetime or Lifetime()
        self.cleanup_timeout = cleanup_timeout
        self.record_ttl = record_ttl
        self.max_in_flight = max_in_flight  # 0 = unbounded overlap
        self.ticker: Ticker = ticker or IntervalTicker(interval)
        self.namer = ProbeNamer()
        self.started = 0
        self.skipped = 0
        self._queue: asyncio.Queue[CheckResult | None] = asyncio.Queue()
        self._in_flight: set[asyncio.Task[None]] = set()
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._closed = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """Start ticking."""
        if self._running:
            return
        if self._closed:
            raise RuntimeError("monitor is closed and cannot be restarted")
        self._running = True
        self._task = asyncio.create_task(self._tick_loop(), name="distribution-monitor")
        logger.info(
            "Distribution monitor started: zone=%s interval=%s poll=%s timeout=%s",
            self.zone, self.interval, self.poll, self.timeout,
        )

    async def stop(self) -> None:
        """Stop issuing ticks. In-flight cycles keep running."""
        self._running = False
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Distribution monitor stopped (%d checks in flight)", self.in_flight)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight cycles; returns False if some are still running."""
        if not self._in_flight:
            return True
        _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            logger.warning("%d distribution checks still running after drain", len(pending))
        return not pending

    def close(self) -> None:
        """End the results stream once already-published results are read."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def results(self) -> AsyncIterator[CheckResult]:
        """Completed results in completion order."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    def new_check(self) -> DistributionCheck:
        return DistributionCheck(
            self.api,
            self.account_id,
            self.zone,
            poll=self.poll,
            timeout=self.timeout,
            lifetime=self.lifetime,
            cleanup_timeout=self.cleanup_timeout,
            record_ttl=self.record_ttl,
            namer=self.namer,
        )

    async def _tick_loop(self) -> None:
        """Wait for (tick OR shutdown); launch a cycle on every tick."""
        shutdown = asyncio.ensure_future(self.lifetime.wait())
        tick: asyncio.Future[None] | None = None
        try:
            while self._running:
                tick = asyncio.ensure_future(self.ticker.next_tick())
                await asyncio.wait({tick, shutdown}, return_when=asyncio.FIRST_COMPLETED)
                if self.lifetime.cancelled:
                    logger.info("Shutting down: %s", self.lifetime.cause)
                    break
                tick.result()
                self._launch()
        finally:
            if tick is not None:
                tick.cancel()
            shutdown.cancel()
            self._running = False

    def _launch(self) -> None:
        if self.max_in_flight and self.in_flight >= self.max_in_flight:
            self.skipped += 1
            logger.warning(
                "Skipping tick: %d checks still in flight (max_in_flight=%d)",
                self.in_flight, self.max_in_flight,
            )
            return

        self.started += 1
        task = asyncio.create_task(
            self._run_cycle(self.new_check()), name=f"distribution-check-{self.started}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_cycle(self, check: DistributionCheck) -> None:
        started_at = datetime.now(timezone.utc)
        try:
            result = await check.run()
        except Exception as e:
            # The engine itself broke; still report the cycle as failed
            logger.exception("Distribution check crashed")
            result = CheckResult(
                started_at=started_at,
                duration=datetime.now(timezone.utc) - started_at,
                probe_name="",
                error=CheckFailed(e),
            )
        self._queue.put_nowait(result)
