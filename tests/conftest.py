"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from dnsimple_distribution.client.models import ZoneRecord, ZoneRecordAttributes


class FakeAPI:
    """In-memory stand-in for the DNSimple record calls.

    ``pending_checks`` distribution checks answer False before the record
    reports distributed; ``None`` never distributes.
    """

    def __init__(
        self,
        pending_checks: int | None = 0,
        create_error: Exception | None = None,
        check_error: Exception | None = None,
        delete_error: Exception | None = None,
        delete_delay: float = 0.0,
    ) -> None:
        self.pending_checks = pending_checks
        self.create_error = create_error
        self.check_error = check_error
        self.delete_error = delete_error
        self.delete_delay = delete_delay
        self.create_gate: asyncio.Event | None = None
        self.created: list[ZoneRecordAttributes] = []
        self.create_attempts = 0
        self.checks = 0
        self.delete_calls: list[int] = []
        self._next_id = 100

    async def create_record(
        self, account_id: str, zone: str, attributes: ZoneRecordAttributes,
    ) -> ZoneRecord:
        self.create_attempts += 1
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            raise self.create_error
        self._next_id += 1
        self.created.append(attributes)
        return ZoneRecord(
            id=self._next_id,
            zone_id=zone,
            name=attributes.name,
            type=attributes.type,
            content=attributes.content,
            ttl=attributes.ttl,
        )

    async def check_distribution(self, account_id: str, zone: str, record_id: int) -> bool:
        self.checks += 1
        if self.check_error is not None:
            raise self.check_error
        if self.pending_checks is None:
            return False
        return self.checks > self.pending_checks

    async def delete_record(self, account_id: str, zone: str, record_id: int) -> None:
        self.delete_calls.append(record_id)
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        if self.delete_error is not None:
            raise self.delete_error


class ManualTicker:
    """Ticker driven by the test instead of the clock."""

    def __init__(self) -> None:
        self._ticks: asyncio.Queue[None] = asyncio.Queue()

    def tick(self, n: int = 1) -> None:
        for _ in range(n):
            self._ticks.put_nowait(None)

    async def next_tick(self) -> None:
        await self._ticks.get()


async def wait_until(cond: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``cond`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not cond():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory with no DD_* variables set."""
    import os

    for key in list(os.environ):
        if key.startswith("DD_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return tmp_path
