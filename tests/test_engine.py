"""Tests for the distribution check engine (one probe cycle)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import FakeAPI

from dnsimple_distribution.errors import (
    APIError,
    APIUnavailableError,
    CheckCancelled,
    CheckFailed,
    CheckTimeout,
    as_distribution_error,
)
from dnsimple_distribution.monitor.engine import (
    CheckResult,
    CycleRecorder,
    DistributionCheck,
    Phase,
    ProbeNamer,
    probe_attributes,
)
from dnsimple_distribution.monitor.lifetime import Lifetime
from dnsimple_distribution.monitor.timing import Timing

POLL = timedelta(milliseconds=10)


def _check(api: FakeAPI, timeout: float = 2.0, **kwargs) -> DistributionCheck:
    return DistributionCheck(
        api, "1010", "example.com", poll=kwargs.pop("poll", POLL),
        timeout=timedelta(seconds=timeout), **kwargs,
    )


def _assert_counts_consistent(result: CheckResult) -> None:
    assert result.check_count == len(result.timings.check)
    assert all(t.duration is not None for t in result.timings.check)


# ── Probe naming / payload ───────────────────────────────────────────────────


class TestProbeNaming:
    def test_name_from_start_second(self) -> None:
        namer = ProbeNamer()
        at = datetime(2024, 3, 5, 6, 7, 8, 999_000, tzinfo=timezone.utc)
        assert namer.name_for(at) == "_distribution_check_20240305060708"

    def test_name_is_stamped_in_utc(self) -> None:
        namer = ProbeNamer()
        at = datetime(2024, 3, 5, 8, 7, 8, tzinfo=timezone(timedelta(hours=2)))
        assert namer.name_for(at) == "_distribution_check_20240305060708"

    def test_distinct_seconds_are_unique(self) -> None:
        namer = ProbeNamer()
        a = namer.name_for(datetime(2024, 3, 5, 6, 7, 8, tzinfo=timezone.utc))
        b = namer.name_for(datetime(2024, 3, 5, 6, 7, 9, tzinfo=timezone.utc))
        assert a != b
        assert not b.endswith("_1")

    def test_same_second_gets_disambiguator(self) -> None:
        namer = ProbeNamer()
        at = datetime(2024, 3, 5, 6, 7, 8, tzinfo=timezone.utc)
        names = [namer.name_for(at) for _ in range(3)]
        assert names == [
            "_distribution_check_20240305060708",
            "_distribution_check_20240305060708_1",
            "_distribution_check_20240305060708_2",
        ]

    def test_attributes(self) -> None:
        at = datetime(2024, 3, 5, 6, 7, 8, 123_456, tzinfo=timezone.utc)
        attrs = probe_attributes("_distribution_check_20240305060708", at, ttl=60)
        assert attrs.type == "TXT"
        assert attrs.name == "_distribution_check_20240305060708"
        assert attrs.content == "distribution-check: 2024-03-05T06:07:08Z"
        assert attrs.ttl == 60


# ── Cycle recorder ───────────────────────────────────────────────────────────


class TestCycleRecorder:
    def test_invalid_transition_rejected(self) -> None:
        rec = CycleRecorder("probe", Timing.start())
        with pytest.raises(RuntimeError):
            rec.transition(Phase.POLLING)

    def test_cannot_finish_twice(self) -> None:
        rec = CycleRecorder("probe", Timing.start())
        rec.transition(Phase.CREATING)
        rec.conclude(APIError(422, "bad"))
        rec.finish()
        with pytest.raises(RuntimeError):
            rec.finish()

    def test_conclude_classifies_outcome(self) -> None:
        cases = [
            (None, Phase.SUCCEEDED),
            (CheckTimeout(timedelta(seconds=1)), Phase.TIMED_OUT),
            (CheckCancelled("sig"), Phase.CANCELLED),
            (APIUnavailableError("down"), Phase.FAILED),
        ]
        for error, phase in cases:
            rec = CycleRecorder("probe", Timing.start())
            rec.transition(Phase.CREATING)
            rec.record_created(1, Timing.start().stop())
            rec.conclude(error)
            assert rec.phase == phase
            assert rec.overall.stopped

    def test_result_is_immutable(self) -> None:
        rec = CycleRecorder("probe", Timing.start())
        rec.transition(Phase.CREATING)
        rec.conclude(APIError(500, "boom"))
        result = rec.finish()
        with pytest.raises(AttributeError):
            result.deleted = True  # type: ignore[misc]


# ── Full cycles ──────────────────────────────────────────────────────────────


class TestDistributionCheck:
    @pytest.mark.asyncio
    async def test_success_after_pending_polls(self) -> None:
        api = FakeAPI(pending_checks=3)
        result = await _check(api).run()

        assert result.ok
        assert result.error is None
        assert result.created
        assert result.deleted
        assert result.check_count == 4
        _assert_counts_consistent(result)
        assert result.timings.create is not None
        assert result.timings.delete is not None
        assert api.delete_calls == [result.record_id]
        assert api.created[0].name == result.probe_name

    @pytest.mark.asyncio
    async def test_distributed_on_first_check(self) -> None:
        api = FakeAPI(pending_checks=0)
        result = await _check(api).run()
        assert result.ok
        assert result.check_count == 1

    @pytest.mark.asyncio
    async def test_duration_excludes_cleanup(self) -> None:
        api = FakeAPI(pending_checks=0, delete_delay=0.3)
        result = await _check(api).run()
        assert result.deleted
        assert result.timings.delete.duration >= timedelta(seconds=0.25)
        assert result.duration < timedelta(seconds=0.25)

    @pytest.mark.asyncio
    async def test_create_failure(self) -> None:
        api = FakeAPI(create_error=APIError(422, "Validation failed"))
        result = await _check(api).run()

        assert not result.created
        assert not result.deleted
        assert result.check_count == 0
        assert isinstance(result.error, APIError)
        assert result.record_id is None
        assert result.timings.create is not None
        assert result.timings.delete is None
        assert api.delete_calls == []
        assert api.checks == 0

    @pytest.mark.asyncio
    async def test_timeout_still_cleans_up(self) -> None:
        api = FakeAPI(pending_checks=None)
        result = await _check(api, timeout=0.1).run()

        assert result.created
        assert result.timed_out
        assert isinstance(result.error, CheckTimeout)
        assert result.error.timeout and result.error.temporary
        assert str(result.error) == "Timeout after 100ms"
        assert result.check_count >= 1
        _assert_counts_consistent(result)
        assert result.deleted
        assert len(api.delete_calls) == 1

    @pytest.mark.asyncio
    async def test_create_hanging_past_deadline(self) -> None:
        api = FakeAPI()
        api.create_gate = asyncio.Event()
        result = await _check(api, timeout=0.05).run()

        assert result.timed_out
        assert not result.created
        assert not result.deleted
        assert api.delete_calls == []

    @pytest.mark.asyncio
    async def test_poll_error_aborts_and_cleans_up(self) -> None:
        api = FakeAPI(check_error=APIUnavailableError("DNSimple is unreachable"))
        result = await _check(api).run()

        assert isinstance(result.error, APIUnavailableError)
        assert result.check_count == 1
        _assert_counts_consistent(result)
        assert result.deleted
        assert len(api.delete_calls) == 1

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up_independently(self) -> None:
        api = FakeAPI(pending_checks=None)
        lifetime = Lifetime()
        task = asyncio.create_task(_check(api, timeout=5, lifetime=lifetime).run())
        await asyncio.sleep(0.05)
        lifetime.cancel("received signal: SIGTERM")
        result = await asyncio.wait_for(task, 2)

        assert result.cancelled
        assert isinstance(result.error, CheckCancelled)
        assert result.error.cause == "received signal: SIGTERM"
        assert result.created
        assert result.deleted
        assert len(api.delete_calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self) -> None:
        api = FakeAPI()
        lifetime = Lifetime()
        lifetime.cancel("shutdown")
        result = await _check(api, lifetime=lifetime).run()
        assert result.cancelled
        assert api.create_attempts == 0
        assert not result.created

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_secondary(self) -> None:
        api = FakeAPI(pending_checks=1, delete_error=APIError(500, "oops"))
        result = await _check(api).run()

        assert result.ok
        assert result.created
        assert not result.deleted
        assert len(api.delete_calls) == 1

    @pytest.mark.asyncio
    async def test_cleanup_has_own_deadline(self) -> None:
        api = FakeAPI(pending_checks=0, delete_delay=1.0)
        result = await _check(api, cleanup_timeout=timedelta(milliseconds=50)).run()

        assert result.ok
        assert not result.deleted
        assert result.timings.delete is not None

    @pytest.mark.asyncio
    async def test_example_scenario(self) -> None:
        api = FakeAPI(pending_checks=3)
        check = DistributionCheck(
            api, "1010", "example.com",
            poll=timedelta(milliseconds=100), timeout=timedelta(seconds=2),
        )
        result = await check.run()

        assert result.check_count == 4
        assert result.created and result.deleted
        assert result.error is None
        assert result.duration >= timedelta(milliseconds=390)

    @pytest.mark.asyncio
    async def test_to_dict(self) -> None:
        api = FakeAPI(pending_checks=0)
        result = await _check(api).run()
        d = result.to_dict()
        assert d["name"] == result.probe_name
        assert d["checks"] == 1
        assert d["deleted"] is True
        assert d["error"] is None
        assert d["create"] is not None


# ── Errors outside the taxonomy ──────────────────────────────────────────────


class TestUnexpectedErrors:
    def test_wraps_foreign_exception(self) -> None:
        original = KeyError("id")
        error = as_distribution_error(original)
        assert isinstance(error, CheckFailed)
        assert error.original is original
        assert error.__cause__ is original
        assert "KeyError" in str(error)

    def test_passes_taxonomy_through(self) -> None:
        error = APIError(500, "boom")
        assert as_distribution_error(error) is error

    @pytest.mark.asyncio
    async def test_create_raises_foreign_error(self) -> None:
        api = FakeAPI(create_error=RuntimeError("bug"))
        result = await _check(api).run()

        assert isinstance(result.error, CheckFailed)
        assert isinstance(result.error.original, RuntimeError)
        assert not result.created
        assert not result.deleted
        assert result.timings.create is not None
        assert api.delete_calls == []

    @pytest.mark.asyncio
    async def test_poll_raises_foreign_error_still_deletes(self) -> None:
        api = FakeAPI(check_error=ValueError("unexpected payload"))
        result = await _check(api).run()

        assert isinstance(result.error, CheckFailed)
        assert "ValueError" in str(result.error)
        assert result.created
        assert result.deleted
        assert result.check_count == 1
        _assert_counts_consistent(result)
        assert api.delete_calls == [result.record_id]

    @pytest.mark.asyncio
    async def test_delete_raises_foreign_error(self) -> None:
        api = FakeAPI(pending_checks=0, delete_error=RuntimeError("bug"))
        result = await _check(api).run()

        assert result.ok
        assert result.created
        assert not result.deleted
        assert result.timings.delete is not None
        assert len(api.delete_calls) == 1
