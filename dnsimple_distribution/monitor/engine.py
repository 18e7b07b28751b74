"""Distribution check engine — one probe-record cycle end to end.

A cycle creates a uniquely named TXT record, polls the provider until it
reports the record as distributed (or the cycle deadline passes), and always
deletes the record afterwards. Every outcome is captured in an immutable
CheckResult; per-cycle failures are never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Protocol

from ..client.models import ZoneRecord, ZoneRecordAttributes
from ..errors import (
    CheckCancelled,
    CheckTimeout,
    DistributionError,
    as_distribution_error,
    format_duration,
)
from .lifetime import Lifetime, Scope
from .timing import Timing, mean, median

logger = logging.getLogger(__name__)

PROBE_PREFIX = "_distribution_check_"
DEFAULT_CLEANUP_TIMEOUT = timedelta(minutes=1)
DEFAULT_RECORD_TTL = 60


class RecordAPI(Protocol):
    """The three provider calls a cycle needs."""

    async def create_record(
        self, account_id: str, zone: str, attributes: ZoneRecordAttributes,
    ) -> ZoneRecord: ...

    async def check_distribution(self, account_id: str, zone: str, record_id: int) -> bool: ...

    async def delete_record(self, account_id: str, zone: str, record_id: int) -> None: ...


# ── Models ───────────────────────────────────────────────────────────────────


class Phase(str, Enum):
    PENDING = "pending"
    CREATING = "creating"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CLEANING = "cleaning"
    DONE = "done"


_OUTCOMES = {Phase.SUCCEEDED, Phase.TIMED_OUT, Phase.CANCELLED, Phase.FAILED}

_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.PENDING: {Phase.CREATING},
    Phase.CREATING: {Phase.POLLING, Phase.FAILED, Phase.TIMED_OUT, Phase.CANCELLED},
    Phase.POLLING: set(_OUTCOMES),
    Phase.SUCCEEDED: {Phase.CLEANING, Phase.DONE},
    Phase.TIMED_OUT: {Phase.CLEANING, Phase.DONE},
    Phase.CANCELLED: {Phase.CLEANING, Phase.DONE},
    Phase.FAILED: {Phase.CLEANING, Phase.DONE},
    Phase.CLEANING: {Phase.DONE},
    Phase.DONE: set(),
}


@dataclass(frozen=True)
class PhaseTimings:
    """Per-phase timing breakdown of a cycle."""

    create: Timing | None = None
    check: tuple[Timing, ...] = ()
    delete: Timing | None = None

    @property
    def check_median(self) -> timedelta:
        return median(self.check)

    @property
    def check_mean(self) -> timedelta:
        return mean(self.check)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single distribution check cycle."""

    started_at: datetime
    duration: timedelta
    probe_name: str
    check_count: int = 0
    created: bool = False
    deleted: bool = False
    record_id: int | None = None
    error: DistributionError | None = None
    timings: PhaseTimings = field(default_factory=PhaseTimings)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, CheckTimeout)

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CheckCancelled)

    def to_dict(self) -> dict[str, Any]:
        t = self.timings
        return {
            "at": self.started_at.replace(microsecond=0).isoformat(),
            "name": self.probe_name,
            "duration": format_duration(self.duration),
            "checks": self.check_count,
            "created": self.created,
            "deleted": self.deleted,
            "record_id": self.record_id,
            "create": format_duration(t.create.duration) if t.create and t.create.duration is not None else None,
            "check_median": format_duration(t.check_median),
            "check_mean": format_duration(t.check_mean),
            "delete": format_duration(t.delete.duration) if t.delete and t.delete.duration is not None else None,
            "error": str(self.error) if self.error else None,
        }


# ── Probe naming ─────────────────────────────────────────────────────────────


class ProbeNamer:
    """Names probe records after their start second.

    Cycles that start within the same second get a numeric suffix so that
    overlapping cycles never share a record name. The stamp is always UTC,
    not host-local time, so names do not depend on the daemon's timezone and
    match the UTC timestamp in the record content.
    """

    def __init__(self, prefix: str = PROBE_PREFIX) -> None:
        self.prefix = prefix
        self._second: str | None = None
        self._seq = 0

    def name_for(self, started_at: datetime) -> str:
        stamp = started_at.astimezone(timezone.utc).strftime("%Y%m%d%H%M%S")
        if stamp != self._second:
            self._second = stamp
            self._seq = 0
            return f"{self.prefix}{stamp}"
        self._seq += 1
        return f"{self.prefix}{stamp}_{self._seq}"


def rfc3339(instant: datetime) -> str:
    return instant.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def probe_attributes(name: str, started_at: datetime, ttl: int | None = DEFAULT_RECORD_TTL) -> ZoneRecordAttributes:
    """TXT payload for a probe record; the content carries the start instant."""
    return ZoneRecordAttributes(
        name=name,
        type="TXT",
        content=f"distribution-check: {rfc3339(started_at)}",
        ttl=ttl,
    )


# ── Cycle state ──────────────────────────────────────────────────────────────


class CycleRecorder:
    """Mutable, phase-tagged builder for one cycle's CheckResult."""

    def __init__(self, probe_name: str, overall: Timing) -> None:
        self.probe_name = probe_name
        self.overall = overall
        self.phase = Phase.PENDING
        self.record_id: int | None = None
        self.deleted = False
        self.error: DistributionError | None = None
        self.create_timing: Timing | None = None
        self.check_timings: list[Timing] = []
        self.delete_timing: Timing | None = None

    @property
    def created(self) -> bool:
        return self.record_id is not None

    @property
    def check_count(self) -> int:
        return len(self.check_timings)

    def transition(self, phase: Phase) -> None:
        if phase not in _TRANSITIONS[self.phase]:
            raise RuntimeError(f"invalid cycle transition {self.phase.value} -> {phase.value}")
        logger.debug("%s: %s -> %s", self.probe_name, self.phase.value, phase.value)
        self.phase = phase

    def record_created(self, record_id: int, timing: Timing) -> None:
        self.create_timing = timing
        self.record_id = record_id
        self.transition(Phase.POLLING)

    def add_check(self, timing: Timing) -> None:
        self.check_timings.append(timing)

    def conclude(self, error: DistributionError | None) -> None:
        """Enter the outcome phase and freeze the cycle duration."""
        if error is None:
            phase = Phase.SUCCEEDED
        elif isinstance(error, CheckTimeout):
            phase = Phase.TIMED_OUT
        elif isinstance(error, CheckCancelled):
            phase = Phase.CANCELLED
        else:
            phase = Phase.FAILED
        self.transition(phase)
        self.error = error
        self.overall.stop()

    def finish(self) -> CheckResult:
        self.transition(Phase.DONE)
        return CheckResult(
            started_at=self.overall.started_at,
            duration=self.overall.duration or timedelta(0),
            probe_name=self.probe_name,
            check_count=self.check_count,
            created=self.created,
            deleted=self.deleted,
            record_id=self.record_id,
            error=self.error,
            timings=PhaseTimings(
                create=self.create_timing,
                check=tuple(self.check_timings),
                delete=self.delete_timing,
            ),
        )


# ── Engine ───────────────────────────────────────────────────────────────────


class DistributionCheck:
    """Runs one probe cycle against a zone.

    The check phase (create + polling) runs in a scope bounded by ``timeout``
    and the shared lifetime. Cleanup runs in its own scope bounded only by
    ``cleanup_timeout``, so an expired or cancelled cycle still deletes its
    probe record.
    """

    def __init__(
        self,
        api: RecordAPI,
        account_id: str,
        zone: str,
        poll: timedelta,
        timeout: timedelta,
        lifetime: Lifetime | None = None,
        cleanup_timeout: timedelta = DEFAULT_CLEANUP_TIMEOUT,
        record_ttl: int | None = DEFAULT_RECORD_TTL,
        namer: ProbeNamer | None = None,
    ) -> None:
        self.api = api
        self.account_id = account_id
        self.zone = zone
        self.poll = poll
        self.timeout = timeout
        self.lifetime = lifetime
        self.cleanup_timeout = cleanup_timeout
        self.record_ttl = record_ttl
        self.namer = namer or ProbeNamer()

    async def run(self) -> CheckResult:
        overall = Timing.start()
        rec = CycleRecorder(self.namer.name_for(overall.started_at), overall)
        scope = Scope(self.timeout, self.lifetime)

        rec.transition(Phase.CREATING)
        attrs = probe_attributes(rec.probe_name, overall.started_at, self.record_ttl)
        create = Timing.start()
        try:
            record = await scope.run(self.api.create_record(self.account_id, self.zone, attrs))
        except Exception as e:
            # No record exists, so there is nothing to clean up
            rec.create_timing = create.stop()
            rec.conclude(self._classify(rec, "create", e))
            return rec.finish()

        record_id = record.id
        rec.record_created(record_id, create.stop())
        logger.debug("%s: created record %s in %s", rec.probe_name, record_id, self.zone)

        try:
            await self._poll(scope, rec, record_id)
            rec.conclude(None)
        except asyncio.CancelledError:
            rec.conclude(CheckCancelled("check task cancelled"))
            raise
        except Exception as e:
            rec.conclude(self._classify(rec, "poll", e))
        finally:
            await self._cleanup(rec, record_id)

        return rec.finish()

    def _classify(self, rec: CycleRecorder, phase: str, error: Exception) -> DistributionError:
        """Map any failure onto the error taxonomy, logging unexpected ones."""
        if isinstance(error, DistributionError):
            logger.debug("%s: %s failed: %s", rec.probe_name, phase, error)
        else:
            logger.error("%s: unexpected %s error", rec.probe_name, phase, exc_info=error)
        return as_distribution_error(error)

    async def _poll(self, scope: Scope, rec: CycleRecorder, record_id: int) -> None:
        """Poll until the record is distributed; raises on any failure."""
        while True:
            await scope.sleep(self.poll.total_seconds())

            timing = Timing.start()
            try:
                distributed = await scope.run(
                    self.api.check_distribution(self.account_id, self.zone, record_id),
                )
            finally:
                rec.add_check(timing.stop())

            logger.debug(
                "%s: check %d distributed=%s", rec.probe_name, rec.check_count, distributed,
            )
            if distributed:
                return

    async def _cleanup(self, rec: CycleRecorder, record_id: int) -> None:
        """Delete the probe record; failures only flip ``deleted``."""
        rec.transition(Phase.CLEANING)
        scope = Scope(self.cleanup_timeout)
        timing = Timing.start()
        try:
            await scope.run(self.api.delete_record(self.account_id, self.zone, record_id))
            rec.deleted = True
        except Exception as e:
            rec.deleted = False
            logger.warning(
                "Failed to delete probe record %s (%s) from %s: %s",
                rec.probe_name, record_id, self.zone, as_distribution_error(e),
                exc_info=not isinstance(e, DistributionError),
            )
        finally:
            rec.delete_timing = timing.stop()
