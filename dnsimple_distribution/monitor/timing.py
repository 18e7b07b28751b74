"""Timing recorder — wall-clock start instant plus a monotonic duration.

A Timing is started, then stopped exactly once. Aggregation helpers work on
any mix of Timing objects and plain timedeltas.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

_ZERO = timedelta(0)


@dataclass
class Timing:
    """A single timed span."""

    started_at: datetime
    duration: timedelta | None = None
    _t0: float = field(default_factory=time.perf_counter, repr=False, compare=False)

    @classmethod
    def start(cls) -> Timing:
        return cls(started_at=datetime.now(timezone.utc))

    def stop(self) -> Timing:
        """Freeze the elapsed time. Only the first call computes a value."""
        if self.duration is None:
            self.duration = timedelta(seconds=time.perf_counter() - self._t0)
        return self

    @property
    def stopped(self) -> bool:
        return self.duration is not None


def _durations(values: Iterable[Timing | timedelta]) -> list[timedelta]:
    out: list[timedelta] = []
    for v in values:
        if isinstance(v, Timing):
            # An unstopped span has no duration yet; count it as zero
            out.append(v.duration if v.duration is not None else _ZERO)
        else:
            out.append(v)
    return out


def median(values: Iterable[Timing | timedelta]) -> timedelta:
    """Median duration; zero for an empty sequence."""
    durations = sorted(_durations(values))
    if not durations:
        return _ZERO

    mid = len(durations) // 2
    if len(durations) % 2 == 0:
        return (durations[mid - 1] + durations[mid]) / 2
    return durations[mid]


def mean(values: Iterable[Timing | timedelta]) -> timedelta:
    """Arithmetic mean duration; zero for an empty sequence."""
    durations = _durations(values)
    if not durations:
        return _ZERO
    return sum(durations, _ZERO) / len(durations)
