"""Monitor subsystem — timing recorder, check engine, scheduler."""

from .engine import CheckResult, DistributionCheck, Phase, PhaseTimings, ProbeNamer
from .lifetime import Lifetime, Scope
from .scheduler import IntervalTicker, Monitor, Ticker
from .timing import Timing, mean, median
