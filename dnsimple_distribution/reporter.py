"""Result reporter — logs every completed cycle with its timing breakdown."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any

from .errors import format_duration
from .monitor.engine import CheckResult
from .monitor.timing import mean, median

logger = logging.getLogger(__name__)


def logfmt(fields: dict[str, Any]) -> str:
    """Render fields as ``key=value`` pairs, quoting values with spaces."""
    parts = []
    for key, value in fields.items():
        if value is None:
            continue
        text = str(value).lower() if isinstance(value, bool) else str(value)
        if not text or any(c in text for c in ' "='):
            text = '"' + text.replace('"', '\\"') + '"'
        parts.append(f"{key}={text}")
    return " ".join(parts)


class Reporter:
    """Consumes CheckResults and keeps a summary for the process lifetime."""

    def __init__(self) -> None:
        self.cycles = 0
        self.succeeded = 0
        self.timed_out = 0
        self.cancelled = 0
        self.failed = 0
        self.cleanup_failures = 0
        self._durations: list[timedelta] = []

    def report(self, result: CheckResult) -> None:
        self.cycles += 1
        line = logfmt(result.to_dict())

        if result.ok:
            self.succeeded += 1
            self._durations.append(result.duration)
            logger.info(line)
        else:
            if result.timed_out:
                self.timed_out += 1
            elif result.cancelled:
                self.cancelled += 1
            else:
                self.failed += 1
            logger.warning(line)

        if result.created and not result.deleted:
            self.cleanup_failures += 1
            logger.warning("Probe record %s was not deleted", result.probe_name)

    async def consume(self, results: AsyncIterator[CheckResult]) -> None:
        async for result in results:
            self.report(result)

    def summary(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "succeeded": self.succeeded,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "cleanup_failures": self.cleanup_failures,
            "median": format_duration(median(self._durations)),
            "mean": format_duration(mean(self._durations)),
        }

    def log_summary(self) -> None:
        logger.info("Run summary: %s", logfmt(self.summary()))
