"""Error taxonomy for distribution checks.

API errors come from the provider, timeouts and cancellations come from the
cycle's own cancellation scopes. All of them end up in CheckResult.error.
"""

from __future__ import annotations

from datetime import timedelta


class DistributionError(Exception):
    """Base class for every per-cycle failure."""


class APIError(DistributionError):
    """Raised when the DNSimple API returns an error response."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"DNSimple API error {status_code}: {detail}")


class APIUnavailableError(DistributionError):
    """Raised when the DNSimple API is unreachable or the request timed out."""


class CheckTimeout(DistributionError):
    """The per-cycle deadline fired before distribution was confirmed."""

    def __init__(self, timeout: timedelta) -> None:
        self.duration = timeout
        super().__init__(f"Timeout after {format_duration(timeout)}")

    @property
    def timeout(self) -> bool:
        return True

    @property
    def temporary(self) -> bool:
        return True


class CheckCancelled(DistributionError):
    """The shared lifetime was cancelled while the cycle was running."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        super().__init__(f"cancelled: {cause}")


class CheckFailed(DistributionError):
    """An exception outside this taxonomy ended the cycle."""

    def __init__(self, original: BaseException) -> None:
        self.original = original
        self.__cause__ = original
        super().__init__(f"unexpected error: {type(original).__name__}: {original}")


def as_distribution_error(error: Exception) -> DistributionError:
    if isinstance(error, DistributionError):
        return error
    return CheckFailed(error)


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way duration flags are written (1m30s, 250ms)."""
    total_ms = int(round(value.total_seconds() * 1000))
    if total_ms == 0:
        return "0s"
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    if total_ms < 1000:
        return f"{sign}{total_ms}ms"

    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds = rest / 1000
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if hours or minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds:g}s")
    return sign + "".join(parts)
