"""Entry point for the DNSimple distribution monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from .client import DNSimpleClient
from .config import DEFAULT_CONFIG_FILE, Settings, load_settings
from .errors import APIError, APIUnavailableError, format_duration
from .monitor import Lifetime, Monitor
from .reporter import Reporter

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dnsimple-distribution",
        description="Measure how long DNSimple takes to distribute a new zone record",
    )
    parser.add_argument("--poll", help="interval between distribution checks (default 2s)")
    parser.add_argument("--timeout", help="timeout for a single check cycle (default 10m)")
    parser.add_argument("--interval", help="interval between check cycles (default 1m)")
    parser.add_argument("--cleanup-timeout", help="deadline for deleting a probe record (default 1m)")
    parser.add_argument("--domain", help="zone to create probe records in")
    parser.add_argument("--token", help="DNSimple API access token")
    parser.add_argument(
        "--max-in-flight", type=int,
        help="maximum overlapping check cycles, 0 for unlimited (default 0)",
    )
    parser.add_argument("--sandbox", action="store_true", default=None, help="use the DNSimple sandbox API")
    parser.add_argument("--log-level", help="logging level (default INFO)")
    parser.add_argument(
        "--config", default=None,
        help=(
            'plain config file, one "key value" per line with flag names as keys '
            f"(default {DEFAULT_CONFIG_FILE}, optional)"
        ),
    )
    return parser


def _format_validation_error(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"]) or "config"
        parts.append(f"{loc}: {e['msg']}")
    return "; ".join(parts)


def _install_signal_handlers(lifetime: Lifetime) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lifetime.cancel, f"received signal: {sig.name}")
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt for SIGINT
            logger.debug("Signal handlers not supported for %s", sig.name)


async def run(settings: Settings) -> int:
    """Resolve the account, then monitor until a shutdown signal arrives."""
    lifetime = Lifetime()
    _install_signal_handlers(lifetime)

    async with DNSimpleClient(
        settings.token,
        base_url=settings.api_url,
        timeout=settings.http_timeout.total_seconds(),
    ) as client:
        try:
            account_id = await client.account_id()
        except (APIError, APIUnavailableError) as e:
            console.print(f"[bold red]error:[/bold red] whoami failed: {e}")
            return 1

        console.print(Panel(
            f"Account {account_id} · zone {settings.domain}\n"
            f"interval {format_duration(settings.interval)} · poll {format_duration(settings.poll)} · "
            f"timeout {format_duration(settings.timeout)}",
            title="DNSimple distribution monitor",
            style="bold blue",
        ))

        monitor = Monitor(
            client,
            account_id,
            settings.domain,
            interval=settings.interval,
            poll=settings.poll,
            timeout=settings.timeout,
            lifetime=lifetime,
            cleanup_timeout=settings.cleanup_timeout,
            record_ttl=settings.record_ttl,
            max_in_flight=settings.max_in_flight,
        )
        reporter = Reporter()
        consumer = asyncio.create_task(reporter.consume(monitor.results()), name="reporter")

        await monitor.start()
        await lifetime.wait()
        await monitor.stop()

        # In-flight cycles were cancelled by the lifetime; let their cleanup finish
        await monitor.drain(timeout=settings.cleanup_timeout.total_seconds())
        monitor.close()
        await consumer
        reporter.log_summary()

    return 0


def main() -> None:
    args = build_parser().parse_args()

    try:
        settings = load_settings(
            args.config,
            token=args.token,
            domain=args.domain,
            poll=args.poll,
            timeout=args.timeout,
            interval=args.interval,
            cleanup_timeout=args.cleanup_timeout,
            max_in_flight=args.max_in_flight,
            sandbox=args.sandbox,
            log_level=args.log_level,
        )
    except ValidationError as e:
        print(f"error: {_format_validation_error(e)}", file=sys.stderr)
        sys.exit(1)

    configure_logging(settings.log_level)

    try:
        code = asyncio.run(run(settings))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
