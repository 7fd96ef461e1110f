"""
Exporter entrypoint for the HomeWizard P1 Prometheus exporter.

Runs two concurrent asyncio tasks sharing one MetricRegistry:

1. **Poll loop**: every poll interval fetches a snapshot from the P1 meter
   through the HomeWizardClient and applies it to the registry.
2. **Scrape server**: serves ``GET /metrics`` by rendering the registry.

Both are resilient: upstream failures are logged and the registry keeps its
last-good values, so scrapes never see upstream errors. Graceful shutdown on
SIGTERM/SIGINT sets a shared asyncio.Event; the poll loop stops at its next
await point, the scrape server stops accepting and drains in-flight
requests, and the pooled HTTP client is closed.

Structured JSON logging is used for all events.

Exit codes: 0 on clean shutdown, 1 when the scrape port cannot be bound,
2 on invalid configuration.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-19: run_loops waits for both tasks before re-raising

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from p1_exporter.src.config import ConfigError, load_settings
from p1_exporter.src.homewizard import HomeWizardClient
from p1_exporter.src.metrics import MetricRegistry
from p1_exporter.src.poller import Poller
from p1_exporter.src.scrape import ScrapeBindError, ScrapeServer, bind_socket, create_app

if TYPE_CHECKING:
    from p1_exporter.src.config import ExporterSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BIND_FAILED = 1
EXIT_CONFIG_INVALID = 2

TRACE = 5
"""Numeric level for ``--log-level trace``, below DEBUG."""

_LEVELS: dict[str, int] = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


def configure_logging(level: str = "info") -> None:
    """Configure structured JSON logging for the exporter.

    Sets up the root logger with a JSON-formatted handler writing to stderr.

    Args:
        level: One of trace, debug, info, warn, error.
    """
    logging.addLevelName(TRACE, "TRACE")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_LEVELS.get(level.lower(), logging.INFO))
    # httpx logs every request at INFO; keep it for debug and below.
    if root.level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "none"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: ExporterSettings) -> None:
    """Log a config summary at startup, excluding secrets.

    Logs the upstream URL, bind address, intervals and log level; the API
    token is reduced to a fingerprint.
    """
    logger.info(
        "Exporter starting with config: "
        "homewizard_url=%s, metrics_bind_address=%s, "
        "poll_interval=%ss, http_timeout=%ss, log_level=%s, "
        "api_token_masked=%s",
        settings.homewizard_url,
        settings.metrics_bind_address,
        settings.poll_interval,
        settings.http_timeout,
        settings.log_level,
        _masked_token(settings.homewizard_api_token),
    )


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loops(
    *,
    poller: Poller,
    server: ScrapeServer,
    shutdown_event: asyncio.Event,
) -> None:
    """Run the poll loop and the scrape server concurrently until shutdown.

    If either task fails, the shutdown event is set so the other one stops
    too, and the failure is re-raised once both have finished.

    Args:
        poller: The poll loop driver.
        server: The scrape server on its bound socket.
        shutdown_event: Event to signal graceful shutdown.
    """
    logger.info("Starting poll loop and scrape server")

    async def _guard(coro: Awaitable[None]) -> None:
        try:
            await coro
        finally:
            shutdown_event.set()

    results = await asyncio.gather(
        _guard(poller.run(shutdown_event)),
        _guard(server.serve(shutdown_event)),
        return_exceptions=True,
    )
    # Re-raise only once both tasks have finished.
    for result in results:
        if isinstance(result, BaseException):
            raise result
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main(settings: ExporterSettings) -> int:
    """Async entrypoint: build components, run loops, return an exit code.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    log_config_summary(settings)

    try:
        sock = bind_socket(settings.metrics_port)
    except ScrapeBindError as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_BIND_FAILED

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    registry = MetricRegistry()
    server = ScrapeServer(create_app(registry), sock)

    async with HomeWizardClient(
        url=settings.homewizard_url,
        timeout_s=settings.http_timeout,
        api_token=settings.homewizard_api_token,
    ) as client:
        poller = Poller(
            client=client,
            registry=registry,
            period_s=settings.poll_interval,
        )
        await run_loops(poller=poller, server=server, shutdown_event=shutdown_event)

    return EXIT_OK


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main(argv: Sequence[str] | None = None) -> None:
    """Synchronous entrypoint for the exporter."""
    try:
        settings = load_settings(argv)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_INVALID)

    configure_logging(settings.log_level)
    sys.exit(asyncio.run(async_main(settings)))


if __name__ == "__main__":
    main()
