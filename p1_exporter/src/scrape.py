"""
Prometheus scrape endpoint for the HomeWizard P1 exporter.

Provides a FastAPI application with:

- ``GET /metrics``: the current registry rendered in text exposition format.
- ``GET /``: a minimal landing page linking to the scrape path.

Every other path, and any method other than GET, answers 404. No
authentication is required. A scrape never waits on the poller; its latency
is bounded by :meth:`MetricRegistry.render`.

The app is served by uvicorn inside the exporter's own event loop. The
listening socket is bound up front so a bind failure is reported before the
poll loop starts, uvicorn's signal handling is disabled in favour of the
process-wide shutdown event, and in-flight requests get a short grace period
to drain on shutdown.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from collections.abc import Iterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from p1_exporter.src.metrics import CONTENT_TYPE, MetricRegistry, RenderError

logger = logging.getLogger(__name__)

METRICS_PATH = "/metrics"
GRACEFUL_SHUTDOWN_S = 5

_LANDING_PAGE = f"""<!DOCTYPE html>
<html>
<head><title>HomeWizard P1 Exporter</title></head>
<body>
<h1>HomeWizard P1 Exporter</h1>
<p><a href="{METRICS_PATH}">Metrics</a></p>
</body>
</html>
"""


class ScrapeBindError(Exception):
    """Raised when the scrape port cannot be bound."""


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(registry: MetricRegistry) -> FastAPI:
    """Build the scrape application around a shared registry.

    Args:
        registry: The registry rendered on every scrape.

    Returns:
        FastAPI: The configured application.
    """
    app = FastAPI(
        title="HomeWizard P1 Exporter",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.registry = registry

    @app.exception_handler(StarletteHTTPException)
    async def _not_found(request: Request, exc: StarletteHTTPException) -> Response:
        # Unknown paths and wrong methods both answer 404.
        if exc.status_code in (404, 405):
            return PlainTextResponse("404 page not found\n", status_code=404)
        return PlainTextResponse(f"{exc.detail}\n", status_code=exc.status_code)

    @app.get(METRICS_PATH)
    async def metrics(request: Request) -> Response:
        """Render the registry for a Prometheus scrape."""
        try:
            body = request.app.state.registry.render()
        except RenderError:
            logger.error("Failed to render metrics", exc_info=True)
            return PlainTextResponse("failed to render metrics\n", status_code=500)
        return Response(content=body, media_type=CONTENT_TYPE)

    @app.get("/")
    async def root() -> HTMLResponse:
        return HTMLResponse(_LANDING_PAGE)

    return app


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def bind_socket(port: int, host: str = "0.0.0.0") -> socket.socket:
    """Bind and return the listening socket for the scrape server.

    Raises:
        ScrapeBindError: If the address cannot be bound.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise ScrapeBindError(f"cannot bind scrape endpoint to {host}:{port}: {exc}") from exc
    sock.set_inheritable(True)
    return sock


class ScrapeServer:
    """Serves the scrape app on a pre-bound socket until shutdown.

    Args:
        app: The application from :func:`create_app`.
        sock: Listening socket from :func:`bind_socket`.
        grace_s: Seconds in-flight requests may take to drain on shutdown.
    """

    def __init__(
        self,
        app: FastAPI,
        sock: socket.socket,
        *,
        grace_s: int = GRACEFUL_SHUTDOWN_S,
    ) -> None:
        self._sock = sock
        config = uvicorn.Config(
            app,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=grace_s,
        )
        self._server = _EmbeddedServer(config)

    @property
    def started(self) -> bool:
        return self._server.started

    async def serve(self, shutdown_event: asyncio.Event) -> None:
        """Accept scrapes until *shutdown_event* is set, then drain and stop."""
        host, port = self._sock.getsockname()[:2]
        logger.info("Scrape endpoint listening on http://%s:%s%s", host, port, METRICS_PATH)

        async def _stop_on_shutdown() -> None:
            await shutdown_event.wait()
            self._server.should_exit = True

        watcher = asyncio.create_task(_stop_on_shutdown())
        try:
            await self._server.serve(sockets=[self._sock])
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            self._sock.close()
        logger.info("Scrape endpoint stopped")
