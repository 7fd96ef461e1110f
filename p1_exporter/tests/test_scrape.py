"""
Unit tests for the scrape endpoint.

Tests verify:
- GET /metrics returns the rendered registry with the exposition content type.
- GET / returns the landing page.
- Unknown paths and non-GET methods answer 404.
- A render failure answers 500 without breaking later scrapes.
- Socket binding failures raise ScrapeBindError.
- The embedded server serves real requests and stops on shutdown.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import socket
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from p1_exporter.src.metrics import MetricRegistry, RenderError
from p1_exporter.src.models import Snapshot
from p1_exporter.src.scrape import (
    ScrapeBindError,
    ScrapeServer,
    bind_socket,
    create_app,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def registry(snapshot: Snapshot) -> MetricRegistry:
    registry = MetricRegistry()
    registry.apply(snapshot)
    return registry


@pytest.fixture()
def client(registry: MetricRegistry) -> TestClient:
    return TestClient(create_app(registry))


# ---------------------------------------------------------------------------
# GET /metrics
# ---------------------------------------------------------------------------


class TestMetricsEndpoint:
    def test_returns_200_with_exposition(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"] == "text/plain; version=0.0.4; charset=utf-8"
        assert "homewizard_p1_active_power_watts 1500\n" in response.text
        assert 'unit="°C"' in response.text

    def test_body_matches_render(self, client: TestClient, registry: MetricRegistry) -> None:
        assert client.get("/metrics").text == registry.render()

    def test_initial_state_served_before_first_poll(self) -> None:
        client = TestClient(create_app(MetricRegistry()))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "homewizard_p1_active_power_watts 0\n" in response.text
        assert "homewizard_p1_meter_info" not in response.text

    def test_reflects_later_apply(
        self, client: TestClient, registry: MetricRegistry, snapshot_factory
    ) -> None:
        registry.apply(snapshot_factory(active_power_w=2000.0))
        assert "homewizard_p1_active_power_watts 2000\n" in client.get("/metrics").text

    def test_render_error_returns_500(self) -> None:
        broken = MagicMock(spec=MetricRegistry)
        broken.render.side_effect = RenderError("cannot encode")
        client = TestClient(create_app(broken))

        response = client.get("/metrics")

        assert response.status_code == 500
        assert response.text == "failed to render metrics\n"

    def test_recovers_after_render_error(self) -> None:
        registry = MagicMock(spec=MetricRegistry)
        registry.render.side_effect = [RenderError("cannot encode"), "ok_metric 1\n"]
        client = TestClient(create_app(registry))

        assert client.get("/metrics").status_code == 500
        second = client.get("/metrics")
        assert second.status_code == 200
        assert second.text == "ok_metric 1\n"


# ---------------------------------------------------------------------------
# Other routes
# ---------------------------------------------------------------------------


class TestOtherRoutes:
    def test_landing_page(self, client: TestClient) -> None:
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert '<a href="/metrics">' in response.text

    @pytest.mark.parametrize("path", ["/unknown", "/metrics/extra", "/docs", "/openapi.json"])
    def test_unknown_path_is_404(self, client: TestClient, path: str) -> None:
        response = client.get(path)

        assert response.status_code == 404
        assert response.text == "404 page not found\n"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
    def test_non_get_method_is_404(self, client: TestClient, method: str) -> None:
        response = client.request(method, "/metrics")
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Socket binding
# ---------------------------------------------------------------------------


class TestBindSocket:
    def test_binds_ephemeral_port(self) -> None:
        sock = bind_socket(0, host="127.0.0.1")
        try:
            assert sock.getsockname()[1] > 0
        finally:
            sock.close()

    def test_port_in_use_raises(self) -> None:
        occupier = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupier.bind(("127.0.0.1", 0))
        occupier.listen()
        port = occupier.getsockname()[1]
        try:
            with pytest.raises(ScrapeBindError, match=str(port)):
                bind_socket(port, host="127.0.0.1")
        finally:
            occupier.close()


# ---------------------------------------------------------------------------
# Embedded server
# ---------------------------------------------------------------------------


class TestScrapeServer:
    @pytest.mark.asyncio
    async def test_serves_until_shutdown(self, registry: MetricRegistry) -> None:
        sock = bind_socket(0, host="127.0.0.1")
        port = sock.getsockname()[1]
        server = ScrapeServer(create_app(registry), sock, grace_s=1)
        shutdown = asyncio.Event()

        task = asyncio.create_task(server.serve(shutdown))
        for _ in range(100):
            if server.started:
                break
            await asyncio.sleep(0.02)
        assert server.started

        async with httpx.AsyncClient() as http:
            response = await http.get(f"http://127.0.0.1:{port}/metrics")
        assert response.status_code == 200
        assert "homewizard_p1_power_import_total_kwh 1234.567\n" in response.text

        shutdown.set()
        await asyncio.wait_for(task, timeout=5)
        assert sock.fileno() == -1
