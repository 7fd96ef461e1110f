"""
Async HTTP client for the HomeWizard P1 meter local API.

Performs one ``GET http://<host>/api/v1/data`` per call and decodes the JSON
body into a :class:`~p1_exporter.src.models.Snapshot`. A single pooled
``httpx.AsyncClient`` is kept for the whole process so the keep-alive
connection to the meter is reused between polls.

Every failure surfaces as a subclass of :class:`UpstreamError` with a
``kind`` string, so the poller can log it uniformly:

- ``transport``: connection refused, DNS or TLS failure, or timeout.
- ``http-status``: the meter answered with a non-2xx status.
- ``decode``: the body is not JSON or does not match the Snapshot schema.

The client never retries; the poller simply waits for its next tick.

Operations:
- fetch(): Request and decode one Snapshot.
- aclose(): Close the pooled HTTP client.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-19: Client takes the upstream URL built by ExporterSettings

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging

import httpx
from pydantic import ValidationError

from p1_exporter.src.models import Snapshot

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class UpstreamError(Exception):
    """Base class for failures while fetching a snapshot from the meter."""

    kind: str = "upstream"


class UpstreamTransportError(UpstreamError):
    """The request did not complete (connect, DNS, TLS, timeout)."""

    kind = "transport"


class UpstreamStatusError(UpstreamError):
    """The meter responded with a non-2xx HTTP status.

    Args:
        status_code: The HTTP status code received.
    """

    kind = "http-status"

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP status {status_code}")
        self.status_code = status_code


class UpstreamDecodeError(UpstreamError):
    """The response body could not be decoded into a Snapshot."""

    kind = "decode"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HomeWizardClient:
    """Fetches and decodes snapshots from one P1 meter.

    Args:
        url: Full upstream data URL, see ``ExporterSettings.homewizard_url``.
        timeout_s: End-to-end limit for one request, covering connect,
            request, and body read.
        api_token: Optional bearer token attached as ``Authorization``.
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``.

    Usage::

        async with HomeWizardClient(url=settings.homewizard_url, timeout_s=5) as client:
            snapshot = await client.fetch()
    """

    def __init__(
        self,
        *,
        url: str,
        timeout_s: float,
        api_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout_s = timeout_s
        headers = {"Accept": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers=headers,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        """The upstream data URL requested by :meth:`fetch`."""
        return self._url

    async def fetch(self) -> Snapshot:
        """Request one reading from the meter and decode it.

        Returns:
            The decoded :class:`Snapshot`.

        Raises:
            UpstreamTransportError: On connection failure or timeout.
            UpstreamStatusError: On a non-2xx response.
            UpstreamDecodeError: On invalid JSON or a schema mismatch.
        """
        try:
            async with asyncio.timeout(self._timeout_s):
                response = await self._client.get(self._url)
        except TimeoutError as exc:
            raise UpstreamTransportError(
                f"request to {self._url} timed out after {self._timeout_s}s"
            ) from exc
        except httpx.TransportError as exc:
            raise UpstreamTransportError(
                f"request to {self._url} failed: {exc!r}"
            ) from exc

        if not response.is_success:
            raise UpstreamStatusError(response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamDecodeError(f"response is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamDecodeError(
                f"expected a JSON object, got {type(payload).__name__}"
            )

        try:
            snapshot = Snapshot.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamDecodeError(
                f"response does not match the data schema: {exc}"
            ) from exc

        logger.debug(
            "Fetched snapshot from %s (meter=%s, %d external sensors)",
            self._url,
            snapshot.unique_id,
            len(snapshot.external),
        )
        return snapshot

    async def aclose(self) -> None:
        """Close the pooled HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HomeWizardClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
