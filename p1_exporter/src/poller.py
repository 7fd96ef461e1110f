"""
Fixed-cadence poll loop feeding the metric registry.

Every poll period the Poller asks the HomeWizard client for one snapshot and,
on success, applies it to the registry. Designed to be robust:

- Upstream failures are logged at warning level with their kind and the
  cycle is dropped; the registry keeps its last-good state.
- Unexpected errors are logged with a traceback and never stop the loop.
- Ticks are anchored to the previous tick instant, not to the end of the
  fetch, and never compound on lateness: after a slow fetch the next tick is
  ``max(now, previous_tick + period)``.
- The shutdown event is observed at every tick boundary and while a fetch
  is in flight; an interrupted fetch is cancelled and never applied.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from p1_exporter.src.homewizard import UpstreamError

if TYPE_CHECKING:
    from p1_exporter.src.homewizard import HomeWizardClient
    from p1_exporter.src.metrics import MetricRegistry
    from p1_exporter.src.models import Snapshot

logger = logging.getLogger(__name__)


def next_tick(previous_tick: float, period_s: float, now: float) -> float:
    """Return the instant of the tick following *previous_tick*.

    Late ticks are not made up in a burst: if ``previous_tick + period_s`` is
    already in the past, the next tick is *now*.
    """
    return max(now, previous_tick + period_s)


class Poller:
    """Drives the fetch-and-apply loop for one P1 meter.

    Args:
        client: Upstream client, owned by the poller.
        registry: Shared metric registry to apply snapshots to.
        period_s: Seconds between ticks.
    """

    def __init__(
        self,
        *,
        client: HomeWizardClient,
        registry: MetricRegistry,
        period_s: float,
    ) -> None:
        self._client = client
        self._registry = registry
        self._period_s = period_s

    # ------------------------------------------------------------------
    # Single cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> bool:
        """Fetch one snapshot and apply it.

        Catches all exceptions so that the caller's loop is never broken.

        Returns:
            True if a snapshot was applied, False otherwise.
        """
        try:
            snapshot = await self._client.fetch()
        except UpstreamError as exc:
            logger.warning("Poll failed (%s): %s", exc.kind, exc)
            return False
        except Exception:
            logger.error("Poll cycle error", exc_info=True)
            return False

        self._apply(snapshot)
        return True

    def _apply(self, snapshot: Snapshot) -> None:
        self._registry.apply(snapshot)
        logger.info(
            "Poll success: applied snapshot for meter=%s "
            "(active_power_w=%s, external_sensors=%d)",
            snapshot.unique_id,
            snapshot.active_power_w,
            len(snapshot.external),
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Run the poll loop until *shutdown_event* is set.

        Args:
            shutdown_event: Event signalling graceful shutdown.
        """
        loop = asyncio.get_running_loop()
        tick = loop.time() + self._period_s
        logger.info("Poll loop started (interval=%ss)", self._period_s)

        while not shutdown_event.is_set():
            # Use wait with timeout so we can check shutdown between ticks
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=max(0.0, tick - loop.time()),
                )
            if shutdown_event.is_set():
                break

            await self._poll_until_shutdown(shutdown_event)

            tick = next_tick(tick, self._period_s, loop.time())

        logger.info("Poll loop stopped")

    async def _poll_until_shutdown(self, shutdown_event: asyncio.Event) -> None:
        """Run :meth:`poll_once`, cancelling it if shutdown is signalled first."""
        poll_task = asyncio.ensure_future(self.poll_once())
        stop_task = asyncio.ensure_future(shutdown_event.wait())
        try:
            await asyncio.wait(
                {poll_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_task.cancel()
            if not poll_task.done():
                poll_task.cancel()
                logger.info("Shutdown during fetch, abandoning in-flight poll")
                with contextlib.suppress(asyncio.CancelledError):
                    await poll_task
