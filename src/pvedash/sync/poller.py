"""Refresh poller — periodic driver for the orchestrator.

Learn: Runs as a long-lived task owned by whoever mounts the dashboard.
Each tick calls ensure_loaded(), which is a no-op while the cache is
fresh, so a 30s poll against a 5 min TTL costs one aggregator call per
TTL window — or one per tick while the backend keeps failing.

Usage:
    poller = RefreshPoller(orchestrator, interval=30.0)
    task = asyncio.create_task(poller.run_loop())
    ...
    poller.stop()
"""

import asyncio

import structlog

from pvedash.sync.orchestrator import RefreshOrchestrator

logger = structlog.get_logger()


class RefreshPoller:
    def __init__(
        self,
        orchestrator: RefreshOrchestrator,
        interval: float = 30.0,
        *,
        run_immediately: bool = True,
    ):
        self.orchestrator = orchestrator
        self.interval = interval
        self.run_immediately = run_immediately
        self.ticks = 0
        self._running = False
        self._wake = asyncio.Event()

    async def run_loop(self) -> None:
        """Main loop — call ensure_loaded() every `interval` seconds until stopped."""
        self._running = True
        self._wake.clear()
        logger.info("poller.started", interval=self.interval)

        if not self.run_immediately:
            await self._sleep()

        while self._running:
            try:
                await self.orchestrator.ensure_loaded()
            except Exception:
                logger.exception("poller.error")
            self.ticks += 1
            await self._sleep()

        logger.info("poller.stopped", ticks=self.ticks)

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()

    def stop(self) -> None:
        """Signal the loop to exit after the current tick."""
        self._running = False
        self._wake.set()
        logger.info("poller.stopping")
