"""
Expiry Sweeper — periodically closes conversations past their expires_at.

Lookups already ignore expired conversations, so the sweeper is about
keeping stored statuses honest (stats, listings), not about correctness
of the next turn.

    sweeper = ExpirySweeper(store, interval_s=300)
    await sweeper.start()
    ...
    await sweeper.stop()
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from database.store_base import BaseConversationStore
from models.schemas import utcnow

logger = structlog.get_logger()


class ExpirySweeper:

    def __init__(self, store: BaseConversationStore, interval_s: float = 300):
        self.store = store
        self.interval_s = interval_s
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop(), name="expiry_sweeper")
        logger.info("expiry_sweeper_started", interval_s=self.interval_s)

    async def stop(self) -> None:
        """Gracefully stop the sweeper."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("expiry_sweeper_stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("sweep_cycle_error", error=str(e))

            await asyncio.sleep(self.interval_s)

    async def sweep_cycle(self) -> int:
        """Mark every open conversation past expiry as expired. Returns the count."""
        expired = await self.store.cleanup_expired(utcnow())
        if expired:
            logger.info("sweep_cycle_complete", expired=expired)
        return expired
