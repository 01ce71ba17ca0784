"""Periodic overdue sweep.

``OverdueSweeper`` is owned by the API lifespan: ``start()`` after the
database is ready, ``stop()`` on shutdown. Each cycle runs the sweep in a
worker thread inside its own error boundary, so a failed cycle is logged
and simply retried on the next tick; request handling never sees it.
"""

import asyncio
import logging
from typing import Optional

from library_api.config import settings
from library_api.library import Library

logger = logging.getLogger(__name__)


class OverdueSweeper:

    def __init__(self, library: Library, interval: Optional[float] = None) -> None:
        self.library = library
        self.interval = interval if interval is not None else settings.overdue_sweep_interval
        self.last_count: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        """One guarded sweep. Returns the number of loans marked overdue, 0 on failure."""
        try:
            count = await asyncio.to_thread(self.library.mark_overdue_loans)
        except Exception:
            logger.exception("Error checking overdue loans; will retry next cycle")
            return 0
        self.last_count = count
        return count

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="overdue-sweeper")
        logger.info(f"Overdue sweeper started (every {self.interval:g}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Overdue sweeper stopped")
