"""
Stale-entry reaper - evicts users who waited too long. NO SQL.
"""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from config import settings
from services.events import EventBus, WaitTimedOut
from services.pool import WaitingEntry, WaitingPool

logger = logging.getLogger(__name__)


class StaleEntryReaper:
    def __init__(
        self,
        pool: WaitingPool,
        events: Optional[EventBus] = None,
        max_wait_seconds: int = settings.MAX_WAIT_SECONDS,
        interval_seconds: float = settings.REAPER_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.pool = pool
        self.events = events or EventBus()
        self.max_wait_seconds = max_wait_seconds
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    async def reap(self) -> List[WaitingEntry]:
        """Remove every entry older than max wait and announce each timeout"""
        now = self.clock()
        reaped = []

        for entry in self.pool.snapshot():
            if (now - entry.joined_at).total_seconds() <= self.max_wait_seconds:
                continue

            # No-op if a pass already claimed it, or the user re-queued since
            if self.pool.remove(entry.user_id, expected=entry) is None:
                continue

            logger.info("User %s timed out after %ss", entry.user_id, entry.waited_seconds(now))
            reaped.append(entry)
            await self.events.emit(WaitTimedOut(entry.user_id))

        return reaped

    async def _loop(self):
        while True:
            try:
                await self.reap()
            except Exception:
                logger.exception("Reaper run crashed")
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Reaper started, max wait %ss", self.max_wait_seconds)

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
