"""
Matchmaking service - the API handlers talk to. NO SQL, wires the engine.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Set

import db.matches
import db.moderation
import db.users
from config import settings
from db.matches import MatchRecord
from services.errors import AlreadyWaiting, CooldownActive, LookupFailed, MatchNotFound
from services.events import EventBus
from services.lifecycle import MatchLifecycleManager
from services.matcher import PairingScheduler
from services.pool import WaitingEntry, WaitingPool
from services.reaper import StaleEntryReaper
from services.safety import SafetyFilter
from services.scoring import CompatibilityScorer, ScoreWeights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchState:
    status: str  # matched | waiting | cooldown | idle
    match_id: Optional[int] = None
    partner_id: Optional[int] = None
    remaining_seconds: Optional[int] = None

    MATCHED = "matched"
    WAITING = "waiting"
    COOLDOWN = "cooldown"
    IDLE = "idle"

    @classmethod
    def matched(cls, record: MatchRecord, user_id: int) -> "MatchState":
        return cls(cls.MATCHED, match_id=record.match_id, partner_id=record.partner_of(user_id))

    @classmethod
    def waiting(cls) -> "MatchState":
        return cls(cls.WAITING)

    @classmethod
    def cooldown(cls, remaining_seconds: int) -> "MatchState":
        return cls(cls.COOLDOWN, remaining_seconds=remaining_seconds)

    @classmethod
    def idle(cls) -> "MatchState":
        return cls(cls.IDLE)


class MatchmakingService:
    def __init__(
        self,
        users=db.users,
        moderation=db.moderation,
        matches=db.matches,
        events: Optional[EventBus] = None,
        config=settings,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.users = users
        self.moderation = moderation
        self.matches = matches
        self.events = events or EventBus()
        self.config = config
        self.clock = clock

        self.pool = WaitingPool()
        self.safety = SafetyFilter(
            users=users,
            moderation=moderation,
            matches=matches,
            fatigue_window_days=config.FATIGUE_WINDOW_DAYS,
            clock=clock,
        )
        self.scorer = CompatibilityScorer(matches=matches, weights=ScoreWeights.from_settings(config))
        self.lifecycle = MatchLifecycleManager(
            self.pool,
            matches=matches,
            users=users,
            events=self.events,
            cooldown_seconds=config.MATCH_COOLDOWN_SECONDS,
            clock=clock,
        )
        self.scheduler = PairingScheduler(
            self.pool,
            self.safety,
            self.scorer,
            self.lifecycle,
            interval_seconds=config.PAIRING_INTERVAL_SECONDS,
            pass_timeout_seconds=config.PASS_TIMEOUT_SECONDS,
            clock=clock,
        )
        self.reaper = StaleEntryReaper(
            self.pool,
            events=self.events,
            max_wait_seconds=config.MAX_WAIT_SECONDS,
            interval_seconds=config.REAPER_INTERVAL_SECONDS,
            clock=clock,
        )
        self._passes: Set[asyncio.Task] = set()

    def start(self):
        self.scheduler.start()
        self.reaper.start()

    async def stop(self):
        for task in list(self._passes):
            task.cancel()
        await asyncio.gather(*self._passes, return_exceptions=True)
        await self.scheduler.stop()
        await self.reaper.stop()
        await self.events.join()

    async def settle(self):
        """Wait for enqueue-triggered passes and the notifications they emit"""
        while self._passes:
            await asyncio.gather(*self._passes, return_exceptions=True)
        await self.events.join()

    def _schedule_pass(self):
        task = asyncio.create_task(self.scheduler.trigger())
        self._passes.add(task)
        task.add_done_callback(self._pass_done)

    def _pass_done(self, task: asyncio.Task):
        self._passes.discard(task)
        if task.cancelled():
            return
        if task.exception() is not None:
            logger.error("Enqueue-triggered pass failed: %r", task.exception())

    async def request_match(self, user_id: int) -> MatchState:
        """
        Put user in the waiting pool and start a pairing pass in the background.
        Returns matched (already in a chat) / waiting / cooldown; a new match
        is announced through MatchFound.

        Raises LookupFailed if the user's state cannot be read; the user is
        not queued in that case.
        """
        active = await self.lifecycle.find_active_match(user_id)
        if active:
            return MatchState.matched(active, user_id)

        if user_id in self.pool:
            return MatchState.waiting()

        try:
            await self.lifecycle.check_cooldown(user_id)
        except CooldownActive as e:
            return MatchState.cooldown(e.remaining_seconds)

        try:
            tags = await self.users.get_interest_tags(user_id)
            last = await self.matches.find_last_ended_match(user_id)
        except Exception as e:
            raise LookupFailed(f"profile lookup failed for {user_id}") from e

        entry = WaitingEntry.create(
            user_id,
            tags,
            joined_at=self.clock(),
            last_match_ended_at=last.ended_at if last else None,
        )
        try:
            self.pool.enqueue(entry)
        except AlreadyWaiting:
            return MatchState.waiting()

        logger.info("User %s joined the pool (%s waiting)", user_id, len(self.pool))

        if self.config.MATCH_ON_ENQUEUE:
            self._schedule_pass()
        return MatchState.waiting()

    async def cancel_match(self, user_id: int) -> bool:
        """Leave the pool. Returns whether the user was waiting."""
        removed = self.pool.remove(user_id) is not None
        if removed:
            logger.info("User %s left the pool", user_id)
        return removed

    async def end_match(self, match_id: int, user_id: int) -> int:
        """End user's match. Returns duration in seconds."""
        return await self.lifecycle.end_match(match_id, user_id)

    async def end_current_match(self, user_id: int) -> int:
        active = await self.lifecycle.find_active_match(user_id)
        if active is None:
            raise MatchNotFound(0, user_id)
        return await self.end_match(active.match_id, user_id)

    async def match_status(self, user_id: int) -> MatchState:
        active = await self.lifecycle.find_active_match(user_id)
        if active:
            return MatchState.matched(active, user_id)
        if user_id in self.pool:
            return MatchState.waiting()
        return MatchState.idle()

    async def block_user(self, blocker_id: int, blocked_id: int) -> Optional[MatchRecord]:
        """
        Block a user. An active match between the two ends as 'blocked'.
        Returns the terminated match, if any.
        """
        if blocker_id == blocked_id:
            raise ValueError("You cannot block yourself")

        await self.moderation.block_user(blocker_id, blocked_id, self.clock())

        active = await self.lifecycle.find_active_match(blocker_id)
        if active and blocked_id in active.participants:
            return await self.lifecycle.block_ends_match(active.match_id, blocker_id)
        return None

    async def report_user(self, reporter_id: int, target_id: int, reason: str) -> int:
        """File a report, attached to the current match with the target if any"""
        active = await self.lifecycle.find_active_match(reporter_id)
        match_id = active.match_id if active and target_id in active.participants else None
        return await self.moderation.report_user(
            reporter_id, target_id, reason, match_id=match_id, now=self.clock()
        )
