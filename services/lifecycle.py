"""
Match lifecycle - creates, ends and blocks matches, computes cooldowns. NO SQL.
"""
import asyncio
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

import db.matches
import db.users
from config import settings
from db.matches import MatchRecord, MatchStatus
from services.errors import (
    AlreadyMatched, CooldownActive, InvariantViolation, LookupFailed,
    MatchNotFound, NotActive,
)
from services.events import EventBus, MatchEnded, MatchFound
from services.pool import WaitingPool

logger = logging.getLogger(__name__)


class MatchLifecycleManager:
    def __init__(
        self,
        pool: WaitingPool,
        matches=db.matches,
        users=db.users,
        events: Optional[EventBus] = None,
        cooldown_seconds: int = settings.MATCH_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.pool = pool
        self.matches = matches
        self.users = users
        self.events = events or EventBus()
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._commit_lock = asyncio.Lock()

    async def find_active_match(self, user_id: int) -> Optional[MatchRecord]:
        try:
            return await self.matches.find_active_match(user_id)
        except InvariantViolation:
            raise
        except Exception as e:
            raise LookupFailed(f"active match lookup failed for {user_id}") from e

    async def _ensure_unmatched(self, user_a: int, user_b: int):
        for user_id in (user_a, user_b):
            active = await self.find_active_match(user_id)
            if active:
                raise AlreadyMatched(user_id, active.match_id)

    async def _insert(self, user_a: int, user_b: int) -> MatchRecord:
        try:
            return await self.matches.create_match(user_a, user_b, self.clock())
        except (AlreadyMatched, InvariantViolation):
            raise
        except Exception as e:
            raise LookupFailed(f"could not persist match {user_a} <-> {user_b}") from e

    async def _announce(self, record: MatchRecord):
        logger.info(
            "Match %s created: %s <-> %s",
            record.match_id, record.user_a, record.user_b
        )
        await self.events.emit(MatchFound(record.match_id, record.participants))

    async def create_match(self, user_a: int, user_b: int) -> MatchRecord:
        """Create an active match. Raises AlreadyMatched."""
        async with self._commit_lock:
            await self._ensure_unmatched(user_a, user_b)
            record = await self._insert(user_a, user_b)
        await self._announce(record)
        return record

    async def commit_pair(self, user_a: int, user_b: int) -> MatchRecord:
        """
        ATOMIC STEP: active-match check, pool removal, record creation.

        Raises AlreadyMatched, StaleEntry (pool untouched) or LookupFailed.
        If the record cannot be written both entries go back in the pool.
        """
        async with self._commit_lock:
            await self._ensure_unmatched(user_a, user_b)
            entries = self.pool.remove_atomically(user_a, user_b)
            try:
                record = await self._insert(user_a, user_b)
            except BaseException:
                self.pool.restore(entries)
                raise
        await self._announce(record)
        return record

    async def _load_for_participant(self, match_id: int, user_id: Optional[int]) -> MatchRecord:
        record = await self.matches.get_match(match_id)
        if record is None or (user_id is not None and user_id not in record.participants):
            raise MatchNotFound(match_id, user_id)
        if record.status != MatchStatus.ACTIVE:
            raise NotActive(match_id, record.status)
        return record

    async def _close(self, record: MatchRecord, status: str, ended_by: Optional[int]) -> int:
        now = self.clock()
        duration = max(0, int((now - record.created_at).total_seconds()))

        closed = await self.matches.close_match(record.match_id, status, now, duration, ended_by)
        if not closed:
            # Lost a race with another end/block
            current = await self.matches.get_match(record.match_id)
            raise NotActive(record.match_id, current.status if current else "missing")

        logger.info("Match %s %s after %ss", record.match_id, status, duration)
        await self.events.emit(MatchEnded(record.match_id, record.participants))
        return duration

    async def end_match(self, match_id: int, ended_by: int) -> int:
        """End an active match. Returns its duration in seconds."""
        record = await self._load_for_participant(match_id, ended_by)
        duration = await self._close(record, MatchStatus.ENDED, ended_by)
        await self.users.record_session(record.participants, self.clock())
        return duration

    async def block_ends_match(self, match_id: int, blocked_by: Optional[int] = None) -> MatchRecord:
        """Terminate an active match because one participant blocked the other"""
        record = await self._load_for_participant(match_id, blocked_by)
        await self._close(record, MatchStatus.BLOCKED, blocked_by)
        return await self.matches.get_match(match_id)

    async def cooldown_remaining(self, user_id: int, now: Optional[datetime] = None) -> int:
        """Seconds until user may queue again after their last ended match"""
        now = now or self.clock()
        try:
            last = await self.matches.find_last_ended_match(user_id)
        except Exception as e:
            raise LookupFailed(f"last match lookup failed for {user_id}") from e
        if last is None or last.ended_at is None:
            return 0

        until = last.ended_at + timedelta(seconds=self.cooldown_seconds)
        return max(0, math.ceil((until - now).total_seconds()))

    async def check_cooldown(self, user_id: int, now: Optional[datetime] = None):
        """Raise CooldownActive while the user is cooling down"""
        remaining = await self.cooldown_remaining(user_id, now)
        if remaining > 0:
            raise CooldownActive(user_id, remaining)
