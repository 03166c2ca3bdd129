"""
Safety filter - decides whether two users may be paired. NO SQL.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Set

import db.matches
import db.moderation
import db.users
from config import settings
from services.errors import LookupFailed, SafetyVeto

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyFacts:
    blocked: bool
    reported: bool
    suspended: bool
    recently_matched: bool = False

    @property
    def permitted(self) -> bool:
        # Fatigue only lowers the score; it never vetoes
        return not (self.blocked or self.reported or self.suspended)


class SafetyFilter:
    """
    Looks up block / report / suspension facts for a pair.

    Any lookup error is raised as LookupFailed: a pairing is never
    permitted when a fact cannot be determined.
    """

    def __init__(
        self,
        users=db.users,
        moderation=db.moderation,
        matches=db.matches,
        fatigue_window_days: int = settings.FATIGUE_WINDOW_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.users = users
        self.moderation = moderation
        self.matches = matches
        self.fatigue_window = timedelta(days=fatigue_window_days)
        self.clock = clock

    async def suspended_among(self, user_ids: Iterable[int], now: Optional[datetime] = None) -> Set[int]:
        """Which of the given users are suspended, one lookup per user"""
        now = now or self.clock()
        suspended = set()
        try:
            for user_id in set(user_ids):
                if await self.users.is_suspended(user_id, now):
                    suspended.add(user_id)
        except Exception as e:
            raise LookupFailed("suspension lookup failed") from e
        return suspended

    async def facts(
        self,
        user_a: int,
        user_b: int,
        now: Optional[datetime] = None,
        suspended: Optional[Set[int]] = None,
    ) -> SafetyFacts:
        """
        Facts for the pair, stopping at the first veto: checks after it
        (and the fatigue flag) are left False and never looked up.

        Pass `suspended` from `suspended_among` to reuse one suspension
        lookup per user across a whole pass.
        """
        now = now or self.clock()
        if suspended is None:
            suspended = await self.suspended_among((user_a, user_b), now)

        if user_a in suspended or user_b in suspended:
            return SafetyFacts(blocked=False, reported=False, suspended=True)

        try:
            if await self.moderation.has_block_between(user_a, user_b):
                return SafetyFacts(blocked=True, reported=False, suspended=False)
            if await self.moderation.has_unresolved_report_between(user_a, user_b):
                return SafetyFacts(blocked=False, reported=True, suspended=False)
            recent = await self.matches.find_match_since(user_a, user_b, now - self.fatigue_window)
        except Exception as e:
            raise LookupFailed(f"safety lookup failed for {user_a} <-> {user_b}") from e

        return SafetyFacts(
            blocked=False,
            reported=False,
            suspended=False,
            recently_matched=recent is not None,
        )

    async def is_permitted(self, user_a: int, user_b: int, now: Optional[datetime] = None) -> bool:
        """Short-circuiting veto check, used again right before commit"""
        now = now or self.clock()
        try:
            if await self.users.is_suspended(user_a, now):
                return False
            if await self.users.is_suspended(user_b, now):
                return False
            if await self.moderation.has_block_between(user_a, user_b):
                return False
            if await self.moderation.has_unresolved_report_between(user_a, user_b):
                return False
        except Exception as e:
            raise LookupFailed(f"safety lookup failed for {user_a} <-> {user_b}") from e
        return True

    async def ensure_permitted(self, user_a: int, user_b: int, now: Optional[datetime] = None):
        """Raise SafetyVeto unless the pair may be matched"""
        if not await self.is_permitted(user_a, user_b, now):
            raise SafetyVeto(user_a, user_b)
