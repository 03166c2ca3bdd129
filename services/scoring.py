"""
Compatibility scoring - NO SQL, pure business logic plus one fatigue lookup
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

import db.matches
from config import settings
from services.errors import LookupFailed
from services.pool import WaitingEntry


@dataclass(frozen=True)
class ScoreWeights:
    shared_interest_bonus: int = 50
    wait_bonus_interval_seconds: int = 10
    wait_bonus_points: int = 1
    recency_window_seconds: int = 120
    recency_bonus: int = 10
    fatigue_penalty: int = -40
    fatigue_window_days: int = 7

    @classmethod
    def from_settings(cls, s=settings) -> "ScoreWeights":
        return cls(
            shared_interest_bonus=s.SHARED_INTEREST_BONUS,
            wait_bonus_interval_seconds=s.WAIT_BONUS_INTERVAL_SECONDS,
            wait_bonus_points=s.WAIT_BONUS_POINTS,
            recency_window_seconds=s.RECENCY_WINDOW_SECONDS,
            recency_bonus=s.RECENCY_BONUS,
            fatigue_penalty=s.FATIGUE_PENALTY,
            fatigue_window_days=s.FATIGUE_WINDOW_DAYS,
        )


@dataclass(frozen=True)
class ScoreResult:
    entry_a: WaitingEntry
    entry_b: WaitingEntry
    score: int

    @property
    def pair(self) -> Tuple[int, int]:
        """Canonical (smaller, larger) user id pair"""
        return tuple(sorted((self.entry_a.user_id, self.entry_b.user_id)))

    @property
    def combined_joined_at(self) -> float:
        return self.entry_a.joined_at.timestamp() + self.entry_b.joined_at.timestamp()


def calculate_match_score(
    entry_a: WaitingEntry,
    entry_b: WaitingEntry,
    now: datetime,
    recently_matched: bool,
    weights: ScoreWeights = ScoreWeights(),
) -> int:
    """
    Calculate pair score.

    Score formula:
    - +50 once if the interest sets intersect
    - +1 per full 10 seconds waited, summed over both entries
    - +10 if the two joined less than 2 minutes apart
    - -40 if the two were matched within the last 7 days
    """
    score = 0

    # Shared interest bonus
    if set(entry_a.interest_tags) & set(entry_b.interest_tags):
        score += weights.shared_interest_bonus

    # Waiting time bonus
    for entry in (entry_a, entry_b):
        waited = entry.waited_seconds(now)
        score += (waited // weights.wait_bonus_interval_seconds) * weights.wait_bonus_points

    # Recency affinity
    join_gap = abs((entry_a.joined_at - entry_b.joined_at).total_seconds())
    if join_gap < weights.recency_window_seconds:
        score += weights.recency_bonus

    # Conversation fatigue
    if recently_matched:
        score += weights.fatigue_penalty

    return score


class CompatibilityScorer:
    def __init__(self, matches=db.matches, weights: Optional[ScoreWeights] = None):
        self.matches = matches
        self.weights = weights or ScoreWeights.from_settings()

    async def recently_matched(self, user_a: int, user_b: int, now: datetime) -> bool:
        since = now - timedelta(days=self.weights.fatigue_window_days)
        try:
            return await self.matches.find_match_since(user_a, user_b, since) is not None
        except Exception as e:
            raise LookupFailed(f"fatigue lookup failed for {user_a} <-> {user_b}") from e

    async def evaluate(
        self,
        entry_a: WaitingEntry,
        entry_b: WaitingEntry,
        now: datetime,
        recently_matched: Optional[bool] = None,
    ) -> ScoreResult:
        """Score a pair. Pass `recently_matched` when the fatigue fact is already known."""
        if recently_matched is None:
            recently_matched = await self.recently_matched(entry_a.user_id, entry_b.user_id, now)

        score = calculate_match_score(entry_a, entry_b, now, recently_matched, self.weights)
        return ScoreResult(entry_a=entry_a, entry_b=entry_b, score=score)

    async def score(self, entry_a: WaitingEntry, entry_b: WaitingEntry, now: datetime) -> int:
        return (await self.evaluate(entry_a, entry_b, now)).score
