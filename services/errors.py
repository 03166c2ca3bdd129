"""
Matchmaking error taxonomy
"""
from typing import Optional


class MatchmakingError(Exception):
    """Base class for every matchmaking failure"""


class AlreadyWaiting(MatchmakingError):
    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} is already waiting")
        self.user_id = user_id


class AlreadyMatched(MatchmakingError):
    def __init__(self, user_id: int, match_id: Optional[int] = None):
        super().__init__(f"user {user_id} already has an active match")
        self.user_id = user_id
        self.match_id = match_id


class StaleEntry(MatchmakingError):
    """A waiting entry vanished between snapshot and commit. Never surfaced to users."""

    def __init__(self, user_id: int):
        super().__init__(f"waiting entry for user {user_id} is gone")
        self.user_id = user_id


class CooldownActive(MatchmakingError):
    def __init__(self, user_id: int, remaining_seconds: int):
        super().__init__(f"user {user_id} is cooling down for {remaining_seconds}s")
        self.user_id = user_id
        self.remaining_seconds = remaining_seconds


class NotActive(MatchmakingError):
    def __init__(self, match_id: int, status: str):
        super().__init__(f"match {match_id} is {status}, not active")
        self.match_id = match_id
        self.status = status


class MatchNotFound(MatchmakingError):
    def __init__(self, match_id: int, user_id: Optional[int] = None):
        super().__init__(f"match {match_id} not found for user {user_id}")
        self.match_id = match_id
        self.user_id = user_id


class SafetyVeto(MatchmakingError):
    """Pair rejected by the safety filter. Surfaces to users only as 'still waiting'."""

    def __init__(self, user_a: int, user_b: int):
        super().__init__(f"pairing {user_a} <-> {user_b} vetoed")
        self.user_a = user_a
        self.user_b = user_b


class LookupFailed(MatchmakingError):
    """An external lookup (directory, safety data, match history) could not be answered"""


class InvariantViolation(MatchmakingError):
    """Pool or match storage is corrupted. Fatal: the scheduler halts."""
