"""
Waiting pool - users currently seeking a match. NO SQL, in-memory.

All mutations run inside one short critical section, so enqueue, cancel
and pair removal are linearizable with respect to each other.
"""
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from services.errors import AlreadyWaiting, InvariantViolation, StaleEntry


@dataclass(frozen=True)
class WaitingEntry:
    user_id: int
    interest_tags: Tuple[int, ...]
    joined_at: datetime
    last_match_ended_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        user_id: int,
        interest_tags: Iterable[int],
        joined_at: datetime,
        last_match_ended_at: Optional[datetime] = None,
    ) -> "WaitingEntry":
        return cls(
            user_id=user_id,
            interest_tags=tuple(sorted(set(interest_tags))),
            joined_at=joined_at,
            last_match_ended_at=last_match_ended_at,
        )

    def waited_seconds(self, now: datetime) -> int:
        return max(0, int((now - self.joined_at).total_seconds()))


class WaitingPool:
    def __init__(self) -> None:
        self._entries: Dict[int, WaitingEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._entries

    def get(self, user_id: int) -> Optional[WaitingEntry]:
        with self._lock:
            return self._entries.get(user_id)

    def enqueue(self, entry: WaitingEntry) -> None:
        """Insert entry. Raises AlreadyWaiting if the user already has one."""
        with self._lock:
            if entry.user_id in self._entries:
                raise AlreadyWaiting(entry.user_id)
            self._entries[entry.user_id] = entry

    def remove(self, user_id: int, expected: Optional[WaitingEntry] = None) -> Optional[WaitingEntry]:
        """
        Remove user's entry if present. Never fails.

        With `expected`, only that exact entry is removed; a newer entry
        for the same user is left alone.
        """
        with self._lock:
            current = self._entries.get(user_id)
            if current is None:
                return None
            if expected is not None and current is not expected:
                return None
            return self._entries.pop(user_id)

    def remove_atomically(self, user_a: int, user_b: int) -> Tuple[WaitingEntry, WaitingEntry]:
        """
        Remove both entries, or neither.
        Raises StaleEntry naming the first user that is no longer waiting.
        """
        if user_a == user_b:
            raise ValueError("cannot pair a user with themselves")

        with self._lock:
            for user_id in (user_a, user_b):
                if user_id not in self._entries:
                    raise StaleEntry(user_id)
            return self._entries.pop(user_a), self._entries.pop(user_b)

    def restore(self, entries: Iterable[WaitingEntry]) -> None:
        """Put back entries removed for a commit that did not complete"""
        with self._lock:
            for entry in entries:
                self._entries.setdefault(entry.user_id, entry)

    def snapshot(self) -> Tuple[WaitingEntry, ...]:
        """Point-in-time copy, oldest first"""
        with self._lock:
            entries = tuple(self._entries.values())
        return tuple(sorted(entries, key=lambda e: (e.joined_at, e.user_id)))

    def verify(self) -> None:
        """Raise InvariantViolation if the index no longer matches its entries"""
        with self._lock:
            for user_id, entry in self._entries.items():
                if entry.user_id != user_id:
                    raise InvariantViolation(
                        f"pool slot {user_id} holds entry for user {entry.user_id}"
                    )
