"""
Match history - OWNS matches and match_participants tables
"""
import sqlite3
from dataclasses import dataclass
from typing import List, Optional, Tuple
from datetime import datetime
from db.connection import get_db, transaction
from services.errors import AlreadyMatched, InvariantViolation


class MatchStatus:
    """Must match DB CHECK constraint"""
    ACTIVE = "active"
    ENDED = "ended"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class MatchRecord:
    match_id: int
    user_a: int
    user_b: int
    status: str
    created_at: datetime
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    ended_by: Optional[int] = None

    @property
    def participants(self) -> Tuple[int, int]:
        return (self.user_a, self.user_b)

    def partner_of(self, user_id: int) -> int:
        if user_id == self.user_a:
            return self.user_b
        if user_id == self.user_b:
            return self.user_a
        raise ValueError(f"user {user_id} is not part of match {self.match_id}")

    @classmethod
    def from_row(cls, row) -> "MatchRecord":
        return cls(
            match_id=row['match_id'],
            user_a=row['user_a'],
            user_b=row['user_b'],
            status=row['status'],
            created_at=datetime.fromisoformat(row['created_at']),
            ended_at=datetime.fromisoformat(row['ended_at']) if row['ended_at'] else None,
            duration_seconds=row['duration_seconds'],
            ended_by=row['ended_by'],
        )


async def create_match(user_a: int, user_b: int, created_at: datetime) -> MatchRecord:
    """
    ATOMIC TRANSACTION: Create active match.

    Raises AlreadyMatched if either user already holds an active match
    (enforced by the uq_active_participant index).
    """
    try:
        async with transaction() as db:
            cursor = await db.execute(
                """
                INSERT INTO matches (user_a, user_b, status, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_a, user_b, MatchStatus.ACTIVE, created_at.isoformat())
            )
            match_id = cursor.lastrowid

            await db.executemany(
                "INSERT INTO match_participants (match_id, user_id, is_active) VALUES (?, ?, 1)",
                [(match_id, user_a), (match_id, user_b)]
            )
    except sqlite3.IntegrityError as e:
        for user_id in (user_a, user_b):
            active = await find_active_match(user_id)
            if active:
                raise AlreadyMatched(user_id, active.match_id) from e
        raise

    return MatchRecord(
        match_id=match_id,
        user_a=user_a,
        user_b=user_b,
        status=MatchStatus.ACTIVE,
        created_at=created_at,
    )


async def get_match(match_id: int) -> Optional[MatchRecord]:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM matches WHERE match_id = ?",
        (match_id,)
    )
    row = await cursor.fetchone()
    return MatchRecord.from_row(row) if row else None


async def find_active_match(user_id: int) -> Optional[MatchRecord]:
    """Get user's active match. Two active matches is storage corruption."""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT * FROM matches
        WHERE (user_a = ? OR user_b = ?) AND status = ?
        """,
        (user_id, user_id, MatchStatus.ACTIVE)
    )
    rows = await cursor.fetchall()

    if len(rows) > 1:
        raise InvariantViolation(
            f"user {user_id} holds {len(rows)} active matches: "
            f"{[row['match_id'] for row in rows]}"
        )

    return MatchRecord.from_row(rows[0]) if rows else None


async def find_match_since(user_a: int, user_b: int, since: datetime) -> Optional[MatchRecord]:
    """Most recent match between the two users created at or after `since`, any status"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT * FROM matches
        WHERE ((user_a = ? AND user_b = ?) OR (user_a = ? AND user_b = ?))
          AND created_at >= ?
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (user_a, user_b, user_b, user_a, since.isoformat())
    )
    row = await cursor.fetchone()
    return MatchRecord.from_row(row) if row else None


async def find_last_ended_match(user_id: int) -> Optional[MatchRecord]:
    """Most recently ended (status 'ended') match of user"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT * FROM matches
        WHERE (user_a = ? OR user_b = ?) AND status = ? AND ended_at IS NOT NULL
        ORDER BY ended_at DESC
        LIMIT 1
        """,
        (user_id, user_id, MatchStatus.ENDED)
    )
    row = await cursor.fetchone()
    return MatchRecord.from_row(row) if row else None


async def close_match(
    match_id: int,
    status: str,
    ended_at: datetime,
    duration_seconds: Optional[int],
    ended_by: Optional[int],
) -> bool:
    """
    ATOMIC TRANSACTION: Move an active match to `status`.
    Returns False if the match was not active.
    """
    async with transaction() as db:
        cursor = await db.execute(
            """
            UPDATE matches
            SET status = ?, ended_at = ?, duration_seconds = ?, ended_by = ?
            WHERE match_id = ? AND status = ?
            """,
            (status, ended_at.isoformat(), duration_seconds, ended_by,
             match_id, MatchStatus.ACTIVE)
        )
        if cursor.rowcount == 0:
            return False

        await db.execute(
            "UPDATE match_participants SET is_active = 0 WHERE match_id = ?",
            (match_id,)
        )
    return True


async def list_matches(user_id: int, limit: int = 20) -> List[MatchRecord]:
    """User's matches, newest first"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT * FROM matches
        WHERE user_a = ? OR user_b = ?
        ORDER BY created_at DESC
        LIMIT ?
        """,
        (user_id, user_id, limit)
    )
    rows = await cursor.fetchall()
    return [MatchRecord.from_row(row) for row in rows]
