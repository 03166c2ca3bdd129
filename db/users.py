"""
User directory - OWNS users, interest_tags and user_interests tables
No other file touches these tables
"""
from typing import Iterable, List, Optional, Set
from datetime import datetime, timedelta
from db.connection import get_db, transaction


async def user_exists(user_id: int) -> bool:
    """Check if user exists"""
    db = await get_db()
    cursor = await db.execute(
        "SELECT 1 FROM users WHERE user_id = ?",
        (user_id,)
    )
    return await cursor.fetchone() is not None


async def create_user(user_id: int):
    """Register user (no-op if already registered)"""
    async with transaction() as db:
        await db.execute(
            "INSERT OR IGNORE INTO users (user_id) VALUES (?)",
            (user_id,)
        )


async def get_user(user_id: int) -> Optional[dict]:
    """Get complete user record"""
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM users WHERE user_id = ?",
        (user_id,)
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def is_suspended(user_id: int, now: Optional[datetime] = None) -> bool:
    """
    Check if user is currently suspended.
    A suspension with no end date is permanent; an elapsed one no longer counts.
    """
    now = now or datetime.now()
    db = await get_db()
    cursor = await db.execute(
        "SELECT is_suspended, suspended_until FROM users WHERE user_id = ?",
        (user_id,)
    )
    row = await cursor.fetchone()

    if not row or not row['is_suspended']:
        return False

    if row['suspended_until'] is None:
        return True

    return datetime.fromisoformat(row['suspended_until']) > now


async def get_suspension(user_id: int, now: Optional[datetime] = None) -> Optional[dict]:
    """
    Get active suspension as {'until', 'reason'}, lifting it if it has expired.
    """
    now = now or datetime.now()
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT is_suspended, suspended_until, suspension_reason
        FROM users WHERE user_id = ?
        """,
        (user_id,)
    )
    row = await cursor.fetchone()

    if not row or not row['is_suspended']:
        return None

    until = datetime.fromisoformat(row['suspended_until']) if row['suspended_until'] else None
    if until is not None and until <= now:
        await unsuspend_user(user_id)
        return None

    return {'until': until, 'reason': row['suspension_reason']}


async def suspend_user(user_id: int, hours: Optional[int], reason: str,
                       now: Optional[datetime] = None) -> Optional[datetime]:
    """Suspend user for N hours (None = permanent). Returns end of suspension."""
    now = now or datetime.now()
    until = now + timedelta(hours=hours) if hours else None

    async with transaction() as db:
        await db.execute(
            """
            UPDATE users
            SET is_suspended = 1, suspended_until = ?, suspension_reason = ?
            WHERE user_id = ?
            """,
            (until.isoformat() if until else None, reason, user_id)
        )
    return until


async def unsuspend_user(user_id: int):
    """Lift suspension"""
    async with transaction() as db:
        await db.execute(
            """
            UPDATE users
            SET is_suspended = 0, suspended_until = NULL, suspension_reason = NULL
            WHERE user_id = ?
            """,
            (user_id,)
        )


async def ensure_interest_tags(names: Iterable[str]):
    """Seed the interest tag catalogue"""
    async with transaction() as db:
        await db.executemany(
            "INSERT OR IGNORE INTO interest_tags (name) VALUES (?)",
            [(name,) for name in names]
        )


async def get_interest_tags(user_id: int) -> Set[int]:
    """Get user's interest tag ids"""
    db = await get_db()
    cursor = await db.execute(
        "SELECT tag_id FROM user_interests WHERE user_id = ?",
        (user_id,)
    )
    rows = await cursor.fetchall()
    return {row['tag_id'] for row in rows}


async def get_interest_names(user_id: int) -> List[str]:
    """Get user's interest tag names, alphabetically"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT t.name
        FROM user_interests ui
        JOIN interest_tags t ON t.tag_id = ui.tag_id
        WHERE ui.user_id = ?
        ORDER BY t.name
        """,
        (user_id,)
    )
    rows = await cursor.fetchall()
    return [row['name'] for row in rows]


async def set_interests(user_id: int, names: Iterable[str]) -> Set[int]:
    """
    Replace user's interests with the named catalogue tags.
    Unknown names are ignored. Returns the stored tag ids.
    """
    names = list(names)

    async with transaction() as db:
        await db.execute(
            "DELETE FROM user_interests WHERE user_id = ?",
            (user_id,)
        )
        if names:
            placeholders = ", ".join("?" for _ in names)
            await db.execute(
                f"""
                INSERT INTO user_interests (user_id, tag_id)
                SELECT ?, tag_id FROM interest_tags WHERE name IN ({placeholders})
                """,
                (user_id, *names)
            )

    return await get_interest_tags(user_id)


async def record_session(user_ids: Iterable[int], ended_at: datetime):
    """Count a finished conversation for each participant"""
    async with transaction() as db:
        await db.executemany(
            """
            UPDATE users
            SET sessions_count = sessions_count + 1, last_session_at = ?
            WHERE user_id = ?
            """,
            [(ended_at.isoformat(), user_id) for user_id in user_ids]
        )
