"""
Moderation system - OWNS blocks and reports tables, and users.risk_score
"""
from typing import List, Optional
from datetime import datetime, timedelta
from db.connection import get_db, transaction
from config import settings


class ReportStatus:
    """Must match DB CHECK constraint"""
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"


async def block_user(blocker_id: int, blocked_id: int, now: Optional[datetime] = None) -> bool:
    """
    Block a user. Returns False if the block already existed.
    """
    now = now or datetime.now()

    async with transaction() as db:
        cursor = await db.execute(
            """
            INSERT OR IGNORE INTO blocks (blocker_id, blocked_id, created_at)
            VALUES (?, ?, ?)
            """,
            (blocker_id, blocked_id, now.isoformat())
        )
        if cursor.rowcount == 0:
            return False

        # Multiple blocks are a red flag
        await db.execute(
            "UPDATE users SET risk_score = risk_score + ? WHERE user_id = ?",
            (settings.RISK_BLOCK_INCREMENT, blocked_id)
        )
    return True


async def unblock_user(blocker_id: int, blocked_id: int):
    """Remove a block"""
    async with transaction() as db:
        await db.execute(
            "DELETE FROM blocks WHERE blocker_id = ? AND blocked_id = ?",
            (blocker_id, blocked_id)
        )


async def has_block_between(user_a: int, user_b: int) -> bool:
    """Check for a block in either direction"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT 1 FROM blocks
        WHERE (blocker_id = ? AND blocked_id = ?)
           OR (blocker_id = ? AND blocked_id = ?)
        """,
        (user_a, user_b, user_b, user_a)
    )
    return await cursor.fetchone() is not None


async def report_user(
    reporter_id: int,
    target_id: int,
    reason: str,
    match_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    File a report. Returns report_id.
    Raises ValueError for unknown reasons or self-reports.
    """
    if reason not in settings.REPORT_REASONS:
        raise ValueError(f"Invalid reason. Use: {', '.join(settings.REPORT_REASONS)}")
    if reporter_id == target_id:
        raise ValueError("You cannot report yourself")

    now = now or datetime.now()
    burst_cutoff = now - timedelta(hours=24)

    async with transaction() as db:
        cursor = await db.execute(
            """
            INSERT INTO reports (reporter_id, target_id, match_id, reason, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (reporter_id, target_id, match_id, reason, now.isoformat())
        )
        report_id = cursor.lastrowid

        await db.execute(
            "UPDATE users SET risk_score = risk_score + ? WHERE user_id = ?",
            (settings.RISK_REPORT_INCREMENT, target_id)
        )

        cursor = await db.execute(
            "SELECT COUNT(*) FROM reports WHERE target_id = ? AND created_at >= ?",
            (target_id, burst_cutoff.isoformat())
        )
        recent = (await cursor.fetchone())[0]

        # Auto-escalate on repeated reports within 24 hours
        if recent >= settings.RISK_REPORT_BURST_THRESHOLD:
            await db.execute(
                "UPDATE users SET risk_score = risk_score + ? WHERE user_id = ?",
                (settings.RISK_REPORT_BURST_INCREMENT, target_id)
            )

    return report_id


async def has_unresolved_report_between(user_a: int, user_b: int) -> bool:
    """Check for a not-yet-resolved report in either direction"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT 1 FROM reports
        WHERE status != ?
          AND ((reporter_id = ? AND target_id = ?)
            OR (reporter_id = ? AND target_id = ?))
        """,
        (ReportStatus.RESOLVED, user_a, user_b, user_b, user_a)
    )
    return await cursor.fetchone() is not None


async def resolve_report(report_id: int, now: Optional[datetime] = None) -> bool:
    """Mark report resolved. Returns False if it was missing or already resolved."""
    now = now or datetime.now()

    async with transaction() as db:
        cursor = await db.execute(
            """
            UPDATE reports
            SET status = ?, resolved_at = ?
            WHERE report_id = ? AND status != ?
            """,
            (ReportStatus.RESOLVED, now.isoformat(), report_id, ReportStatus.RESOLVED)
        )
        return cursor.rowcount > 0


async def get_open_reports(limit: int = 20) -> List[dict]:
    """Get oldest unresolved reports"""
    db = await get_db()
    cursor = await db.execute(
        """
        SELECT report_id, reporter_id, target_id, match_id, reason, status, created_at
        FROM reports
        WHERE status != ?
        ORDER BY created_at ASC
        LIMIT ?
        """,
        (ReportStatus.RESOLVED, limit)
    )
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def recalculate_risk_score(user_id: int, now: Optional[datetime] = None) -> int:
    """
    Recompute risk score from the last RISK_WINDOW_DAYS of reports and blocks.
    A clean record earns -10, floored at 0.
    """
    now = now or datetime.now()
    cutoff = (now - timedelta(days=settings.RISK_WINDOW_DAYS)).isoformat()

    async with transaction() as db:
        cursor = await db.execute(
            "SELECT COUNT(*) FROM reports WHERE target_id = ? AND created_at >= ?",
            (user_id, cutoff)
        )
        reports_count = (await cursor.fetchone())[0]

        cursor = await db.execute(
            "SELECT COUNT(*) FROM blocks WHERE blocked_id = ? AND created_at >= ?",
            (user_id, cutoff)
        )
        blocks_count = (await cursor.fetchone())[0]

        score = reports_count * 5 + blocks_count * 3
        if reports_count == 0 and blocks_count == 0:
            score = max(0, score - 10)

        await db.execute(
            "UPDATE users SET risk_score = ? WHERE user_id = ?",
            (score, user_id)
        )

    return score


def get_risk_level(score: int) -> str:
    if score >= 30:
        return "high"
    if score >= 15:
        return "medium"
    return "low"


async def get_bot_stats() -> dict:
    """Get bot statistics"""
    db = await get_db()
    stats = {}

    cursor = await db.execute("SELECT COUNT(*) FROM users")
    stats['total_users'] = (await cursor.fetchone())[0]

    cursor = await db.execute("SELECT COUNT(*) FROM matches WHERE status = 'active'")
    stats['active_matches'] = (await cursor.fetchone())[0]

    cursor = await db.execute("SELECT COUNT(*) FROM matches")
    stats['total_matches'] = (await cursor.fetchone())[0]

    cursor = await db.execute(
        "SELECT COUNT(*) FROM reports WHERE status != ?",
        (ReportStatus.RESOLVED,)
    )
    stats['open_reports'] = (await cursor.fetchone())[0]

    cursor = await db.execute("SELECT COUNT(*) FROM users WHERE is_suspended = 1")
    stats['suspended_users'] = (await cursor.fetchone())[0]

    return stats
