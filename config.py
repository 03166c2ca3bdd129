"""
Configuration settings for IronRoom matchmaking bot
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class Settings:
    # Bot credentials (REQUIRED)
    BOT_TOKEN: str = field(default_factory=lambda: os.getenv("BOT_TOKEN", ""))
    ADMIN_ID: int = field(default_factory=lambda: int(os.getenv("ADMIN_ID", "0")))

    # Database
    DATABASE_PATH: str = field(default_factory=lambda: os.getenv("DATABASE_PATH", "ironroom.db"))

    # Compatibility scoring
    SHARED_INTEREST_BONUS: int = 50
    WAIT_BONUS_INTERVAL_SECONDS: int = 10  # 1 point per 10 seconds
    WAIT_BONUS_POINTS: int = 1
    RECENCY_WINDOW_SECONDS: int = 120
    RECENCY_BONUS: int = 10
    FATIGUE_PENALTY: int = -40
    FATIGUE_WINDOW_DAYS: int = 7

    # Match lifecycle
    MATCH_COOLDOWN_SECONDS: int = field(
        default_factory=lambda: int(os.getenv("MATCH_COOLDOWN_SECONDS", "300"))
    )
    MAX_WAIT_SECONDS: int = field(
        default_factory=lambda: int(os.getenv("MAX_WAIT_SECONDS", "120"))
    )

    # Scheduler
    PAIRING_INTERVAL_SECONDS: float = field(
        default_factory=lambda: float(os.getenv("PAIRING_INTERVAL_SECONDS", "3"))
    )
    PASS_TIMEOUT_SECONDS: float = 10.0
    MATCH_ON_ENQUEUE: bool = field(
        default_factory=lambda: os.getenv("MATCH_ON_ENQUEUE", "true").lower() == "true"
    )
    REAPER_INTERVAL_SECONDS: float = 5.0

    # Intent tags a user can pick from
    INTEREST_TAGS: List[str] = field(default_factory=lambda: [
        "stress", "loneliness", "career_pressure", "relationships", "breakup",
        "fatherhood", "mental_burnout", "anger_management",
        "masculinity_identity", "just_want_to_talk",
    ])

    # Moderation
    REPORT_REASONS: List[str] = field(default_factory=lambda: [
        "harassment", "abuse", "spam", "other"
    ])
    SUSPENSION_DURATIONS: Dict[str, int] = field(default_factory=lambda: {
        "12h": 12,
        "24h": 24,
        "3d": 72,
        "7d": 168,
    })
    RISK_BLOCK_INCREMENT: int = 3
    RISK_REPORT_INCREMENT: int = 5
    RISK_REPORT_BURST_INCREMENT: int = 20
    RISK_REPORT_BURST_THRESHOLD: int = 3
    RISK_WINDOW_DAYS: int = 30


# Singleton instance
settings = Settings()
