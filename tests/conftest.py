import dataclasses
from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from config import Settings, settings
from db.connection import close_db, init_database
from db.matches import MatchRecord, MatchStatus
from db.users import ensure_interest_tags
from services.errors import AlreadyMatched, InvariantViolation
from services.matchmaking import MatchmakingService
from services.pool import WaitingEntry

T0 = datetime(2026, 3, 2, 12, 0, 0)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeStore:
    """In-memory stand-in for db.users, db.moderation and db.matches"""

    def __init__(self):
        self.suspended = set()
        self.interests = {}
        self.blocks = set()
        self.reports = set()
        self.records = {}
        self.sessions = []
        self.fail_lookups = False
        self.fail_create = False
        self._next_id = 1

    def _check(self):
        if self.fail_lookups:
            raise ConnectionError("store unreachable")

    # users
    async def is_suspended(self, user_id, now=None):
        self._check()
        return user_id in self.suspended

    async def get_interest_tags(self, user_id):
        self._check()
        return set(self.interests.get(user_id, ()))

    async def record_session(self, user_ids, ended_at):
        self.sessions.append((tuple(user_ids), ended_at))

    # moderation
    async def has_block_between(self, user_a, user_b):
        self._check()
        return frozenset((user_a, user_b)) in self.blocks

    async def has_unresolved_report_between(self, user_a, user_b):
        self._check()
        return frozenset((user_a, user_b)) in self.reports

    async def block_user(self, blocker_id, blocked_id, now=None):
        self.blocks.add(frozenset((blocker_id, blocked_id)))
        return True

    async def report_user(self, reporter_id, target_id, reason, match_id=None, now=None):
        self.reports.add(frozenset((reporter_id, target_id)))
        return len(self.reports)

    # matches
    def add_record(self, user_a, user_b, created_at, status=MatchStatus.ENDED, ended_at=None):
        record = MatchRecord(
            match_id=self._next_id,
            user_a=user_a,
            user_b=user_b,
            status=status,
            created_at=created_at,
            ended_at=ended_at,
        )
        self.records[record.match_id] = record
        self._next_id += 1
        return record

    def active_records(self, user_id):
        return [
            r for r in self.records.values()
            if r.status == MatchStatus.ACTIVE and user_id in r.participants
        ]

    async def create_match(self, user_a, user_b, created_at):
        if self.fail_create:
            raise ConnectionError("write failed")
        for user_id in (user_a, user_b):
            active = self.active_records(user_id)
            if active:
                raise AlreadyMatched(user_id, active[0].match_id)
        return self.add_record(user_a, user_b, created_at, status=MatchStatus.ACTIVE)

    async def get_match(self, match_id):
        return self.records.get(match_id)

    async def find_active_match(self, user_id):
        self._check()
        active = self.active_records(user_id)
        if len(active) > 1:
            raise InvariantViolation(f"user {user_id} holds {len(active)} active matches")
        return active[0] if active else None

    async def find_match_since(self, user_a, user_b, since):
        self._check()
        found = [
            r for r in self.records.values()
            if set(r.participants) == {user_a, user_b} and r.created_at >= since
        ]
        return max(found, key=lambda r: r.created_at) if found else None

    async def find_last_ended_match(self, user_id):
        self._check()
        ended = [
            r for r in self.records.values()
            if r.status == MatchStatus.ENDED and r.ended_at and user_id in r.participants
        ]
        return max(ended, key=lambda r: r.ended_at) if ended else None

    async def close_match(self, match_id, status, ended_at, duration_seconds, ended_by):
        record = self.records.get(match_id)
        if record is None or record.status != MatchStatus.ACTIVE:
            return False
        self.records[match_id] = dataclasses.replace(
            record,
            status=status,
            ended_at=ended_at,
            duration_seconds=duration_seconds,
            ended_by=ended_by,
        )
        return True


def make_entry(user_id, tags=(), joined_at=T0):
    return WaitingEntry.create(user_id, tags, joined_at)


def make_service(store, clock, **overrides):
    config = Settings(**{"MATCH_ON_ENQUEUE": True, **overrides})
    return MatchmakingService(users=store, moderation=store, matches=store, config=config, clock=clock)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeStore()


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    """Fresh SQLite file with the schema and interest catalogue loaded"""
    monkeypatch.setattr(settings, "DATABASE_PATH", str(tmp_path / "ironroom-test.db"))
    await init_database()
    await ensure_interest_tags(settings.INTEREST_TAGS)
    yield
    await close_db()
