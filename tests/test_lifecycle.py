from datetime import timedelta

import pytest

from db.matches import MatchStatus
from services.errors import AlreadyMatched, CooldownActive, LookupFailed, MatchNotFound, NotActive
from services.events import EventBus, MatchEnded, MatchFound
from services.lifecycle import MatchLifecycleManager
from services.pool import WaitingPool
from conftest import T0


def _manager(store, clock, events=None):
    return MatchLifecycleManager(WaitingPool(), matches=store, users=store, events=events, clock=clock)


def _collect(events, event_type):
    seen = []

    async def handler(event):
        seen.append(event)

    events.subscribe(event_type, handler)
    return seen


@pytest.mark.asyncio
async def test_create_match_announces_and_rejects_second_match(store, clock):
    events = EventBus()
    found = _collect(events, MatchFound)
    manager = _manager(store, clock, events)

    record = await manager.create_match(1, 2)
    await events.join()

    assert record.status == MatchStatus.ACTIVE
    assert record.created_at == T0
    assert found == [MatchFound(record.match_id, (1, 2))]

    with pytest.raises(AlreadyMatched) as exc:
        await manager.create_match(2, 3)
    assert exc.value.user_id == 2
    assert exc.value.match_id == record.match_id


@pytest.mark.asyncio
async def test_end_match_records_duration_and_sessions(store, clock):
    events = EventBus()
    ended = _collect(events, MatchEnded)
    manager = _manager(store, clock, events)
    record = await manager.create_match(1, 2)
    clock.advance(95)

    duration = await manager.end_match(record.match_id, 2)
    await events.join()

    stored = store.records[record.match_id]
    assert duration == 95
    assert stored.status == MatchStatus.ENDED
    assert stored.ended_at == clock.now
    assert stored.ended_by == 2
    assert store.sessions == [((1, 2), clock.now)]
    assert ended == [MatchEnded(record.match_id, (1, 2))]


@pytest.mark.asyncio
async def test_ending_twice_raises_not_active(store, clock):
    manager = _manager(store, clock)
    record = await manager.create_match(1, 2)
    await manager.end_match(record.match_id, 1)

    with pytest.raises(NotActive) as exc:
        await manager.end_match(record.match_id, 2)

    assert exc.value.status == MatchStatus.ENDED


@pytest.mark.asyncio
async def test_outsider_cannot_end_match(store, clock):
    manager = _manager(store, clock)
    record = await manager.create_match(1, 2)

    with pytest.raises(MatchNotFound):
        await manager.end_match(record.match_id, 3)
    with pytest.raises(MatchNotFound):
        await manager.end_match(404, 1)

    assert store.records[record.match_id].status == MatchStatus.ACTIVE


@pytest.mark.asyncio
async def test_block_terminates_match_as_blocked(store, clock):
    manager = _manager(store, clock)
    record = await manager.create_match(1, 2)
    clock.advance(10)

    closed = await manager.block_ends_match(record.match_id, blocked_by=1)

    assert closed.status == MatchStatus.BLOCKED
    assert closed.duration_seconds == 10
    assert store.sessions == []
    assert await manager.find_active_match(1) is None


@pytest.mark.asyncio
async def test_cooldown_counts_down_from_match_end(store, clock):
    manager = _manager(store, clock)
    record = await manager.create_match(1, 2)
    await manager.end_match(record.match_id, 1)

    assert await manager.cooldown_remaining(1) == 300
    assert await manager.cooldown_remaining(2) == 300

    clock.advance(120.5)
    assert await manager.cooldown_remaining(2) == 180

    with pytest.raises(CooldownActive) as exc:
        await manager.check_cooldown(1)
    assert exc.value.remaining_seconds == 180

    clock.advance(179.5)
    assert await manager.cooldown_remaining(1) == 0
    await manager.check_cooldown(1)


@pytest.mark.asyncio
async def test_blocked_match_starts_no_cooldown(store, clock):
    manager = _manager(store, clock)
    record = await manager.create_match(1, 2)
    await manager.block_ends_match(record.match_id, blocked_by=2)

    assert await manager.cooldown_remaining(1) == 0
    assert await manager.cooldown_remaining(2) == 0


@pytest.mark.asyncio
async def test_user_without_history_has_no_cooldown(store, clock):
    manager = _manager(store, clock)

    assert await manager.cooldown_remaining(1) == 0


@pytest.mark.asyncio
async def test_cooldown_lookup_failure_is_transient(store, clock):
    store.fail_lookups = True
    manager = _manager(store, clock)

    with pytest.raises(LookupFailed):
        await manager.check_cooldown(1)
