import asyncio
import time
from collections import Counter

import pytest

from db.matches import MatchStatus
from services.errors import LookupFailed, MatchNotFound
from services.events import MatchFound
from services.matchmaking import MatchState
from conftest import FakeStore, make_entry, make_service


class SlowBlockStore(FakeStore):
    """Every block lookup takes a while"""

    async def has_block_between(self, user_a, user_b):
        await asyncio.sleep(0.3)
        return await super().has_block_between(user_a, user_b)


class BrokenBlockStore(FakeStore):
    async def has_block_between(self, user_a, user_b):
        raise ConnectionError("moderation store unreachable")


async def _pair(service, user_a, user_b):
    await service.request_match(user_a)
    await service.request_match(user_b)
    await service.settle()
    state = await service.match_status(user_b)
    assert state.status == MatchState.MATCHED
    return state


@pytest.mark.asyncio
async def test_second_request_completes_the_pair(store, clock):
    service = make_service(store, clock)
    found = []

    async def on_found(event):
        found.append(event)

    service.events.subscribe(MatchFound, on_found)

    first = await service.request_match(1)
    second = await service.request_match(2)
    await service.settle()

    assert first == MatchState.waiting()
    assert second == MatchState.waiting()

    status = await service.match_status(2)
    assert status.status == MatchState.MATCHED
    assert status.partner_id == 1
    assert (await service.match_status(1)).partner_id == 2
    assert found == [MatchFound(status.match_id, (1, 2))]
    assert len(service.pool) == 0


@pytest.mark.asyncio
async def test_request_returns_before_the_pass_finishes(clock):
    store = SlowBlockStore()
    service = make_service(store, clock)
    for user_id in (1, 2, 3):
        service.pool.enqueue(make_entry(user_id))
    store.blocks.update({frozenset((1, 2)), frozenset((1, 3)), frozenset((2, 3))})

    started = time.monotonic()
    state = await service.request_match(4)
    elapsed = time.monotonic() - started

    assert state == MatchState.waiting()
    assert elapsed < 0.1
    assert service.scheduler.running or service._passes

    await service.stop()


@pytest.mark.asyncio
async def test_repeated_request_keeps_single_entry(store, clock):
    service = make_service(store, clock)

    await service.request_match(1)
    clock.advance(30)
    again = await service.request_match(1)

    assert again.status == MatchState.WAITING
    assert len(service.pool) == 1
    assert service.pool.get(1).waited_seconds(clock.now) == 30


@pytest.mark.asyncio
async def test_matched_user_requesting_again_gets_current_match(store, clock):
    service = make_service(store, clock)
    state = await _pair(service, 1, 2)

    again = await service.request_match(2)

    assert again == state
    assert 2 not in service.pool


@pytest.mark.asyncio
async def test_concurrent_requests_never_double_match(store, clock):
    service = make_service(store, clock)
    users = list(range(1, 21))

    await asyncio.gather(*(service.request_match(u) for u in users))
    await service.settle()
    await service.scheduler.drain()

    active = Counter()
    for record in store.records.values():
        if record.status == MatchStatus.ACTIVE:
            active.update(record.participants)

    assert set(active) == set(users)
    assert max(active.values()) == 1
    assert len(service.pool) == 0


@pytest.mark.asyncio
async def test_cooldown_after_ended_match(store, clock):
    service = make_service(store, clock)
    state = await _pair(service, 1, 2)
    clock.advance(60)
    await service.end_match(state.match_id, 2)

    blocked_out = await service.request_match(1)
    assert blocked_out == MatchState.cooldown(300)
    assert 1 not in service.pool

    clock.advance(300)
    assert (await service.request_match(1)).status == MatchState.WAITING


@pytest.mark.asyncio
async def test_end_current_match(store, clock):
    service = make_service(store, clock)
    await _pair(service, 1, 2)
    clock.advance(42)

    assert await service.end_current_match(1) == 42
    assert (await service.match_status(2)).status == MatchState.IDLE

    with pytest.raises(MatchNotFound):
        await service.end_current_match(1)


@pytest.mark.asyncio
async def test_cancel_leaves_pool(store, clock):
    service = make_service(store, clock)
    await service.request_match(1)
    await service.settle()

    assert await service.cancel_match(1)
    assert not await service.cancel_match(1)
    assert (await service.match_status(1)).status == MatchState.IDLE

    await service.request_match(2)
    await service.settle()
    assert store.records == {}


@pytest.mark.asyncio
async def test_block_ends_match_and_prevents_rematch(store, clock):
    service = make_service(store, clock)
    state = await _pair(service, 1, 2)

    closed = await service.block_user(2, 1)

    assert closed.match_id == state.match_id
    assert closed.status == MatchStatus.BLOCKED

    assert (await service.request_match(1)).status == MatchState.WAITING
    assert (await service.request_match(2)).status == MatchState.WAITING
    await service.settle()
    assert len(store.active_records(1)) == 0
    assert len(service.pool) == 2


@pytest.mark.asyncio
async def test_block_outside_match_and_self_block(store, clock):
    service = make_service(store, clock)

    assert await service.block_user(1, 2) is None
    with pytest.raises(ValueError):
        await service.block_user(3, 3)


@pytest.mark.asyncio
async def test_suspended_user_is_never_paired(store, clock):
    store.suspended.add(2)
    service = make_service(store, clock)

    await service.request_match(1)
    await service.request_match(2)
    await service.settle()

    assert store.records == {}

    await service.request_match(3)
    await service.settle()
    assert (await service.match_status(3)).partner_id == 1


@pytest.mark.asyncio
async def test_broken_notifier_does_not_break_matching(store, clock):
    service = make_service(store, clock)

    async def broken(event):
        raise ConnectionError("telegram down")

    service.events.subscribe(MatchFound, broken)

    state = await _pair(service, 1, 2)

    assert state.partner_id == 1


@pytest.mark.asyncio
async def test_lookup_failure_before_enqueue_leaves_user_out(store, clock):
    service = make_service(store, clock)
    store.fail_lookups = True

    with pytest.raises(LookupFailed):
        await service.request_match(1)

    assert 1 not in service.pool


@pytest.mark.asyncio
async def test_lookup_failure_during_pass_keeps_user_waiting(clock):
    store = BrokenBlockStore()
    service = make_service(store, clock)

    await service.request_match(1)
    state = await service.request_match(2)
    await service.settle()

    assert state == MatchState.waiting()
    assert 1 in service.pool and 2 in service.pool
    assert store.records == {}
    assert not service.scheduler.halted


@pytest.mark.asyncio
async def test_waiting_user_times_out(store, clock):
    service = make_service(store, clock)
    await service.request_match(1)
    await service.settle()
    clock.advance(121)

    reaped = await service.reaper.reap()

    assert [e.user_id for e in reaped] == [1]
    assert (await service.match_status(1)).status == MatchState.IDLE


@pytest.mark.asyncio
async def test_without_match_on_enqueue_pairing_waits_for_scheduler(store, clock):
    service = make_service(store, clock, MATCH_ON_ENQUEUE=False)

    await service.request_match(1)
    await service.request_match(2)

    assert not service._passes
    assert (await service.match_status(2)).status == MatchState.WAITING
    await service.scheduler.trigger()
    assert (await service.match_status(2)).partner_id == 1
