from datetime import timedelta
from itertools import permutations

import pytest

from db.matches import MatchStatus
from services.errors import LookupFailed
from services.scoring import CompatibilityScorer, ScoreWeights, calculate_match_score
from conftest import T0, make_entry


@pytest.mark.asyncio
async def test_disjoint_interests_same_instant(store):
    scorer = CompatibilityScorer(matches=store)
    a = make_entry(1, tags=[1])
    b = make_entry(2, tags=[2])

    assert await scorer.score(a, b, T0) == 10


@pytest.mark.asyncio
async def test_one_shared_interest_same_instant(store):
    scorer = CompatibilityScorer(matches=store)
    a = make_entry(1, tags=[1, 2])
    b = make_entry(2, tags=[2, 3])

    assert await scorer.score(a, b, T0) == 60


@pytest.mark.asyncio
async def test_shared_interest_bonus_counted_once(store):
    scorer = CompatibilityScorer(matches=store)
    a = make_entry(1, tags=[1, 2, 3])
    b = make_entry(2, tags=[1, 2, 3])

    assert await scorer.score(a, b, T0) == 60


@pytest.mark.asyncio
async def test_fatigue_penalty_for_match_two_days_ago(store):
    store.add_record(1, 2, created_at=T0 - timedelta(days=2), ended_at=T0 - timedelta(days=2))
    scorer = CompatibilityScorer(matches=store)
    a = make_entry(1, tags=[5])
    b = make_entry(2, tags=[5])

    assert await scorer.score(a, b, T0) == 20


@pytest.mark.asyncio
async def test_fatigue_applies_regardless_of_status_and_expires(store):
    scorer = CompatibilityScorer(matches=store)
    a = make_entry(1)
    b = make_entry(2)

    store.add_record(1, 2, created_at=T0 - timedelta(days=8))
    assert await scorer.score(a, b, T0) == 10

    store.add_record(2, 1, created_at=T0 - timedelta(days=6), status=MatchStatus.BLOCKED)
    assert await scorer.score(a, b, T0) == -30


def test_wait_bonus_summed_over_both_entries():
    # A waited 35s, B waited 5s; recency window narrowed so only the wait bonus counts
    now = T0 + timedelta(seconds=35)
    a = make_entry(1, joined_at=T0)
    b = make_entry(2, joined_at=now - timedelta(seconds=5))
    weights = ScoreWeights(recency_window_seconds=20)

    assert calculate_match_score(a, b, now, False, weights) == 3


def test_wait_bonus_with_default_recency_window():
    now = T0 + timedelta(seconds=35)
    a = make_entry(1, joined_at=T0)
    b = make_entry(2, joined_at=now - timedelta(seconds=5))

    # 3 + 10: the two joined 30s apart
    assert calculate_match_score(a, b, now, False) == 13


def test_recency_bonus_needs_join_gap_under_two_minutes():
    now = T0 + timedelta(minutes=5)
    a = make_entry(1, joined_at=now)
    b = make_entry(2, joined_at=now - timedelta(seconds=120))

    # Gap of exactly 120s gets no recency bonus; B's wait gives 12
    assert calculate_match_score(a, b, now, False) == 12


def test_weights_follow_settings(monkeypatch):
    from config import settings
    monkeypatch.setattr(settings, "SHARED_INTEREST_BONUS", 70)

    assert ScoreWeights.from_settings(settings).shared_interest_bonus == 70


@pytest.mark.asyncio
async def test_score_is_symmetric(store):
    store.add_record(2, 3, created_at=T0 - timedelta(days=1))
    scorer = CompatibilityScorer(matches=store)
    now = T0 + timedelta(minutes=3)
    entries = [
        make_entry(1, tags=[1], joined_at=T0),
        make_entry(2, tags=[1, 4], joined_at=T0 + timedelta(seconds=47)),
        make_entry(3, tags=[4], joined_at=T0 + timedelta(seconds=170)),
        make_entry(4, tags=[], joined_at=T0 + timedelta(seconds=9)),
    ]

    for a, b in permutations(entries, 2):
        assert await scorer.score(a, b, now) == await scorer.score(b, a, now)


@pytest.mark.asyncio
async def test_fatigue_lookup_failure_raises(store):
    store.fail_lookups = True
    scorer = CompatibilityScorer(matches=store)

    with pytest.raises(LookupFailed):
        await scorer.score(make_entry(1), make_entry(2), T0)


@pytest.mark.asyncio
async def test_known_fatigue_fact_skips_lookup(store):
    store.fail_lookups = True
    scorer = CompatibilityScorer(matches=store)

    result = await scorer.evaluate(make_entry(1), make_entry(2), T0, recently_matched=True)

    assert result.score == -30
    assert result.pair == (1, 2)
