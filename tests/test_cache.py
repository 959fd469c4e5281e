import asyncio
import pathlib
import sys
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from builders import NOW, card, entry, goal, habit  # noqa: E402
from mentor.engine.cache import CardCache  # noqa: E402
from mentor.engine.fingerprint import EntityCounts, compute_fingerprint  # noqa: E402
from mentor.schemas.coaching import CardType  # noqa: E402
from mentor.schemas.entities import FeatureUsage  # noqa: E402


def _counting_compute(calls, delay=0.0, result=None):
    async def compute():
        calls.append(1)
        if delay:
            await asyncio.sleep(delay)
        return result or card()

    return compute


def test_fingerprint_is_stable_across_input_order():
    goals = [goal("A", goal_id="goal_a"), goal("B", goal_id="goal_b")]
    entries = [entry(1, entry_id="entry_1"), entry(2, entry_id="entry_2")]
    first = compute_fingerprint(goals, [], entries, now=NOW)
    second = compute_fingerprint(list(reversed(goals)), [], list(reversed(entries)), now=NOW)
    assert first.key == second.key
    assert first.key.startswith("mentor_card:")


def test_fingerprint_tracks_changes_that_affect_rules():
    base_goal = goal(goal_id="goal_a", progress=20)
    base = compute_fingerprint([base_goal], [], [], now=NOW)
    assert compute_fingerprint([base_goal.with_progress(60, now=NOW)], [], [], now=NOW).key != base.key
    assert compute_fingerprint([base_goal], [], [], now=NOW, discovered=[CardType.DISCOVER_CHAT]).key != base.key
    assert compute_fingerprint([base_goal], [], [], now=NOW, features=FeatureUsage(has_opened_chat=True)).key != base.key
    assert compute_fingerprint([base_goal], [habit(habit_id="habit_a")], [], now=NOW).key != base.key


def test_fingerprint_uses_hour_buckets():
    goals = [goal(goal_id="goal_a")]
    base = compute_fingerprint(goals, [], [], now=NOW)
    assert compute_fingerprint(goals, [], [], now=NOW + timedelta(minutes=30)).key == base.key
    assert compute_fingerprint(goals, [], [], now=NOW + timedelta(hours=1)).key != base.key


@pytest.mark.asyncio
async def test_hit_skips_compute():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal()], [], [], now=NOW)
    calls = []
    first, first_hit = await cache.get_or_compute(fingerprint, _counting_compute(calls))
    second, second_hit = await cache.get_or_compute(fingerprint, _counting_compute(calls))
    assert (first_hit, second_hit) == (False, True)
    assert first.id == second.id
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_computation():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal("A"), goal("B")], [], [], now=NOW)
    calls = []
    results = await asyncio.gather(
        cache.get_or_compute(fingerprint, _counting_compute(calls, delay=0.05)),
        cache.get_or_compute(fingerprint, _counting_compute(calls, delay=0.05)),
    )
    assert len(calls) == 1
    assert results[0][0].id == results[1][0].id
    assert not cache._inflight


@pytest.mark.asyncio
async def test_failed_computation_reaches_every_waiter_and_is_retried():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal()], [], [], now=NOW)
    calls = []

    async def broken():
        calls.append(1)
        await asyncio.sleep(0.01)
        raise RuntimeError("store unavailable")

    results = await asyncio.gather(
        cache.get_or_compute(fingerprint, broken),
        cache.get_or_compute(fingerprint, broken),
        return_exceptions=True,
    )
    assert all(isinstance(result, RuntimeError) for result in results)
    assert len(calls) == 1

    recovered, hit = await cache.get_or_compute(fingerprint, _counting_compute(calls))
    assert not hit
    assert recovered.type == CardType.BALANCED


@pytest.mark.asyncio
async def test_emptiness_mismatch_invalidates_matching_key():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal("A"), goal("B")], [], [], now=NOW)
    calls = []
    await cache.get_or_compute(fingerprint, _counting_compute(calls))

    restored_counts = EntityCounts(goals=2, habits=0, journal_entries=3)
    _, hit = await cache.get_or_compute(fingerprint, _counting_compute(calls), live=restored_counts)
    assert not hit
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_restore_changes_invalidate_old_entries():
    cache = CardCache()
    before = compute_fingerprint([goal("A"), goal("B")], [], [], now=NOW)
    await cache.get_or_compute(before, _counting_compute([]))

    after = compute_fingerprint([goal("A"), goal("B")], [], [entry(1), entry(2)], now=NOW)
    _, hit = await cache.get_or_compute(after, _counting_compute([]), live=after.counts)
    assert not hit
    assert cache.peek(before) is None
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_malformed_restored_entry_is_a_miss():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal()], [], [], now=NOW)
    restored = cache.restore([{"fingerprint": {"digest": fingerprint.digest}, "card": {"title": "broken"}}])
    assert restored == 1

    calls = []
    _, hit = await cache.get_or_compute(fingerprint, _counting_compute(calls))
    assert not hit
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_export_and_restore_round_trip_serves_hits():
    fingerprint = compute_fingerprint([goal()], [], [], now=NOW)
    original = CardCache()
    await original.get_or_compute(fingerprint, _counting_compute([], result=card(body="Saved body")))

    restored = CardCache()
    assert restored.restore(original.export()) == 1
    calls = []
    served, hit = await restored.get_or_compute(fingerprint, _counting_compute(calls), live=fingerprint.counts)
    assert hit
    assert served.body == "Saved body"
    assert not calls


@pytest.mark.asyncio
async def test_cache_is_bounded():
    cache = CardCache(max_entries=2)
    fingerprints = [compute_fingerprint([goal(goal_id=f"goal_{index}")], [], [], now=NOW) for index in range(3)]
    for fingerprint in fingerprints:
        await cache.get_or_compute(fingerprint, _counting_compute([]))
        await asyncio.sleep(0.001)
    assert len(cache) == 2
    assert cache.peek(fingerprints[0]) is None
    assert cache.peek(fingerprints[2]) is not None


@pytest.mark.asyncio
async def test_invalidate_and_clear():
    cache = CardCache()
    fingerprint = compute_fingerprint([goal()], [], [], now=NOW)
    await cache.get_or_compute(fingerprint, _counting_compute([]))
    assert await cache.invalidate(fingerprint)
    assert not await cache.invalidate(fingerprint)
    await cache.get_or_compute(fingerprint, _counting_compute([]))
    await cache.clear()
    assert len(cache) == 0
