import asyncio

import pytest

from aharadar.libs.quota.store import (
    CLAUDE,
    CODEX,
    HOUR_SECONDS,
    KEY_TTL_SECONDS,
    UsageCounts,
    UsageStore,
    hour_bucket,
    init_usage_store,
    quota_key,
)


def test_memory_mode_counts_and_remaining(clock):
    store = UsageStore(clock=clock)
    store.record_usage(CLAUDE, calls=3, thinking_tokens=500)
    store.record_usage(CLAUDE, calls=1)

    usage = store.get_usage(CLAUDE)
    assert (usage.calls, usage.searches, usage.thinking_tokens) == (4, 0, 500)
    assert store.remaining(CLAUDE, 10) == 6
    assert store.remaining(CLAUDE, 2) == 0
    assert store.can_use(CLAUDE, 5)
    assert not store.can_use(CLAUDE, 4)
    assert store.get_usage(CODEX).calls == 0
    assert not store.shared


def test_hour_rollover_starts_fresh(clock):
    store = UsageStore(clock=clock)
    store.record_usage(CODEX, calls=5)
    clock.advance(HOUR_SECONDS)
    assert store.get_usage(CODEX).calls == 0
    store.record_usage(CODEX, calls=1)
    assert store.get_usage(CODEX).calls == 1


def test_negative_increment_rejected(clock):
    store = UsageStore(clock=clock)
    with pytest.raises(ValueError):
        store.record_usage(CLAUDE, calls=-1)


def test_reset_at_is_next_hour_boundary(clock):
    clock.now = 3600 * 500_000 + 10
    store = UsageStore(clock=clock)
    assert store.reset_at().timestamp() == 3600 * 500_001
    assert hour_bucket(clock.now) == 500_000


def test_usage_counts_from_hash():
    counts = UsageCounts.from_hash({b"calls": b"3", "searches": "oops", "thinking_tokens": "-4", "other": "9"})
    assert counts == UsageCounts(calls=3, searches=0, thinking_tokens=0)
    assert UsageCounts.from_hash(None).is_empty()


@pytest.mark.asyncio
async def test_shared_mode_writes_through(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    store.record_usage(CLAUDE, calls=2, searches=1)
    # Visible locally before the write lands.
    assert store.get_usage(CLAUDE).calls == 2

    await store.wait_pending()
    key = quota_key(CLAUDE, store.current_bucket())
    assert fake_redis.hashes[key] == {"calls": 2, "searches": 1}
    assert fake_redis.ttls[key] == KEY_TTL_SECONDS
    assert store.get_usage(CLAUDE).calls == 2


@pytest.mark.asyncio
async def test_failed_write_is_kept_locally_and_replayed(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    key = quota_key(CODEX, store.current_bucket())

    fake_redis.fail = True
    store.record_usage(CODEX, calls=1)
    await store.wait_pending()
    assert key not in fake_redis.hashes
    assert store.get_usage(CODEX).calls == 1

    fake_redis.fail = False
    store.record_usage(CODEX, calls=1)
    await store.wait_pending()
    assert fake_redis.hashes[key]["calls"] == 2
    assert store.get_usage(CODEX).calls == 2


@pytest.mark.asyncio
async def test_overlapping_writes_never_lower_the_local_view(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    first, second = asyncio.Event(), asyncio.Event()
    fake_redis.gates = [first, second]
    key = quota_key(CLAUDE, store.current_bucket())

    store.record_usage(CLAUDE, calls=1)
    store.record_usage(CLAUDE, calls=1)
    await asyncio.sleep(0)
    assert store.get_usage(CLAUDE).calls == 2

    first.set()
    for _ in range(20):
        if key in fake_redis.hashes:
            break
        await asyncio.sleep(0)
    assert fake_redis.hashes[key]["calls"] == 1
    # The remote total is 1 but the second write is still pending.
    assert store.get_usage(CLAUDE).calls == 2

    second.set()
    await store.wait_pending()
    assert fake_redis.hashes[key]["calls"] == 2
    assert store.get_usage(CLAUDE).calls == 2


@pytest.mark.asyncio
async def test_reads_see_other_processes_after_cache_expiry(clock, fake_redis):
    writer = UsageStore(fake_redis, clock=clock)
    reader = UsageStore(fake_redis, clock=clock, cache_ttl=1.0)

    assert (await reader.get_usage_async(CLAUDE)).calls == 0
    writer.record_usage(CLAUDE, calls=3)
    await writer.wait_pending()

    # Still inside the cache window.
    assert (await reader.get_usage_async(CLAUDE)).calls == 0
    assert fake_redis.hgetall_calls == 1

    clock.advance(1.5)
    assert (await reader.get_usage_async(CLAUDE)).calls == 3
    assert reader.get_usage(CLAUDE).calls == 3
    assert await reader.remaining_async(CLAUDE, 5) == 2


@pytest.mark.asyncio
async def test_read_failure_falls_back_to_local_view(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    fake_redis.fail = True
    store.record_usage(CLAUDE, calls=1)
    await store.wait_pending()
    clock.advance(5)
    assert (await store.get_usage_async(CLAUDE)).calls == 1


def test_shared_mode_without_running_loop_keeps_count(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    store.record_usage(CLAUDE, calls=1)
    assert store.get_usage(CLAUDE).calls == 1
    assert fake_redis.hashes == {}


@pytest.mark.asyncio
async def test_aclose_only_closes_owned_clients(fake_redis):
    await UsageStore(fake_redis).aclose()
    assert not fake_redis.closed
    await UsageStore(fake_redis, owns_client=True).aclose()
    assert fake_redis.closed


def test_init_usage_store_modes(fake_redis):
    assert not init_usage_store().shared
    assert init_usage_store(client=fake_redis).shared
    assert init_usage_store("redis://localhost:6379/0").shared
