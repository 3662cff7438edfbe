import pytest

from aharadar.libs.quota.gate import QuotaLimits
from aharadar.libs.quota.status import get_quota_status, get_quota_status_async
from aharadar.libs.quota.store import CLAUDE, CODEX, UsageStore, quota_key


def test_status_reports_both_providers(clock):
    store = UsageStore(clock=clock)
    store.record_usage(CLAUDE, calls=12)
    store.record_usage(CODEX, calls=30)

    status = get_quota_status(store, QuotaLimits(claude_calls_per_hour=50))

    assert (status.claude.used, status.claude.limit, status.claude.remaining) == (12, 50, 38)
    assert (status.codex.used, status.codex.limit, status.codex.remaining) == (30, 25, 0)
    assert status.claude.reset_at == store.reset_at()
    assert status.model_dump()["codex"]["remaining"] == 0


@pytest.mark.asyncio
async def test_async_status_reads_shared_store(clock, fake_redis):
    store = UsageStore(fake_redis, clock=clock)
    fake_redis.hashes[quota_key(CLAUDE, store.current_bucket())] = {"calls": 4}

    status = await get_quota_status_async(store)

    assert status.claude.used == 4
    assert status.claude.remaining == 96
    assert status.codex.used == 0
