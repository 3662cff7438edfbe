"""Hourly usage counters for subscription providers.

Counters live in hour buckets (``floor(unix_time / 3600)``). When the clock
crosses into a new hour the previous bucket is simply abandoned; nothing is
ever reset explicitly.

Two backends are supported:

* Shared mode (a ``redis.asyncio`` client is configured): increments are
  ``HINCRBY`` calls on ``quota:{provider}:{bucket}`` with a two-bucket expiry.
  A local cache mirrors the last remote read for ``cache_ttl`` seconds so the
  synchronous quota checks never touch the network.
* Fallback mode (no client): an in-process counter per provider.

Writes are two-phase. ``record_usage`` applies the increment to the local
view immediately, then schedules the durable ``HINCRBY`` as a background
task. If that write fails the increment is kept as unsynced local truth and
replayed on the next successful write. Increments still in flight are added
back whenever a remote total replaces the cache, so the local view may
briefly over-count while writes land but never drops below what this
process has recorded. Cross-process reads can lag by up to ``cache_ttl``.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from redis import asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600
KEY_TTL_SECONDS = 2 * HOUR_SECONDS
DEFAULT_CACHE_TTL_SECONDS = 1.0

CLAUDE = "claude"
CODEX = "codex"
QUOTA_PROVIDERS: tuple[str, ...] = (CLAUDE, CODEX)


@dataclass
class UsageCounts:
    """Per-hour counters for one provider."""

    calls: int = 0
    searches: int = 0
    thinking_tokens: int = 0

    def __add__(self, other: "UsageCounts") -> "UsageCounts":
        return UsageCounts(
            calls=self.calls + other.calls,
            searches=self.searches + other.searches,
            thinking_tokens=self.thinking_tokens + other.thinking_tokens,
        )

    def is_empty(self) -> bool:
        return not (self.calls or self.searches or self.thinking_tokens)

    def as_dict(self) -> dict[str, int]:
        return {field.name: getattr(self, field.name) for field in fields(self)}

    @classmethod
    def from_hash(cls, raw: Mapping[Any, Any] | None) -> "UsageCounts":
        """Parse an ``HGETALL`` reply, tolerating bytes keys and junk values."""

        counts = cls()
        for key, value in (raw or {}).items():
            name = key.decode() if isinstance(key, bytes) else str(key)
            if name not in ("calls", "searches", "thinking_tokens"):
                continue
            try:
                parsed = int(value)
            except (TypeError, ValueError):
                continue
            setattr(counts, name, max(0, parsed))
        return counts


@dataclass
class _Snapshot:
    bucket: int
    counts: UsageCounts
    fetched_at: float


def hour_bucket(timestamp: float) -> int:
    return int(math.floor(timestamp / HOUR_SECONDS))


def quota_key(provider: str, bucket: int) -> str:
    return f"quota:{provider}:{bucket}"


class UsageStore:
    """Explicit usage state, injected wherever quota is read or recorded."""

    def __init__(
        self,
        redis: aioredis.Redis | None = None,
        *,
        clock: Callable[[], float] = time.time,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        owns_client: bool = False,
    ) -> None:
        self._redis = redis
        self._clock = clock
        self._cache_ttl = cache_ttl
        self._owns_client = owns_client
        # Counts not confirmed by the shared store. In fallback mode this is everything.
        self._local: dict[str, tuple[int, UsageCounts]] = {}
        # Counts handed to a background write that has not finished yet.
        self._in_flight: dict[str, tuple[int, UsageCounts]] = {}
        self._cache: dict[str, _Snapshot] = {}
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def shared(self) -> bool:
        return self._redis is not None

    def current_bucket(self) -> int:
        return hour_bucket(self._clock())

    def reset_at(self) -> datetime:
        """Start of the next hour bucket, when current counters stop applying."""

        return datetime.fromtimestamp((self.current_bucket() + 1) * HOUR_SECONDS, tz=timezone.utc)

    # writes

    def record_usage(
        self,
        provider: str,
        *,
        calls: int = 0,
        searches: int = 0,
        thinking_tokens: int = 0,
    ) -> None:
        """Count usage against the current hour without waiting on the network."""

        if min(calls, searches, thinking_tokens) < 0:
            raise ValueError("usage increments must be non-negative")
        delta = UsageCounts(calls=calls, searches=searches, thinking_tokens=thinking_tokens)
        if delta.is_empty():
            return
        bucket = self.current_bucket()

        if self._redis is None:
            self._add_local(provider, bucket, delta)
            return

        snapshot = self._cache.get(provider)
        if snapshot is not None and snapshot.bucket == bucket:
            snapshot.counts = snapshot.counts + delta
        else:
            # Unknown remote total; mark stale so the next async read refreshes it.
            self._cache[provider] = _Snapshot(
                bucket=bucket,
                counts=self._unconfirmed(provider, bucket) + delta,
                fetched_at=float("-inf"),
            )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._add_local(provider, bucket, delta)
            return
        _bump(self._in_flight, provider, bucket, delta)
        task = loop.create_task(self._flush(provider, bucket, delta))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _flush(self, provider: str, bucket: int, delta: UsageCounts) -> None:
        assert self._redis is not None
        replay = self._take_local(provider, bucket)
        _bump(self._in_flight, provider, bucket, replay)
        total = delta + replay
        key = quota_key(provider, bucket)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for name, value in total.as_dict().items():
                    if value:
                        pipe.hincrby(key, name, value)
                pipe.expire(key, KEY_TTL_SECONDS, nx=True)
                pipe.hgetall(key)
                results = await pipe.execute()
        except (RedisError, OSError) as exc:
            _drop(self._in_flight, provider, bucket, total)
            logger.warning(
                "quota_flush_failed provider=%s bucket=%s calls=%s error=%s",
                provider,
                bucket,
                total.calls,
                exc,
            )
            self._add_local(provider, bucket, total)
            return

        _drop(self._in_flight, provider, bucket, total)
        if bucket != self.current_bucket():
            return
        remote = UsageCounts.from_hash(results[-1])
        self._cache[provider] = _Snapshot(
            bucket=bucket,
            counts=remote + self._unconfirmed(provider, bucket),
            fetched_at=self._clock(),
        )

    # reads

    def get_usage(self, provider: str) -> UsageCounts:
        """Synchronous view: fresh or last-known cache, else local counts."""

        bucket = self.current_bucket()
        if self._redis is not None:
            snapshot = self._cache.get(provider)
            if snapshot is not None and snapshot.bucket == bucket:
                return UsageCounts(**snapshot.counts.as_dict())
        return UsageCounts(**self._local_counts(provider, bucket).as_dict())

    async def get_usage_async(self, provider: str) -> UsageCounts:
        """Read through to the shared store when the cache is stale."""

        if self._redis is None:
            return self.get_usage(provider)
        bucket = self.current_bucket()
        snapshot = self._cache.get(provider)
        now = self._clock()
        if snapshot is not None and snapshot.bucket == bucket and now - snapshot.fetched_at < self._cache_ttl:
            return UsageCounts(**snapshot.counts.as_dict())
        try:
            raw = await self._redis.hgetall(quota_key(provider, bucket))
        except (RedisError, OSError) as exc:
            logger.warning("quota_read_failed provider=%s bucket=%s error=%s", provider, bucket, exc)
            return self.get_usage(provider)
        counts = UsageCounts.from_hash(raw) + self._unconfirmed(provider, bucket)
        self._cache[provider] = _Snapshot(bucket=bucket, counts=counts, fetched_at=now)
        return UsageCounts(**counts.as_dict())

    def remaining(self, provider: str, limit: int) -> int:
        return max(0, limit - self.get_usage(provider).calls)

    async def remaining_async(self, provider: str, limit: int) -> int:
        usage = await self.get_usage_async(provider)
        return max(0, limit - usage.calls)

    def can_use(self, provider: str, limit: int) -> bool:
        return self.get_usage(provider).calls < limit

    # lifecycle

    async def wait_pending(self) -> None:
        """Wait for in-flight background writes."""

        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def aclose(self) -> None:
        await self.wait_pending()
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()

    # local counters

    def _local_counts(self, provider: str, bucket: int) -> UsageCounts:
        entry = self._local.get(provider)
        if entry is None or entry[0] != bucket:
            return UsageCounts()
        return entry[1]

    def _add_local(self, provider: str, bucket: int, delta: UsageCounts) -> None:
        if bucket != self.current_bucket():
            return
        self._local[provider] = (bucket, self._local_counts(provider, bucket) + delta)

    def _unconfirmed(self, provider: str, bucket: int) -> UsageCounts:
        """Local counts the last remote total cannot include yet."""
        counts = self._local_counts(provider, bucket)
        entry = self._in_flight.get(provider)
        if entry is not None and entry[0] == bucket:
            counts = counts + entry[1]
        return counts

    def _take_local(self, provider: str, bucket: int) -> UsageCounts:
        entry = self._local.get(provider)
        if entry is None or entry[0] != bucket:
            return UsageCounts()
        del self._local[provider]
        return entry[1]


def _bump(table: dict[str, tuple[int, UsageCounts]], provider: str, bucket: int, delta: UsageCounts) -> None:
    entry = table.get(provider)
    base = entry[1] if entry is not None and entry[0] == bucket else UsageCounts()
    table[provider] = (bucket, base + delta)


def _drop(table: dict[str, tuple[int, UsageCounts]], provider: str, bucket: int, delta: UsageCounts) -> None:
    entry = table.get(provider)
    if entry is None or entry[0] != bucket:
        return
    left = UsageCounts(
        calls=max(0, entry[1].calls - delta.calls),
        searches=max(0, entry[1].searches - delta.searches),
        thinking_tokens=max(0, entry[1].thinking_tokens - delta.thinking_tokens),
    )
    if left.is_empty():
        del table[provider]
    else:
        table[provider] = (bucket, left)


def init_usage_store(
    redis_url: str | None = None,
    *,
    client: aioredis.Redis | None = None,
    clock: Callable[[], float] = time.time,
    cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
) -> UsageStore:
    """Build a usage store, shared when a client or URL is supplied."""

    if client is not None:
        logger.info("quota_store mode=shared source=client")
        return UsageStore(client, clock=clock, cache_ttl=cache_ttl)
    if redis_url:
        logger.info("quota_store mode=shared source=url")
        redis = aioredis.from_url(redis_url, decode_responses=True)
        return UsageStore(redis, clock=clock, cache_ttl=cache_ttl, owns_client=True)
    logger.info("quota_store mode=memory")
    return UsageStore(None, clock=clock, cache_ttl=cache_ttl)


__all__ = [
    "CLAUDE",
    "CODEX",
    "HOUR_SECONDS",
    "KEY_TTL_SECONDS",
    "QUOTA_PROVIDERS",
    "UsageCounts",
    "UsageStore",
    "hour_bucket",
    "init_usage_store",
    "quota_key",
]
