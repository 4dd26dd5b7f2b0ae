#!/usr/bin/env python3
"""
Tests for the read-side query cache: TTL, in-flight de-duplication,
retry with backoff and the optional Redis tier.
"""

import asyncio
import pytest
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

from pydantic import TypeAdapter, ValidationError

from clinic_booking.core.errors import TransientError
from clinic_booking.services.query_cache import QueryCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def counting_loader(value="v"):
    calls = {"n": 0}

    async def loader():
        calls["n"] += 1
        return value
    return loader, calls


@pytest.fixture
def clock():
    return FakeClock()


@pytest.mark.unit
class TestTTL:
    async def test_fresh_entry_skips_loader(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, calls = counting_loader()

        assert await cache.get("k", loader, ttl=60) == "v"
        clock.advance(59)
        assert await cache.get("k", loader, ttl=60) == "v"
        assert calls["n"] == 1

    async def test_expired_entry_reloads(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, calls = counting_loader()

        await cache.get("k", loader, ttl=60)
        clock.advance(60)
        await cache.get("k", loader, ttl=60)
        assert calls["n"] == 2

    async def test_invalidate_by_prefix(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, calls = counting_loader()
        await cache.get("appointments:c1:2026-10-19", loader, ttl=60)
        await cache.get("appointments:c1:2026-10-20", loader, ttl=60)
        await cache.get("appointments:c10:2026-10-19", loader, ttl=60)
        await cache.get("settings:c1", loader, ttl=60)

        assert await cache.invalidate("appointments:c1:", prefix=True) == 2
        assert cache.stats()["size"] == 2

        await cache.get("settings:c1", loader, ttl=60)
        await cache.get("appointments:c10:2026-10-19", loader, ttl=60)
        assert calls["n"] == 4

    async def test_invalidate_single_key_is_exact(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, calls = counting_loader()
        await cache.get("settings:c1", loader, ttl=60)
        await cache.get("settings:c10", loader, ttl=60)

        assert await cache.invalidate("settings:c1") == 1
        assert await cache.invalidate("settings:c1") == 0

        await cache.get("settings:c10", loader, ttl=60)
        assert calls["n"] == 2

    async def test_invalidate_everything(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, _ = counting_loader()
        await cache.get("a", loader, ttl=60)
        await cache.get("b", loader, ttl=60)
        assert await cache.invalidate() == 2
        assert cache.stats()["size"] == 0

    async def test_stats(self, clock):
        cache = QueryCache(retry_delay=0, clock=clock)
        loader, _ = counting_loader()
        await cache.get("k", loader, ttl=10)
        await cache.get("k", loader, ttl=10)
        clock.advance(11)

        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["expired"] == 1
        assert stats["pending"] == 0
        assert stats["hit_rate"] == 0.5


@pytest.mark.unit
class TestInflightDedup:
    async def test_concurrent_misses_share_one_load(self):
        cache = QueryCache(retry_delay=0)
        gate = asyncio.Event()
        calls = {"n": 0}

        async def loader():
            calls["n"] += 1
            await gate.wait()
            return ["09:00 AM - 09:30 AM"]

        tasks = [asyncio.create_task(cache.get("k", loader, ttl=60)) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks)

        assert calls["n"] == 1
        assert all(r == ["09:00 AM - 09:30 AM"] for r in results)
        assert cache.stats()["pending"] == 0

    async def test_waiters_see_the_same_failure(self):
        cache = QueryCache(retry_attempts=1, retry_delay=0)
        gate = asyncio.Event()

        async def loader():
            await gate.wait()
            raise ConnectionError("db gone")

        tasks = [asyncio.create_task(cache.get("k", loader, ttl=60)) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, TransientError) for r in results)
        assert cache.stats()["pending"] == 0


@pytest.mark.unit
class TestRetry:
    async def test_recovers_after_transient_failures(self):
        cache = QueryCache(retry_attempts=3, retry_delay=1.0)
        attempts = {"n": 0}

        async def flaky():
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise ConnectionError("reset by peer")
            return "ok"

        with patch("clinic_booking.services.query_cache.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await cache.get("k", flaky, ttl=60) == "ok"

        assert attempts["n"] == 3
        # Linear backoff: delay * attempt
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_exhausted_retries_raise_transient_error(self):
        cache = QueryCache(retry_attempts=3, retry_delay=0.5)
        attempts = {"n": 0}

        async def broken():
            attempts["n"] += 1
            raise TimeoutError("read timeout")

        with patch("clinic_booking.services.query_cache.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(TransientError) as exc_info:
                await cache.get("k", broken, ttl=60)

        assert attempts["n"] == 3
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        # Failures are not cached
        assert cache.stats()["size"] == 0

    async def test_validation_errors_are_not_retried(self):
        cache = QueryCache(retry_attempts=3, retry_delay=1.0)
        attempts = {"n": 0}

        async def malformed():
            attempts["n"] += 1
            return TypeAdapter(int).validate_python("not a number")

        with patch("clinic_booking.services.query_cache.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ValidationError):
                await cache.get("k", malformed, ttl=60)

        assert attempts["n"] == 1
        sleep.assert_not_awaited()
        assert cache.stats()["pending"] == 0

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            QueryCache(retry_attempts=0)


def fake_redis(stored=None):
    redis = MagicMock()
    redis.get = AsyncMock(return_value=stored)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)

    redis.scanned = []

    async def scan_iter(match=None):
        redis.scanned.append(match)
        for key in [b"clinic_booking:appointments:c1:2026-10-19"]:
            yield key
    redis.scan_iter = scan_iter
    return redis


@pytest.mark.unit
class TestRedisTier:
    async def test_value_from_redis_skips_loader(self):
        redis = fake_redis(stored=b'["09:00 AM - 09:30 AM"]')
        cache = QueryCache(retry_delay=0, redis_client=redis)
        loader, calls = counting_loader(["never"])

        value = await cache.get("k", loader, ttl=60, adapter=TypeAdapter(List[str]))

        assert value == ["09:00 AM - 09:30 AM"]
        assert calls["n"] == 0
        redis.get.assert_awaited_once_with("clinic_booking:k")

    async def test_miss_is_written_back_with_ttl(self):
        redis = fake_redis()
        cache = QueryCache(retry_delay=0, redis_client=redis)
        loader, _ = counting_loader(["a"])

        await cache.get("k", loader, ttl=120, adapter=TypeAdapter(List[str]))

        redis.set.assert_awaited_once()
        args, kwargs = redis.set.await_args
        assert args[0] == "clinic_booking:k"
        assert kwargs["ex"] == 120

    async def test_redis_failure_falls_back_to_loader(self):
        redis = fake_redis()
        redis.get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = QueryCache(retry_delay=0, redis_client=redis)
        loader, calls = counting_loader(["a"])

        assert await cache.get("k", loader, ttl=60, adapter=TypeAdapter(List[str])) == ["a"]
        assert calls["n"] == 1

    async def test_without_adapter_redis_is_bypassed(self):
        redis = fake_redis()
        cache = QueryCache(retry_delay=0, redis_client=redis)
        loader, _ = counting_loader()

        await cache.get("k", loader, ttl=60)
        redis.get.assert_not_awaited()
        redis.set.assert_not_awaited()

    async def test_invalidate_prefix_clears_redis_keys(self):
        redis = fake_redis()
        cache = QueryCache(retry_delay=0, redis_client=redis)
        await cache.invalidate("appointments:c1:", prefix=True)
        assert redis.scanned == ["clinic_booking:appointments:c1:*"]
        redis.delete.assert_awaited_once_with(b"clinic_booking:appointments:c1:2026-10-19")

    async def test_invalidate_key_deletes_only_that_redis_key(self):
        redis = fake_redis()
        cache = QueryCache(retry_delay=0, redis_client=redis)
        await cache.invalidate("settings:c1")
        assert redis.scanned == []
        redis.delete.assert_awaited_once_with("clinic_booking:settings:c1")
