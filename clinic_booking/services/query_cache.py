# clinic_booking/services/query_cache.py
"""
Read-side cache with in-flight de-duplication and bounded retry.

Values served from here are stale-tolerant hints: the booking path never
reads through this cache, it only invalidates keys after a write.
"""
from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import redis.asyncio as aioredis
from pydantic import TypeAdapter, ValidationError

from clinic_booking.core.errors import TransientError
from clinic_booking.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
Loader = Callable[[], Awaitable[T]]


@dataclass
class _Entry:
    value: Any
    stored_at: float
    ttl: float

    def fresh(self, now: float) -> bool:
        return (now - self.stored_at) < self.ttl


class QueryCache:
    """
    get(key, loader, ttl) -> value

    - fresh entries are returned without calling the loader
    - concurrent misses on one key share a single in-flight load
    - the loader is retried `retry_attempts` times with linear backoff
      (retry_delay * attempt); the last failure is raised as TransientError.
      pydantic ValidationErrors are raised at once, unretried
    - with a redis client and a TypeAdapter, values are also shared
      through Redis; Redis failures fall back to a direct load
    """

    def __init__(
        self,
        *,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        redis_client: Any = None,
        key_prefix: str = "clinic_booking:",
        clock: Callable[[], float] = time.monotonic,
    ):
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._hits = 0
        self._requests = 0

    async def get(
        self,
        key: str,
        loader: Loader,
        ttl: float,
        *,
        adapter: Optional[TypeAdapter] = None,
    ) -> Any:
        self._requests += 1
        now = self._clock()

        entry = self._entries.get(key)
        if entry is not None and entry.fresh(now):
            self._hits += 1
            logger.debug("cache_hit", key=key)
            return entry.value

        pending = self._pending.get(key)
        if pending is not None:
            logger.debug("cache_join_inflight", key=key)
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await self._load(key, loader, ttl, adapter)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Waiters re-raise it; mark retrieved so the loop doesn't warn
            future.exception()
            raise
        else:
            self._entries[key] = _Entry(value=value, stored_at=self._clock(), ttl=ttl)
            future.set_result(value)
            return value
        finally:
            self._pending.pop(key, None)

    async def _load(self, key: str, loader: Loader, ttl: float, adapter: Optional[TypeAdapter]) -> Any:
        if self.redis is not None and adapter is not None:
            cached = await self._redis_get(key, adapter)
            if cached is not None:
                self._hits += 1
                return cached

        logger.debug("cache_miss", key=key)
        value = await self._load_with_retry(key, loader)

        if self.redis is not None and adapter is not None:
            await self._redis_set(key, value, ttl, adapter)
        return value

    async def _load_with_retry(self, key: str, loader: Loader) -> Any:
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await loader()
            except ValidationError:
                # Deterministic, never retried
                raise
            except TransientError:
                if attempt == self.retry_attempts:
                    raise
            except Exception as e:
                if attempt == self.retry_attempts:
                    logger.error("cache_load_failed", key=key, attempts=attempt, error=str(e))
                    raise TransientError(f"Read of '{key}' failed after {attempt} attempts") from e
                logger.warning("cache_load_retry", key=key, attempt=attempt, error=str(e))
            await asyncio.sleep(self.retry_delay * attempt)
        raise TransientError(f"Read of '{key}' failed")

    async def _redis_get(self, key: str, adapter: TypeAdapter) -> Any:
        try:
            raw = await self.redis.get(self.key_prefix + key)
        except Exception as e:
            logger.warning("redis_get_failed", key=key, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return adapter.validate_json(raw)
        except ValueError as e:
            logger.warning("redis_value_invalid", key=key, error=str(e))
            return None

    async def _redis_set(self, key: str, value: Any, ttl: float, adapter: TypeAdapter) -> None:
        try:
            await self.redis.set(self.key_prefix + key, adapter.dump_json(value), ex=max(1, int(ttl)))
        except Exception as e:
            logger.warning("redis_set_failed", key=key, error=str(e))

    async def invalidate(self, key: Optional[str] = None, *, prefix: bool = False) -> int:
        """
        Drop `key`, or every key starting with it when `prefix` is set; all
        keys when None. Returns the number of local keys dropped.
        """
        if key is None:
            keys = list(self._entries)
        elif prefix:
            keys = [k for k in self._entries if k.startswith(key)]
        else:
            keys = [key] if key in self._entries else []
        for k in keys:
            self._entries.pop(k, None)

        if self.redis is not None:
            try:
                if key is not None and not prefix:
                    await self.redis.delete(self.key_prefix + key)
                else:
                    match = f"{_glob_escape(self.key_prefix + (key or ''))}*"
                    async for redis_key in self.redis.scan_iter(match=match):
                        await self.redis.delete(redis_key)
            except Exception as e:
                logger.warning("redis_invalidate_failed", key=key, prefix=prefix, error=str(e))
        return len(keys)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        expired = sum(1 for e in self._entries.values() if not e.fresh(now))
        return {
            "size": len(self._entries),
            "expired": expired,
            "pending": len(self._pending),
            "hit_rate": round(self._hits / self._requests, 3) if self._requests else 0.0,
        }


def _glob_escape(text: str) -> str:
    return re.sub(r"([*?\[\]\\])", r"\\\1", text)


def build_query_cache(settings) -> QueryCache:
    """Cache wired from application settings; Redis only when REDIS_URL is set."""
    redis_client = None
    if settings.REDIS_URL:
        redis_client = aioredis.from_url(settings.REDIS_URL, socket_timeout=2.0)
        logger.info("query_cache_redis_enabled")
    return QueryCache(
        retry_attempts=settings.CACHE_RETRY_ATTEMPTS,
        retry_delay=settings.CACHE_RETRY_DELAY_SECONDS,
        redis_client=redis_client,
    )
