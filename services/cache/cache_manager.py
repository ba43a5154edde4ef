# services/cache/cache_manager.py
from __future__ import annotations

import asyncio
import inspect
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from services.cache.cache_backend import CacheBackend, JsonValue
from services.cache.cache_utils import should_cache_any_json, to_json_value
from services.cache.keys import normalize_key

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheManager:
    """
    Front door to the configured backend. Normalizes every key and
    JSON round-trips every value before it is stored.

    No single-flight: concurrent misses on the same key each run the producer,
    and the last write wins.
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    def get(self, key: str) -> Optional[JsonValue]:
        k = normalize_key(key)
        if not k:
            return None
        return self.backend.get(k)

    def set(self, key: str, value: Any, ttl: int) -> None:
        k = normalize_key(key)
        if not k:
            return
        try:
            payload = to_json_value(value)
        except (TypeError, ValueError) as exc:
            logger.warning("cache value not serializable key=%s err=%s", k, exc)
            return
        self.backend.set(k, payload, ttl_seconds=int(ttl))

    def delete(self, key: str) -> None:
        k = normalize_key(key)
        if k:
            self.backend.delete(k)

    def has(self, key: str) -> bool:
        k = normalize_key(key)
        return bool(k) and self.backend.has(k)

    def clear(self) -> None:
        self.backend.clear()

    def invalidate_prefix(self, prefix: str) -> int:
        p = normalize_key(prefix)
        if not p:
            return 0
        removed = self.backend.delete_prefix(p)
        logger.debug("cache invalidated prefix=%s removed=%d", p, removed)
        return removed

    def cleanup(self) -> int:
        return self.backend.cleanup()

    async def get_or_set(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: int,
        should_cache: Callable[[Any], bool] = should_cache_any_json,
    ) -> Any:
        """Return the cached value, or run `producer`, store its result and return it."""
        hit = self.get(key)
        if hit is not None:
            return hit

        val = await producer()
        if should_cache(val):
            self.set(key, val, ttl)
            # Callers see the same shape on a miss as on a hit
            return to_json_value(val)
        return val

    def with_cache(
        self,
        fn: Callable[..., Any],
        key_fn: Callable[..., str],
        ttl: int,
        should_cache: Callable[[Any], bool] = should_cache_any_json,
    ) -> Callable[..., Awaitable[Any]]:
        """
        Wrap `fn` (sync or async) so calls go through get_or_set. `key_fn`
        receives the same arguments as `fn`; an empty key bypasses the cache.

            cached_quote = cache.with_cache(gateway._resolve_quote, quote_key, TTL_QUOTE_SEC)
            await cached_quote("AAPL")
        """

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = (key_fn(*args, **kwargs) or "").strip()

            async def produce() -> Any:
                val = fn(*args, **kwargs)
                if inspect.isawaitable(val):
                    val = await val
                return val

            if not key:
                return await produce()
            return await self.get_or_set(key, produce, ttl, should_cache=should_cache)

        return wrapper


class CacheSweeper:
    """Background task purging expired entries every `interval_sec`."""

    def __init__(self, cache: CacheManager, interval_sec: int = 3600):
        self.cache = cache
        self.interval_sec = max(1, int(interval_sec))
        self._task: Optional[asyncio.Task] = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            try:
                removed = await asyncio.to_thread(self.cache.cleanup)
                if removed:
                    logger.info("cache sweep removed=%d", removed)
            except Exception:
                logger.exception("cache sweep failed")

    def start(self) -> None:
        if not self.cache.backend.needs_sweep or self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name="cache-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
