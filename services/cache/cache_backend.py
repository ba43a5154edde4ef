# services/cache/cache_backend.py
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import redis as redis_sync
from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from config.settings import Settings
from models.cache_entry import CacheEntry

logger = logging.getLogger(__name__)

# -------------------------
# Types
# -------------------------
JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]
Clock = Callable[[], float]

DEFAULT_TTL_SEC = 300


def _dumps(payload: JsonValue) -> str:
    return json.dumps(payload, separators=(",", ":"))


def _to_naive_utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class CacheBackend:
    """
    Capability interface shared by every backend.

    Keys arrive already normalized (see services.cache.keys.normalize_key).
    Implementations never raise on storage failure: reads degrade to a miss,
    writes are skipped, and the error is logged.
    """

    name = "base"
    needs_sweep = False

    def get(self, key: str) -> Optional[JsonValue]:
        raise NotImplementedError

    def set(self, key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_prefix(self, prefix: str) -> int:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def cleanup(self) -> int:
        """Purge expired entries. Returns how many were removed."""
        return 0

    def close(self) -> None:
        return None


# -------------------------
# In-process map
# -------------------------
class MemoryCacheBackend(CacheBackend):
    name = "memory"
    needs_sweep = True

    def __init__(self, clock: Clock = time.time):
        # store: key -> (expires_at_epoch, payload)
        self._store: Dict[str, Tuple[float, JsonValue]] = {}
        self._clock = clock

    def get(self, key: str) -> Optional[JsonValue]:
        hit = self._store.get(key)
        if not hit:
            return None
        expires_at, payload = hit
        if self._clock() < expires_at:
            return payload
        self._store.pop(key, None)
        return None

    def set(self, key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
        self._store[key] = (self._clock() + ttl_seconds, payload)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._store if k.startswith(prefix)]
        for k in doomed:
            self._store.pop(k, None)
        return len(doomed)

    def clear(self) -> None:
        self._store.clear()

    def cleanup(self) -> int:
        now = self._clock()
        expired = [k for k, (expires_at, _) in self._store.items() if expires_at <= now]
        for k in expired:
            self._store.pop(k, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._store)


# -------------------------
# Persistent table
# -------------------------
class DatabaseCacheBackend(CacheBackend):
    name = "database"
    needs_sweep = True

    def __init__(self, session_factory: sessionmaker, clock: Clock = time.time):
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        return _to_naive_utc(self._clock())

    def get(self, key: str) -> Optional[JsonValue]:
        try:
            with self._session_factory() as db:
                entry = db.get(CacheEntry, key)
                if entry is None:
                    return None
                if entry.expires_at <= self._now():
                    db.delete(entry)
                    db.commit()
                    return None
                return json.loads(entry.value)
        except Exception as exc:
            logger.warning("cache get failed backend=database key=%s err=%s", key, exc)
            return None

    def set(self, key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
        try:
            now = self._clock()
            serialized = _dumps(payload)
            with self._session_factory() as db:
                entry = db.get(CacheEntry, key)
                if entry is None:
                    entry = CacheEntry(key=key, created_at=_to_naive_utc(now))
                    db.add(entry)
                entry.value = serialized
                entry.expires_at = _to_naive_utc(now + ttl_seconds)
                db.commit()
        except Exception as exc:
            logger.warning("cache set failed backend=database key=%s err=%s", key, exc)

    def delete(self, key: str) -> None:
        try:
            with self._session_factory() as db:
                db.execute(delete(CacheEntry).where(CacheEntry.key == key))
                db.commit()
        except Exception as exc:
            logger.warning("cache delete failed backend=database key=%s err=%s", key, exc)

    def delete_prefix(self, prefix: str) -> int:
        try:
            with self._session_factory() as db:
                result = db.execute(delete(CacheEntry).where(CacheEntry.key.startswith(prefix, autoescape=True)))
                db.commit()
                return result.rowcount or 0
        except Exception as exc:
            logger.warning("cache delete_prefix failed backend=database prefix=%s err=%s", prefix, exc)
            return 0

    def clear(self) -> None:
        try:
            with self._session_factory() as db:
                db.execute(delete(CacheEntry))
                db.commit()
        except Exception as exc:
            logger.warning("cache clear failed backend=database err=%s", exc)

    def has(self, key: str) -> bool:
        try:
            with self._session_factory() as db:
                count = db.scalar(
                    select(func.count())
                    .select_from(CacheEntry)
                    .where(CacheEntry.key == key, CacheEntry.expires_at > self._now())
                )
                return bool(count)
        except Exception as exc:
            logger.warning("cache has failed backend=database key=%s err=%s", key, exc)
            return False

    def cleanup(self) -> int:
        try:
            with self._session_factory() as db:
                result = db.execute(delete(CacheEntry).where(CacheEntry.expires_at <= self._now()))
                db.commit()
                return result.rowcount or 0
        except Exception as exc:
            logger.warning("cache cleanup failed backend=database err=%s", exc)
            return 0


# -------------------------
# Redis (shared across instances)
# -------------------------
class RedisCacheBackend(CacheBackend):
    """SETEX-based backend. Redis expires keys itself, so no sweep is needed."""

    name = "redis"
    needs_sweep = False

    def __init__(self, client: "redis_sync.Redis", prefix: str = ""):
        self._r = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> "RedisCacheBackend":
        client = redis_sync.from_url(
            url,
            decode_responses=True,  # returns str for GET
            socket_timeout=2,
            socket_connect_timeout=2,
        )
        return cls(client, prefix=prefix)

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[JsonValue]:
        try:
            raw = self._r.get(self._k(key))
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as exc:
            logger.warning("cache get failed backend=redis key=%s err=%s", key, exc)
            return None

    def set(self, key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
        try:
            self._r.setex(self._k(key), max(1, int(ttl_seconds)), _dumps(payload))
        except Exception as exc:
            logger.warning("cache set failed backend=redis key=%s err=%s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self._r.delete(self._k(key))
        except Exception as exc:
            logger.warning("cache delete failed backend=redis key=%s err=%s", key, exc)

    def delete_prefix(self, prefix: str) -> int:
        try:
            keys = list(self._r.scan_iter(match=f"{self._k(prefix)}*"))
            if not keys:
                return 0
            return int(self._r.delete(*keys))
        except Exception as exc:
            logger.warning("cache delete_prefix failed backend=redis prefix=%s err=%s", prefix, exc)
            return 0

    def clear(self) -> None:
        self.delete_prefix("")

    def has(self, key: str) -> bool:
        try:
            return bool(self._r.exists(self._k(key)))
        except Exception as exc:
            logger.warning("cache has failed backend=redis key=%s err=%s", key, exc)
            return False

    def close(self) -> None:
        try:
            self._r.close()
        except Exception as exc:
            logger.warning("redis close failed err=%s", exc)


def build_cache_backend(settings: Settings, session_factory: sessionmaker) -> CacheBackend:
    """Pick the backend once at startup."""
    if settings.cache_backend == "redis":
        if not settings.redis_url:
            raise RuntimeError("CACHE_BACKEND=redis requires REDIS_URL")
        backend: CacheBackend = RedisCacheBackend.from_url(settings.redis_url, prefix=settings.redis_prefix)
    elif settings.cache_backend == "database":
        backend = DatabaseCacheBackend(session_factory)
    else:
        backend = MemoryCacheBackend()

    logger.info("cache backend selected backend=%s", backend.name)
    return backend
