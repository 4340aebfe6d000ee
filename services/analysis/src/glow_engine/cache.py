"""
Result cache with TTL and version checks.

Usage:
    cache = ResultCache(MemoryCacheBackend(), ttl_ms=24 * 60 * 60 * 1000)

    cached = await cache.get(cache_key(fingerprint, AnalysisKind.FACE))
    if cached is None:
        result = await analyse(...)
        await cache.set(cache_key(fingerprint, AnalysisKind.FACE), result.model_dump(mode="json"))

Entries past ``expires_at`` or written under another version are logically
absent: ``get`` evicts them and reports a miss. A periodic sweep reclaims
entries that are never read again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

import redis
import redis.asyncio as aioredis

from glow_common.config import Settings

from .metrics import CACHE_LOOKUPS
from .types import AnalysisKind

logger = logging.getLogger(__name__)

CACHE_VERSION = "1"
DEFAULT_TTL_MS = 24 * 60 * 60 * 1000


def cache_key(fingerprint: str, kind: AnalysisKind) -> str:
    return f"{fingerprint}_{kind.value}"


def seen_key(fingerprint: str) -> str:
    return f"{fingerprint}_seen"


@dataclass
class CacheEntry:
    data: Any
    created_at: float
    expires_at: float
    version: str

    def is_live(self, now: float, version: str) -> bool:
        return now <= self.expires_at and self.version == version

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CacheEntry":
        return cls(
            data=payload["data"],
            created_at=float(payload["created_at"]),
            expires_at=float(payload["expires_at"]),
            version=str(payload["version"]),
        )


@dataclass
class CacheStats:
    """Cache statistics for monitoring"""
    entry_count: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    ttl_ms: int
    version: str


class CacheBackend(ABC):
    """Key-value store holding serialised ``CacheEntry`` records."""

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]: ...

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def keys(self) -> List[str]: ...

    @abstractmethod
    async def clear(self) -> int: ...

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """Process-local backend; the map is guarded for multi-threaded hosts."""

    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    async def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count


class RedisCacheBackend(CacheBackend):
    """Redis backend; entries also carry a native TTL so Redis reclaims them.

    Redis failures degrade to cache misses instead of failing the analysis.
    """

    PREFIX = "glowcheck:result:"

    def __init__(self, redis_url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        self._client = client or aioredis.from_url(
            redis_url or "redis://localhost:6379/0",
            decode_responses=True,
            socket_connect_timeout=1.0,
            socket_timeout=1.0,
        )

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._client.get(self._key(key))
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable for cache get, treating as miss: {exc}")
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Corrupt cache entry {key}, dropping: {exc}")
            await self.delete(key)
            return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        ttl_ms = max(1, int((entry.expires_at - entry.created_at) * 1000))
        try:
            await self._client.set(self._key(key), json.dumps(entry.to_dict()), px=ttl_ms)
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable for cache set, skipping: {exc}")

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._client.delete(self._key(key)))
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable for cache delete: {exc}")
            return False

    async def keys(self) -> List[str]:
        try:
            return [
                key[len(self.PREFIX):]
                async for key in self._client.scan_iter(match=f"{self.PREFIX}*")
            ]
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable for cache scan: {exc}")
            return []

    async def clear(self) -> int:
        keys = await self.keys()
        if not keys:
            return 0
        try:
            return int(await self._client.delete(*(self._key(k) for k in keys)))
        except redis.RedisError as exc:
            logger.warning(f"Redis unavailable for cache clear: {exc}")
            return 0

    async def close(self) -> None:
        await self._client.aclose()


class ResultCache:
    """
    TTL- and version-keyed store for analysis results.

    Features:
    - Lazy eviction of expired or stale-version entries on read
    - Periodic sweep for entries that are never read again
    - Hit/miss tracking for observability
    - Injectable clock (seconds) for deterministic tests
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        version: str = CACHE_VERSION,
        ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend or MemoryCacheBackend()
        self.version = version
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweeper: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ResultCache":
        if settings.cache_backend == "redis":
            backend: CacheBackend = RedisCacheBackend(settings.redis_url)
        else:
            backend = MemoryCacheBackend()
        kwargs.setdefault("version", settings.app_version)
        return cls(backend, ttl_ms=settings.cache_ttl_ms, **kwargs)

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached data, or None if absent, expired or stale."""
        entry = await self.backend.get(key)
        if entry is None:
            self._record(False)
            return None
        if not entry.is_live(self._clock(), self.version):
            await self.backend.delete(key)
            self._evictions += 1
            self._record(False)
            logger.debug(f"Evicted cache entry {key}")
            return None
        self._record(True)
        return entry.data

    async def set(
        self,
        key: str,
        data: Any,
        expires_in_ms: Optional[int] = None,
        version: Optional[str] = None,
    ) -> CacheEntry:
        now = self._clock()
        ttl_ms = self.ttl_ms if expires_in_ms is None else expires_in_ms
        entry = CacheEntry(
            data=data,
            created_at=now,
            expires_at=now + ttl_ms / 1000,
            version=self.version if version is None else version,
        )
        await self.backend.set(key, entry)
        return entry

    async def delete(self, key: str) -> bool:
        return await self.backend.delete(key)

    async def clear(self) -> int:
        count = await self.backend.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    async def size(self) -> int:
        return len(await self.backend.keys())

    async def mark_seen(self, fingerprint: str) -> None:
        await self.set(seen_key(fingerprint), True)

    async def was_seen(self, fingerprint: str) -> bool:
        entry = await self.backend.get(seen_key(fingerprint))
        return entry is not None and entry.is_live(self._clock(), self.version)

    async def sweep(self) -> int:
        """Evict every expired or stale-version entry; returns the eviction count."""
        now = self._clock()
        evicted = 0
        for key in await self.backend.keys():
            entry = await self.backend.get(key)
            if entry is not None and not entry.is_live(now, self.version):
                if await self.backend.delete(key):
                    evicted += 1
        self._evictions += evicted
        if evicted:
            logger.info(f"Cache sweep evicted {evicted} entries")
        return evicted

    def start_sweeper(self, interval_s: float) -> asyncio.Task:
        """Run ``sweep`` every ``interval_s`` seconds until stopped."""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_s)
                try:
                    await self.sweep()
                except redis.RedisError as exc:
                    logger.warning(f"Cache sweep failed: {exc}")

        self._sweeper = asyncio.create_task(_loop())
        return self._sweeper

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        await asyncio.gather(self._sweeper, return_exceptions=True)
        self._sweeper = None

    async def close(self) -> None:
        await self.stop_sweeper()
        await self.backend.close()

    def _record(self, hit: bool) -> None:
        if hit:
            self._hits += 1
        else:
            self._misses += 1
        CACHE_LOOKUPS.labels(result="hit" if hit else "miss").inc()

    async def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            entry_count=await self.size(),
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=self._hits / total if total else 0.0,
            ttl_ms=self.ttl_ms,
            version=self.version,
        )


__all__ = [
    "CACHE_VERSION",
    "CacheBackend",
    "CacheEntry",
    "CacheStats",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "ResultCache",
    "cache_key",
    "seen_key",
]
