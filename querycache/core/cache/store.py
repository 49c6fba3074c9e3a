"""
Cache stores for materialised result sets.

The interceptor only needs get / set-with-TTL / delete by key; these
implementations provide that over an in-process dict or Redis. Keys are
always ``{prefix}_{fingerprint}``; stores never interpret them.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable

from redis import Redis
from redis.exceptions import RedisError

from querycache.core.exceptions import CacheStoreError
from querycache.core.structured_logger import get_logger
from querycache.models.cache import CacheEntry

logger = get_logger(__name__)


@runtime_checkable
class CacheStore(Protocol):
    def get(self, key: str) -> CacheEntry | None: ...

    def set(self, key: str, entry: CacheEntry, ttl: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def clear_prefix(self, prefix: str) -> int: ...


class MemoryCacheStore:
    """
    In-process store with per-entry expiry.

    Expired entries are evicted lazily on read. A TTL of ``0`` or less means
    the entry is already stale, so it is dropped instead of stored. Entries are stored serialised so a reader can never
    mutate what another reader gets back.
    """

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            payload, expires_at = item
            if expires_at <= time.monotonic():
                del self._data[key]
                return None
        return CacheEntry.loads(payload)

    def set(self, key: str, entry: CacheEntry, ttl: int) -> None:
        if ttl <= 0:
            self.delete(key)
            return
        payload = entry.dumps()
        expires_at = time.monotonic() + ttl
        with self._lock:
            if key not in self._data and len(self._data) >= self.max_entries:
                self._evict_one()
            self._data[key] = (payload, expires_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
        return len(doomed)

    def _evict_one(self) -> None:
        # Expired entries first, then the oldest insertion.
        now = time.monotonic()
        for k, (_, expires_at) in self._data.items():
            if expires_at <= now:
                del self._data[k]
                return
        oldest = next(iter(self._data), None)
        if oldest is not None:
            del self._data[oldest]

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RedisCacheStore:
    """Redis-backed store (``SET key value EX ttl`` / ``GET`` / ``DEL``)."""

    SCAN_BATCH = 500

    def __init__(self, client: Redis) -> None:
        self.client = client

    def get(self, key: str) -> CacheEntry | None:
        try:
            payload = self.client.get(key)
        except RedisError as exc:
            raise CacheStoreError("Redis GET failed", details={"key": key, "error": str(exc)}) from exc
        if payload is None:
            return None
        return CacheEntry.loads(payload)

    def set(self, key: str, entry: CacheEntry, ttl: int) -> None:
        if ttl <= 0:
            self.delete(key)
            return
        payload = entry.dumps()
        try:
            self.client.set(key, payload, ex=ttl)
        except RedisError as exc:
            raise CacheStoreError("Redis SET failed", details={"key": key, "error": str(exc)}) from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(key))
        except RedisError as exc:
            raise CacheStoreError("Redis DEL failed", details={"key": key, "error": str(exc)}) from exc

    def clear_prefix(self, prefix: str) -> int:
        removed = 0
        batch: list[str] = []
        try:
            for key in self.client.scan_iter(match=f"{prefix}*", count=self.SCAN_BATCH):
                batch.append(key)
                if len(batch) >= self.SCAN_BATCH:
                    removed += self.client.delete(*batch)
                    batch.clear()
            if batch:
                removed += self.client.delete(*batch)
        except RedisError as exc:
            raise CacheStoreError(
                "Redis prefix clear failed", details={"prefix": prefix, "error": str(exc)}
            ) from exc
        logger.info("cache_prefix_cleared", prefix=prefix, removed=removed)
        return removed


__all__ = ["CacheStore", "MemoryCacheStore", "RedisCacheStore"]
