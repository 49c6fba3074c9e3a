"""Cache strategy, stores and result containers."""

from querycache.core.cache.cached_result import CachedResult
from querycache.core.cache.stats import InterceptorStats
from querycache.core.cache.store import CacheStore, MemoryCacheStore, RedisCacheStore
from querycache.core.cache.strategy import CacheStrategy, CacheStrategyConfig

__all__ = [
    "CacheStore",
    "CacheStrategy",
    "CacheStrategyConfig",
    "CachedResult",
    "InterceptorStats",
    "MemoryCacheStore",
    "RedisCacheStore",
]
