"""
Component wiring.

Builds the shared collaborators (analysis client, strategy, cache store,
background dispatcher) exactly once from :class:`Settings` and hands them to
a :class:`CachingDriver`.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import ModuleType
from typing import Any

from querycache.core.cache.store import CacheStore, MemoryCacheStore, RedisCacheStore
from querycache.core.cache.strategy import CacheStrategy
from querycache.core.database.driver import CachingDriver
from querycache.core.factories.redis_factory import create_sync_redis
from querycache.core.structured_logger import configure_structured_logging, get_logger
from querycache.core.task_tracker import BackgroundDispatcher, InlineDispatcher
from querycache.services.analysis_client import AnalysisServiceClient
from querycache.settings import Settings, get_settings

logger = get_logger(__name__)


@dataclass(frozen=True)
class Components:
    client: AnalysisServiceClient
    strategy: CacheStrategy
    store: CacheStore
    dispatcher: BackgroundDispatcher | InlineDispatcher


def build_store(settings: Settings) -> CacheStore:
    if settings.redis_url is not None:
        return RedisCacheStore(create_sync_redis(settings))
    logger.info("memory_cache_store_selected", max_entries=settings.memory_max_entries)
    return MemoryCacheStore(max_entries=settings.memory_max_entries)


def build_components(settings: Settings | None = None, **overrides: Any) -> Components:
    """Construct the shared collaborators; ``overrides`` replace any of them."""
    settings = settings or get_settings()

    client = overrides.get("client")
    if client is None:
        client = AnalysisServiceClient(
            settings.service_url,
            timeout=settings.request_timeout,
            connect_timeout=settings.connect_timeout,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
            circuit_failure_threshold=settings.circuit_failure_threshold,
            circuit_recovery_timeout=settings.circuit_recovery_timeout,
        )
    strategy = overrides.get("strategy")
    if strategy is None:
        strategy = CacheStrategy(settings.strategy_config())
    store = overrides.get("store")
    if store is None:
        store = build_store(settings)

    dispatcher = overrides.get("dispatcher")
    if dispatcher is None:
        dispatcher = (
            BackgroundDispatcher(
                max_workers=settings.background_workers,
                max_pending=settings.max_background_tasks,
            )
            if settings.fire_and_forget
            else InlineDispatcher()
        )

    return Components(client=client, strategy=strategy, store=store, dispatcher=dispatcher)


def create_caching_driver(
    dbapi: ModuleType | Any,
    settings: Settings | None = None,
    **overrides: Any,
) -> CachingDriver:
    """Wrap a DB-API module (``sqlite3``, ``psycopg``, ...) with the cache layer."""
    settings = settings or get_settings()
    components = build_components(settings, **overrides)
    return CachingDriver(
        dbapi,
        client=components.client,
        strategy=components.strategy,
        store=components.store,
        prefix=settings.prefix,
        marker=settings.marker,
        dispatcher=components.dispatcher,
    )


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_structured_logging(log_level=settings.log_level, json_logs=settings.json_logs)


__all__ = [
    "Components",
    "build_components",
    "build_store",
    "configure_logging",
    "create_caching_driver",
]
