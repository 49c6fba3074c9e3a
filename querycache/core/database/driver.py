"""
Driver wrapper around a DB-API 2.0 module.

``CachingDriver(sqlite3, ...)`` behaves like the ``sqlite3`` module itself:
``connect()`` returns wrapped connections, and every module-level attribute
(``paramstyle``, ``apilevel``, the ``Error`` hierarchy, type constructors)
resolves from the wrapped module. That makes it a drop-in ``module=`` for
SQLAlchemy's ``create_engine``.
"""

from __future__ import annotations

from types import ModuleType
from typing import Any

from querycache.core.cache.stats import InterceptorStats
from querycache.core.cache.store import CacheStore
from querycache.core.cache.strategy import CacheStrategy
from querycache.core.database.connection import CachingConnection
from querycache.core.database.markers import CACHE_MARKER
from querycache.core.database.statement import InterceptorContext
from querycache.core.structured_logger import get_logger
from querycache.core.task_tracker import BackgroundDispatcher, InlineDispatcher
from querycache.services.analysis_client import AnalysisServiceClient

logger = get_logger(__name__)


class CachingDriver:
    def __init__(
        self,
        dbapi: ModuleType | Any,
        *,
        client: AnalysisServiceClient,
        strategy: CacheStrategy,
        store: CacheStore,
        prefix: str,
        marker: str = CACHE_MARKER,
        dispatcher: BackgroundDispatcher | InlineDispatcher | None = None,
    ) -> None:
        self._dbapi = dbapi
        self._context = InterceptorContext(
            client=client,
            strategy=strategy,
            store=store,
            prefix=prefix,
            marker=marker,
            dispatcher=dispatcher if dispatcher is not None else InlineDispatcher(),
            stats=InterceptorStats(),
        )
        logger.info(
            "caching_driver_initialized",
            dbapi=getattr(dbapi, "__name__", type(dbapi).__name__),
            prefix=prefix,
        )

    @property
    def wrapped_module(self) -> Any:
        return self._dbapi

    @property
    def context(self) -> InterceptorContext:
        return self._context

    @property
    def stats(self) -> InterceptorStats:
        return self._context.stats

    def connect(self, *args: Any, **kwargs: Any) -> CachingConnection:
        return CachingConnection(self._dbapi.connect(*args, **kwargs), self._context)

    def shutdown(self, timeout: float | None = 5.0) -> None:
        """Drain pending invalidations and release the analysis client."""
        self._context.dispatcher.shutdown(timeout)
        self._context.client.close()
        logger.info("caching_driver_shutdown", stats=self._context.stats.snapshot())

    def __getattr__(self, name: str) -> Any:
        if name in {"_dbapi", "_context"}:
            raise AttributeError(name)
        return getattr(self._dbapi, name)

    def __repr__(self) -> str:
        return f"CachingDriver({getattr(self._dbapi, '__name__', self._dbapi)!r})"


__all__ = ["CachingDriver"]
