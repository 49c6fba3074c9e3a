"""
Statement interception: the per-execution caching decision pipeline.

Every statement executed through a wrapped connection passes through
:class:`StatementInterceptor`:

1. Writes (INSERT / UPDATE / DELETE) run on the real cursor first. Once they
   succeed, one invalidation is dispatched to the analysis service,
   fire-and-forget.
2. Reads without the opt-in marker run directly. The analysis service is
   never contacted for them.
3. Marked reads are analysed remotely, filtered by the local strategy and
   served from or stored into the cache store.

Failures in the caching apparatus degrade to direct execution. Failures of
the database itself always propagate unchanged.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from querycache.core.cache.cached_result import CachedResult
from querycache.core.cache.stats import InterceptorStats
from querycache.core.cache.store import CacheStore
from querycache.core.cache.strategy import CacheStrategy
from querycache.core.database.markers import CACHE_MARKER, has_marker, is_write_statement
from querycache.core.structured_logger import get_logger, truncate_sql
from querycache.core.task_tracker import BackgroundDispatcher, InlineDispatcher
from querycache.models.analysis import QueryAnalysis
from querycache.models.cache import CacheEntry, Row
from querycache.services.analysis_client import AnalysisServiceClient

logger = get_logger(__name__)

Params = Sequence[Any] | Mapping[str, Any] | None


@dataclass(frozen=True)
class InterceptorContext:
    """Collaborators shared by a driver and everything it produces.

    Built once at startup and handed by reference to every connection and
    statement; never mutated afterwards.
    """

    client: AnalysisServiceClient
    strategy: CacheStrategy
    store: CacheStore
    prefix: str
    marker: str = CACHE_MARKER
    dispatcher: BackgroundDispatcher | InlineDispatcher = field(default_factory=InlineDispatcher)
    stats: InterceptorStats = field(default_factory=InterceptorStats)

    def cache_key(self, fingerprint: str) -> str:
        return f"{self.prefix}_{fingerprint}"


def _snapshot_params(params: Params) -> Params:
    """Detach from caller-owned containers before handing off to a worker."""
    if params is None:
        return None
    if isinstance(params, Mapping):
        return dict(params)
    return list(params)


def _invalidate(context: InterceptorContext, sql: str, params: Params) -> None:
    if not context.client.invalidate(sql, params):
        context.stats.incr("invalidation_failures")


def _register(context: InterceptorContext, sql: str, params: Params, rows: list[Row], ttl: int) -> None:
    try:
        context.client.register(sql, params, rows, ttl)
    except Exception as exc:
        context.stats.incr("registration_failures")
        logger.warning(
            "cache_registration_failed",
            sql=truncate_sql(sql),
            error=str(exc),
            error_type=type(exc).__name__,
        )


def dispatch_invalidation(context: InterceptorContext, sql: str, params: Params) -> None:
    """Send exactly one invalidation for a successful write; never raises.

    When the dispatcher cannot take the task (closed, or at its pending
    cap) the invalidation runs on the calling thread instead.
    """
    context.stats.incr("invalidations_dispatched")
    snapshot = _snapshot_params(params)
    try:
        accepted = context.dispatcher.submit(_invalidate, context, sql, snapshot, name="invalidate")
    except Exception as exc:
        accepted = False
        logger.error("invalidation_dispatch_failed", sql=truncate_sql(sql), error=str(exc))
    if accepted:
        logger.debug("invalidation_queued", sql=truncate_sql(sql))
        return

    logger.info("invalidation_running_inline", sql=truncate_sql(sql))
    try:
        _invalidate(context, sql, snapshot)
    except Exception as exc:
        context.stats.incr("invalidation_failures")
        logger.error(
            "invalidation_failed",
            sql=truncate_sql(sql),
            error=str(exc),
            error_type=type(exc).__name__,
        )


class StatementInterceptor:
    """Wraps one underlying DB-API cursor with the SQL fixed at prepare time.

    ``execute(None)`` means "use the previously bound parameters": the
    underlying cursor is then called with the bound parameters, or with the
    SQL alone if nothing was bound. ``None`` is never replaced by an empty
    parameter set.
    """

    def __init__(self, cursor: Any, sql: str, context: InterceptorContext) -> None:
        self._cursor = cursor
        self.sql = sql
        self._context = context
        self._bound: Params = None

    @property
    def cursor(self) -> Any:
        return self._cursor

    def bind(self, params: Params) -> "StatementInterceptor":
        self._bound = params
        return self

    def execute(self, params: Params = None) -> Any:
        """Run the statement; returns a :class:`CachedResult` or the live cursor."""
        effective = params if params is not None else self._bound

        if is_write_statement(self.sql):
            return self._handle_write(effective)

        if not has_marker(self.sql, self._context.marker):
            self._context.stats.incr("bypasses")
            return self._execute_direct(effective)

        return self._handle_read(effective)

    def _execute_direct(self, params: Params) -> Any:
        if params is None:
            self._cursor.execute(self.sql)
        else:
            self._cursor.execute(self.sql, params)
        return self._cursor

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _handle_write(self, params: Params) -> Any:
        result = self._execute_direct(params)
        self._context.stats.incr("writes")
        dispatch_invalidation(self._context, self.sql, params)
        return result

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def _fallback(self, event: str, params: Params, exc: BaseException) -> Any:
        self._context.stats.incr("fallbacks")
        logger.warning(
            event,
            sql=truncate_sql(self.sql),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return self._execute_direct(params)

    def _bypass(self, reason: str, params: Params) -> Any:
        self._context.stats.incr("bypasses")
        logger.debug("query_not_cached", reason=reason, sql=truncate_sql(self.sql))
        return self._execute_direct(params)

    def _handle_read(self, params: Params) -> Any:
        ctx = self._context

        try:
            analysis = ctx.client.analyze(self.sql, params)
        except Exception as exc:
            return self._fallback("analysis_failed_fallback", params, exc)

        if not analysis.is_read:
            return self._bypass(f"operation_type={analysis.operation_type.value}", params)

        if not ctx.strategy.should_cache(analysis):
            return self._bypass("strategy", params)

        if ctx.strategy.has_excluded_keyword(self.sql):
            return self._bypass("excluded_keyword", params)

        fingerprint = analysis.fingerprint
        if not fingerprint:
            return self._bypass("no_fingerprint", params)

        key = ctx.cache_key(fingerprint)
        try:
            entry = ctx.store.get(key)
        except Exception as exc:
            return self._fallback("cache_read_failed_fallback", params, exc)

        if entry is not None:
            ctx.stats.incr("hits")
            logger.debug("cache_hit", key=key, rows=len(entry.rows))
            return CachedResult(entry.rows, entry.columns)

        ctx.stats.incr("misses")
        logger.debug("cache_miss", key=key)
        return self._materialize(key, params, analysis)

    def _materialize(self, key: str, params: Params, analysis: QueryAnalysis) -> Any:
        ctx = self._context
        cursor = self._execute_direct(params)

        description = cursor.description
        if description is None:
            return cursor

        columns = [col[0] for col in description]
        if len(set(columns)) != len(columns):
            # Rows are cached as column -> value mappings; duplicates would collapse.
            logger.debug("duplicate_column_names_not_cached", key=key, columns=columns)
            return cursor

        rows: list[Row] = [dict(zip(columns, row)) for row in cursor.fetchall()]
        ttl = ctx.strategy.get_ttl(analysis)
        if ttl <= 0:
            logger.debug("cache_skipped_zero_ttl", key=key)
            return CachedResult(rows, columns)

        try:
            ctx.store.set(key, CacheEntry(rows=rows, columns=columns, ttl=ttl), ttl)
        except Exception as exc:
            # The rows are already in hand; serve them as if caching were absent.
            ctx.stats.incr("fallbacks")
            logger.warning(
                "cache_write_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return CachedResult(rows, columns)

        try:
            accepted = ctx.dispatcher.submit(
                _register, ctx, self.sql, _snapshot_params(params), rows, ttl, name="register"
            )
        except Exception as exc:
            accepted = False
            logger.warning("cache_registration_dispatch_failed", key=key, error=str(exc))
        if not accepted:
            ctx.stats.incr("registration_failures")

        logger.debug("cache_stored", key=key, rows=len(rows), ttl=ttl)
        return CachedResult(rows, columns)


class CachingCursor:
    """DB-API cursor whose ``execute`` goes through a :class:`StatementInterceptor`.

    Reads (``fetch*``, ``description``, ``rowcount``) are answered by the
    current cached result when the last execution was served or stored by
    the cache, otherwise by the underlying cursor.
    """

    def __init__(self, cursor: Any, context: InterceptorContext) -> None:
        self._cursor = cursor
        self._context = context
        self._result: CachedResult | None = None

    @property
    def wrapped_cursor(self) -> Any:
        return self._cursor

    @property
    def served_from_cache(self) -> bool:
        return self._result is not None

    def _source(self) -> Any:
        return self._result if self._result is not None else self._cursor

    def execute(self, sql: str, params: Params = None) -> "CachingCursor":
        self._result = None
        result = StatementInterceptor(self._cursor, sql, self._context).execute(params)
        if isinstance(result, CachedResult):
            result.arraysize = self._cursor.arraysize
            self._result = result
        return self

    def executemany(self, sql: str, seq_of_params: Sequence[Params]) -> "CachingCursor":
        self._result = None
        batch = list(seq_of_params)
        self._cursor.executemany(sql, batch)
        if is_write_statement(sql):
            self._context.stats.incr("writes", len(batch))
            for params in batch:
                dispatch_invalidation(self._context, sql, params)
        return self

    def fetchone(self) -> Any:
        return self._source().fetchone()

    def fetchmany(self, size: int | None = None) -> list[Any]:
        if size is None:
            return self._source().fetchmany()
        return self._source().fetchmany(size)

    def fetchall(self) -> list[Any]:
        return self._source().fetchall()

    @property
    def description(self) -> Any:
        return self._source().description

    @property
    def rowcount(self) -> int:
        return self._source().rowcount

    @property
    def arraysize(self) -> int:
        return self._cursor.arraysize

    @arraysize.setter
    def arraysize(self, value: int) -> None:
        self._cursor.arraysize = value
        if self._result is not None:
            self._result.arraysize = value

    def close(self) -> None:
        if self._result is not None:
            self._result.free()
            self._result = None
        self._cursor.close()

    def __iter__(self) -> Iterator[Any]:
        return iter(self.fetchone, None)

    def __enter__(self) -> "CachingCursor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __getattr__(self, name: str) -> Any:
        if name in {"_cursor", "_context", "_result"}:
            raise AttributeError(name)
        return getattr(self._cursor, name)


__all__ = [
    "CachingCursor",
    "InterceptorContext",
    "StatementInterceptor",
    "dispatch_invalidation",
]
