"""Connection wrapper that hands out intercepting cursors and statements."""

from __future__ import annotations

from typing import Any

from querycache.core.database.statement import CachingCursor, InterceptorContext, StatementInterceptor


class CachingConnection:
    """Wraps one DB-API connection.

    ``cursor()`` and ``prepare()`` are intercepted; everything else
    (transactions, driver-specific shortcuts such as ``execute`` on sqlite3,
    attribute reads and writes) goes straight to the wrapped connection.
    Commit and rollback have no cache effect of their own.
    """

    def __init__(self, connection: Any, context: InterceptorContext) -> None:
        object.__setattr__(self, "_connection", connection)
        object.__setattr__(self, "_context", context)

    @property
    def wrapped_connection(self) -> Any:
        return self._connection

    @property
    def context(self) -> InterceptorContext:
        return self._context

    def prepare(self, sql: str) -> StatementInterceptor:
        """One interceptor per prepared statement, on a fresh underlying cursor."""
        return StatementInterceptor(self._connection.cursor(), sql, self._context)

    def cursor(self, *args: Any, **kwargs: Any) -> CachingCursor:
        return CachingCursor(self._connection.cursor(*args, **kwargs), self._context)

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "CachingConnection":
        self._connection.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> Any:
        return self._connection.__exit__(exc_type, exc, tb)

    def __getattr__(self, name: str) -> Any:
        if name in {"_connection", "_context"}:
            raise AttributeError(name)
        return getattr(self._connection, name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            setattr(self._connection, name, value)

    def __repr__(self) -> str:
        return f"CachingConnection({self._connection!r})"


__all__ = ["CachingConnection"]
