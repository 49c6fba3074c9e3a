"""DB-API wrappers (driver, connection, statement) and SQLAlchemy glue."""

from querycache.core.database.connection import CachingConnection
from querycache.core.database.driver import CachingDriver
from querycache.core.database.markers import CACHE_MARKER, cacheable, has_marker, is_write_statement
from querycache.core.database.statement import CachingCursor, InterceptorContext, StatementInterceptor

__all__ = [
    "CACHE_MARKER",
    "CachingConnection",
    "CachingCursor",
    "CachingDriver",
    "InterceptorContext",
    "StatementInterceptor",
    "cacheable",
    "has_marker",
    "is_write_statement",
]
