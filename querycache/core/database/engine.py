"""
SQLAlchemy integration.

SQLAlchemy accepts a replacement DB-API module through ``create_engine(...,
module=...)``; passing a :class:`CachingDriver` there routes every pooled
connection through the interceptor without touching the dialect.

Usage:
    engine = create_cached_engine("sqlite:///app.db", sqlite3)
    with session_scope(engine) as session:
        session.execute(cacheable(select(Product).where(Product.id == 1)))
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from querycache.core.database.driver import CachingDriver
from querycache.core.structured_logger import get_logger
from querycache.core.wiring import create_caching_driver
from querycache.settings import Settings

logger = get_logger(__name__)


def create_cached_engine(
    url: str,
    dbapi: CachingDriver | Any,
    settings: Settings | None = None,
    **engine_kwargs: Any,
) -> Engine:
    """Create a sync engine whose connections come from a :class:`CachingDriver`.

    ``dbapi`` is either a ready driver or a plain DB-API module, which is
    then wrapped using ``settings``.
    """
    driver = dbapi if isinstance(dbapi, CachingDriver) else create_caching_driver(dbapi, settings)
    engine = create_engine(url, module=driver, **engine_kwargs)
    logger.info(
        "cached_engine_created",
        dialect=engine.dialect.name,
        database=make_url(url).database,
        driver=getattr(driver.wrapped_module, "__name__", type(driver.wrapped_module).__name__),
    )
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


@contextmanager
def session_scope(engine: Engine) -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on any error.

    Usage:
        with session_scope(engine) as session:
            session.add(obj)
    """
    session = get_session_factory(engine)()
    try:
        yield session
        session.commit()
    except Exception:
        # Roll back so the connection is clean for pool reuse.
        session.rollback()
        raise
    finally:
        session.close()


def dispose_cached_engine(engine: Engine, timeout: float = 5.0) -> None:
    """Close pooled connections, then drain background work and the client."""
    engine.dispose()
    driver = engine.dialect.dbapi
    if isinstance(driver, CachingDriver):
        driver.shutdown(timeout=timeout)
    logger.info("cached_engine_disposed", dialect=engine.dialect.name)


__all__ = [
    "create_cached_engine",
    "dispose_cached_engine",
    "get_session_factory",
    "session_scope",
]
