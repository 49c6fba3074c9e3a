from __future__ import annotations

import hashlib
import os
import sqlite3
from collections.abc import Mapping
from typing import Any

import pytest

from querycache.core.cache.store import MemoryCacheStore
from querycache.core.cache.strategy import CacheStrategy
from querycache.core.database.driver import CachingDriver
from querycache.core.database.markers import CACHE_MARKER
from querycache.models.analysis import QueryAnalysis
from querycache.settings import clear_settings_cache


def _freeze(params: Any) -> Any:
    if params is None:
        return None
    if isinstance(params, Mapping):
        return sorted(params.items())
    return list(params)


class FakeAnalysisClient:
    """In-process stand-in for the analysis service.

    Fingerprints are derived from SQL + parameters, so distinct parameter
    sets get distinct cache keys. Every call is recorded.
    """

    def __init__(
        self,
        *,
        operation_type: str = "read",
        query_type: str = "row-lookup",
        tables: list[str] | None = None,
        fingerprint: str | None = "auto",
        analyze_error: Exception | None = None,
        register_error: Exception | None = None,
    ) -> None:
        self.operation_type = operation_type
        self.query_type = query_type
        self.tables = ["users"] if tables is None else tables
        self.fingerprint = fingerprint
        self.analyze_error = analyze_error
        self.register_error = register_error
        self.analyze_calls: list[tuple[str, Any]] = []
        self.invalidate_calls: list[tuple[str, Any]] = []
        self.register_calls: list[tuple[str, Any, list[dict[str, Any]], int]] = []
        self.invalidate_result = True
        self.closed = False

    def analyze(self, sql: str, params: Any = None) -> QueryAnalysis:
        self.analyze_calls.append((sql, params))
        if self.analyze_error is not None:
            raise self.analyze_error
        fingerprint = self.fingerprint
        if fingerprint == "auto":
            fingerprint = hashlib.sha1(repr((sql, _freeze(params))).encode()).hexdigest()
        return QueryAnalysis.model_validate(
            {
                "operation_type": self.operation_type,
                "cache_key": {
                    "fingerprint": fingerprint,
                    "type": self.query_type,
                    "tables": [{"table": t} for t in self.tables],
                },
            }
        )

    def register(self, sql: str, params: Any, rows: list[dict[str, Any]], ttl: int) -> None:
        self.register_calls.append((sql, params, rows, ttl))
        if self.register_error is not None:
            raise self.register_error

    def invalidate(self, sql: str, params: Any = None) -> bool:
        self.invalidate_calls.append((sql, params))
        return self.invalidate_result

    def close(self) -> None:
        self.closed = True

    def reset(self) -> None:
        self.analyze_calls.clear()
        self.invalidate_calls.clear()
        self.register_calls.clear()


class FailingStore(MemoryCacheStore):
    def __init__(self, *, fail_get: bool = False, fail_set: bool = False) -> None:
        super().__init__()
        self.fail_get = fail_get
        self.fail_set = fail_set

    def get(self, key):
        if self.fail_get:
            raise ConnectionError("store unreachable")
        return super().get(key)

    def set(self, key, entry, ttl):
        if self.fail_set:
            raise ConnectionError("store unreachable")
        super().set(key, entry, ttl)


MARKED_BY_ID = f"{CACHE_MARKER} SELECT id, name, score FROM users WHERE id = ?"


def seed_users(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, score REAL)")
    conn.executemany(
        "INSERT INTO users (id, name, score) VALUES (?, ?, ?)",
        [(1, "alice", 9.5), (2, "bob", 7.25), (3, "carol", None)],
    )
    conn.commit()


def user_selects(trace: list[str]) -> list[str]:
    """Statements the database actually ran against ``users`` reads."""
    return [s for s in trace if "SELECT" in s.upper() and "FROM USERS" in s.upper()]


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch):
    for k in list(os.environ):
        if k.startswith("QUERYCACHE_"):
            monkeypatch.delenv(k, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fake_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def driver(fake_client, store) -> CachingDriver:
    return CachingDriver(
        sqlite3,
        client=fake_client,
        strategy=CacheStrategy(),
        store=store,
        prefix="test",
    )


@pytest.fixture
def trace() -> list[str]:
    return []


@pytest.fixture
def conn(driver, fake_client, trace):
    """Wrapped in-memory connection with seeded ``users``; executed SQL lands in ``trace``."""
    connection = driver.connect(":memory:")
    seed_users(connection.wrapped_connection)
    connection.set_trace_callback(trace.append)
    fake_client.reset()
    yield connection
    connection.close()
