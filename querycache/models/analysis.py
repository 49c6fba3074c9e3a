"""
Response models for the analysis service.

Kept free of I/O so the cache strategy and its tests can import them cheaply.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationType(str, Enum):
    READ = "read"
    WRITE = "write"
    UNKNOWN = "unknown"


class TableRef(BaseModel):
    """One table touched by a statement, as reported by the service."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    table: str = ""


class CacheKey(BaseModel):
    """Cache key material computed by the service.

    ``type`` is the service's query shape (``row-lookup``, ``simple-where``,
    ``table-scan``, ``join``, ``update``, ...). The first entry of ``tables``
    is the primary (FROM-clause) table.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    fingerprint: str | None = None
    type: str = ""
    tables: tuple[TableRef, ...] = ()

    @field_validator("tables", mode="before")
    @classmethod
    def _coerce_tables(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, list | tuple):
            return tuple(
                {"table": item} if isinstance(item, str) else item for item in v
            )
        return v

    @property
    def table_names(self) -> list[str]:
        return [t.table for t in self.tables]


class QueryAnalysis(BaseModel):
    """Result of ``POST /analyze`` for one execution."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    operation_type: OperationType = OperationType.UNKNOWN
    cache_key: CacheKey = Field(default_factory=CacheKey)

    @field_validator("operation_type", mode="before")
    @classmethod
    def _coerce_operation_type(cls, v: Any) -> Any:
        if isinstance(v, OperationType):
            return v
        try:
            return OperationType(str(v).lower())
        except ValueError:
            return OperationType.UNKNOWN

    @field_validator("cache_key", mode="before")
    @classmethod
    def _coerce_cache_key(cls, v: Any) -> Any:
        return v if v is not None else {}

    @property
    def is_read(self) -> bool:
        return self.operation_type is OperationType.READ

    @property
    def fingerprint(self) -> str | None:
        return self.cache_key.fingerprint or None


__all__ = ["OperationType", "TableRef", "CacheKey", "QueryAnalysis"]
