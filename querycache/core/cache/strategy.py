"""
Local caching heuristics.

Decides whether and for how long a read may be cached, using only the
analysis service's classification and the process-wide strategy config.
No I/O; every function here is deterministic given its inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from querycache.models.analysis import QueryAnalysis

ROW_LOOKUP = "row-lookup"
SIMPLE_WHERE = "simple-where"
TABLE_SCAN = "table-scan"

# Query shapes cached unless a heuristic explicitly opts in something else.
DEFAULT_CACHEABLE_TYPES = frozenset({SIMPLE_WHERE, ROW_LOOKUP, TABLE_SCAN})

DEFAULT_EXCLUDE_KEYWORDS = ("FOR UPDATE", "LOCK IN SHARE MODE")
DEFAULT_EXCLUDE_TABLES = ("sessions", "messenger_messages")


@dataclass(frozen=True)
class CacheStrategyConfig:
    """Immutable strategy settings, built once at startup and shared."""

    enabled: bool = True
    default_ttl_seconds: int = 3600
    cache_primary_key_lookups: bool = True
    cache_simple_where: bool = True
    max_join_tables: int = 2
    exclude_keywords: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_EXCLUDE_KEYWORDS))
    exclude_tables: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_EXCLUDE_TABLES))
    table_ttls: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if self.default_ttl_seconds < 0:
            raise ValueError("default_ttl_seconds must be >= 0")
        if self.max_join_tables < 0:
            raise ValueError("max_join_tables must be >= 0")
        # Normalise caller-supplied collections into immutable ones.
        object.__setattr__(self, "exclude_keywords", frozenset(self.exclude_keywords))
        object.__setattr__(self, "exclude_tables", frozenset(self.exclude_tables))
        object.__setattr__(self, "table_ttls", MappingProxyType(dict(self.table_ttls)))

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "CacheStrategyConfig":
        """Build from a plain config mapping, ignoring unknown keys."""
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})  # type: ignore[arg-type]


class CacheStrategy:
    """Determines whether and how to cache queries based on heuristics."""

    def __init__(self, config: CacheStrategyConfig | None = None) -> None:
        self.config = config or CacheStrategyConfig()

    def should_cache(self, analysis: QueryAnalysis) -> bool:
        cfg = self.config
        if not cfg.enabled:
            return False

        if not analysis.is_read:
            return False

        tables = analysis.cache_key.table_names
        if any(name in cfg.exclude_tables for name in tables):
            return False

        # max_join_tables bounds joined tables; the primary table is extra.
        if len(tables) > cfg.max_join_tables + 1:
            return False

        query_type = analysis.cache_key.type

        if query_type == ROW_LOOKUP and cfg.cache_primary_key_lookups:
            return True

        if query_type == SIMPLE_WHERE and cfg.cache_simple_where:
            return True

        return query_type in DEFAULT_CACHEABLE_TYPES

    def get_ttl(self, analysis: QueryAnalysis) -> int:
        """Lowest TTL among the default and every configured table touched."""
        ttl = self.config.default_ttl_seconds
        for name in analysis.cache_key.table_names:
            table_ttl = self.config.table_ttls.get(name)
            if table_ttl is not None:
                ttl = min(ttl, table_ttl)
        return ttl

    def get_primary_table(self, analysis: QueryAnalysis) -> str | None:
        tables = analysis.cache_key.table_names
        if not tables:
            return None
        return tables[0] or None

    def has_excluded_keyword(self, sql: str) -> bool:
        """True if the statement carries a locking clause such as FOR UPDATE."""
        upper = sql.upper()
        return any(keyword.upper() in upper for keyword in self.config.exclude_keywords)


def build_strategy(
    *,
    enabled: bool = True,
    default_ttl_seconds: int = 3600,
    exclude_tables: Iterable[str] = DEFAULT_EXCLUDE_TABLES,
    table_ttls: Mapping[str, int] | None = None,
    **kwargs: object,
) -> CacheStrategy:
    """Convenience constructor used by tests and ad-hoc wiring."""
    config = CacheStrategyConfig(
        enabled=enabled,
        default_ttl_seconds=default_ttl_seconds,
        exclude_tables=frozenset(exclude_tables),
        table_ttls=table_ttls or {},
        **kwargs,  # type: ignore[arg-type]
    )
    return CacheStrategy(config)


__all__ = [
    "CacheStrategy",
    "CacheStrategyConfig",
    "build_strategy",
    "DEFAULT_CACHEABLE_TYPES",
    "DEFAULT_EXCLUDE_KEYWORDS",
    "DEFAULT_EXCLUDE_TABLES",
    "ROW_LOOKUP",
    "SIMPLE_WHERE",
    "TABLE_SCAN",
]
