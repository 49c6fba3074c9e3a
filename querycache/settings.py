"""
Process-wide settings for the query cache layer.

Loaded once from ``QUERYCACHE_*`` environment variables (and an optional
``.env`` file) and shared read-only afterwards.

Environment Variables (examples):
- QUERYCACHE_SERVICE_URL: analysis service base URL
- QUERYCACHE_PREFIX: cache key namespace (default: querycache)
- QUERYCACHE_REDIS_URL: redis://... (unset = in-process memory store)
- QUERYCACHE_TABLE_TTLS: JSON object, e.g. {"products": 60}
"""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from querycache.core.cache.strategy import (
    DEFAULT_EXCLUDE_KEYWORDS,
    DEFAULT_EXCLUDE_TABLES,
    CacheStrategyConfig,
)
from querycache.core.database.markers import CACHE_MARKER


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUERYCACHE_", env_file=".env", extra="ignore"
    )

    # Analysis service
    service_url: str = "http://localhost:8080"
    request_timeout: float = Field(default=2.0, gt=0)
    connect_timeout: float = Field(default=1.0, gt=0)
    max_retries: int = Field(default=0, ge=0)
    retry_base_delay: float = Field(default=0.2, ge=0)
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: int = Field(default=30, ge=0)

    # Interception
    prefix: str = "querycache"
    marker: str = CACHE_MARKER
    fire_and_forget: bool = True
    background_workers: int = Field(default=4, ge=1)
    max_background_tasks: int = Field(default=1000, ge=1)

    # Cache store
    redis_url: SecretStr | None = None
    redis_socket_timeout: float = Field(default=0.5, gt=0)
    memory_max_entries: int = Field(default=10_000, ge=1)

    # Strategy
    enabled: bool = True
    default_ttl: int = Field(default=3600, ge=0)
    cache_primary_key_lookups: bool = True
    cache_simple_where: bool = True
    max_join_tables: int = Field(default=2, ge=0)
    exclude_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_KEYWORDS))
    exclude_tables: list[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDE_TABLES))
    table_ttls: dict[str, int] = Field(default_factory=dict)

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    @field_validator("service_url")
    @classmethod
    def validate_service_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("service_url must be an http(s) URL, e.g. http://localhost:8080")
        return v.rstrip("/")

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("prefix must be non-empty and contain no whitespace")
        return v

    @field_validator("marker")
    @classmethod
    def validate_marker(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("marker must not be blank")
        return v

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: SecretStr | None) -> SecretStr | None:
        if v is None:
            return v
        val = v.get_secret_value()
        if not val:
            return None
        if not val.startswith(("redis://", "rediss://")):
            raise ValueError(
                "Redis URL must start with 'redis://' or 'rediss://'. "
                "Example: redis://localhost:6379/0"
            )
        return v

    @field_validator("table_ttls")
    @classmethod
    def validate_table_ttls(cls, v: dict[str, int]) -> dict[str, int]:
        negative = sorted(name for name, ttl in v.items() if ttl < 0)
        if negative:
            raise ValueError(f"table_ttls must be >= 0 (invalid: {', '.join(negative)})")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    def strategy_config(self) -> CacheStrategyConfig:
        return CacheStrategyConfig(
            enabled=self.enabled,
            default_ttl_seconds=self.default_ttl,
            cache_primary_key_lookups=self.cache_primary_key_lookups,
            cache_simple_where=self.cache_simple_where,
            max_join_tables=self.max_join_tables,
            exclude_keywords=frozenset(self.exclude_keywords),
            exclude_tables=frozenset(self.exclude_tables),
            table_ttls=dict(self.table_ttls),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "clear_settings_cache"]
