"""
Exception hierarchy for the query cache layer.

Every failure raised by the caching apparatus (analysis service, cache store,
circuit breaker, configuration) derives from :class:`QueryCacheError`, so the
statement interceptor can catch the whole family at its boundary and degrade
to direct execution. Database errors are never wrapped in these types.
"""

from __future__ import annotations

from typing import Any


class QueryCacheError(Exception):
    """Base class for all caching-apparatus errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": dict(self.details),
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        return f"{self.message} ({self.details})"


class ConfigurationError(QueryCacheError):
    """Invalid or missing configuration."""


class AnalysisServiceError(QueryCacheError):
    """The analysis service could not be reached or answered garbage."""


class ServiceUnavailableError(AnalysisServiceError):
    """Transient upstream failure (429 / 5xx). Safe to retry."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.retry_after = retry_after


class IntegrationError(AnalysisServiceError):
    """Permanent upstream failure (non-retriable 4xx)."""

    @property
    def status_code(self) -> int | None:
        return self.details.get("status_code")


class CircuitBreakerError(QueryCacheError):
    """Raised when a call is blocked by an open circuit breaker."""


class CacheStoreError(QueryCacheError):
    """The cache store failed to read, write or decode an entry."""


__all__ = [
    "QueryCacheError",
    "ConfigurationError",
    "AnalysisServiceError",
    "ServiceUnavailableError",
    "IntegrationError",
    "CircuitBreakerError",
    "CacheStoreError",
]
