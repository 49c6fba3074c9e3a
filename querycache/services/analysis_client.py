"""
Analysis Service Client.

HTTP client for the remote service that normalises SQL, computes cache-key
fingerprints and works out which cached entries a write invalidates. Raw
SQL and parameters are sent as-is; no SQL understanding lives here.

Hardening goals:
- Fail-fast config validation (URL)
- Explicit, bounded timeouts for *every* I/O (calls run inside DB calls)
- Circuit breaker so a dead service costs one fast failure, not a timeout
  per statement
- No retries on the hot path by default; administrative calls may retry
  with exponential backoff + jitter
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from urllib.parse import quote, urlparse

import httpx
from pydantic import ValidationError

from querycache.core.exceptions import (
    AnalysisServiceError,
    ConfigurationError,
    IntegrationError,
    QueryCacheError,
    ServiceUnavailableError,
)
from querycache.core.resilience import CircuitBreakerManager, retry_with_backoff
from querycache.core.structured_logger import get_logger, truncate_sql
from querycache.models.analysis import QueryAnalysis
from querycache.models.cache import Row, decode_rows, encode_rows

logger = get_logger(__name__)

BREAKER_NAME = "analysis_service"

Params = Sequence[Any] | Mapping[str, Any] | None


def _json_value(value: Any) -> Any:
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value).hex()
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): _json_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_json_value(v) for v in value]
    return str(value)


def serialize_params(params: Params) -> list[Any] | dict[str, Any]:
    """Normalise DB-API parameters (sequence or mapping) for a JSON payload."""
    if params is None:
        return []
    if isinstance(params, Mapping):
        return {str(k): _json_value(v) for k, v in params.items()}
    return [_json_value(v) for v in params]


class AnalysisServiceClient:
    """Synchronous HTTP client for the analysis service.

    This object owns a single ``httpx.Client`` (connection pool) shared by
    every connection and statement built from one driver.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 2.0,
        connect_timeout: float = 1.0,
        max_retries: int = 0,
        retry_base_delay: float = 0.2,
        circuit_failure_threshold: int = 5,
        circuit_recovery_timeout: int = 30,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        if not self.base_url:
            raise ConfigurationError("Analysis service URL not configured")
        parsed = urlparse(self.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigurationError(
                "Analysis service URL must be an http(s) URL",
                details={"value": self.base_url},
            )

        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._timeout = httpx.Timeout(timeout=timeout, connect=connect_timeout)

        self.http_client = httpx.Client(
            base_url=self.base_url,
            timeout=self._timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )

        # Count only transient classes; permanent 4xx never trips the breaker.
        self.cbm = CircuitBreakerManager()
        self.cbm.register(
            BREAKER_NAME,
            fail_max=circuit_failure_threshold,
            reset_timeout=circuit_recovery_timeout,
            expected_exception=(httpx.RequestError, ServiceUnavailableError),
            exclude=(IntegrationError,),
        )

        logger.info(
            "analysis_client_initialized",
            url=self.base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_body_preview(resp: httpx.Response, limit: int = 512) -> str:
        txt = resp.text or ""
        if len(txt) > limit:
            return txt[:limit] + "…"
        return txt

    @staticmethod
    def _parse_retry_after(resp: httpx.Response) -> int | None:
        ra = resp.headers.get("Retry-After")
        if not ra:
            return None
        try:
            return int(ra)
        except ValueError:
            return None

    def _raise_for_status(self, resp: httpx.Response, *, operation: str) -> None:
        """Translate upstream HTTP failures into client exceptions.

        * 429 / 5xx are transient -> ``ServiceUnavailableError``
        * other 4xx are permanent -> ``IntegrationError``
        """
        if 200 <= resp.status_code < 300:
            return

        details = {
            "operation": operation,
            "status_code": resp.status_code,
            "body_preview": self._extract_body_preview(resp),
        }
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ServiceUnavailableError(
                f"Analysis service transient failure during {operation}",
                retry_after=self._parse_retry_after(resp),
                details=details,
            )
        raise IntegrationError(
            f"Analysis service returned non-retriable error during {operation}",
            details=details,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: dict[str, Any] | None = None,
        retries: int | None = None,
    ) -> httpx.Response:
        def _once() -> httpx.Response:
            resp = self.http_client.request(method, path, json=json)
            self._raise_for_status(resp, operation=operation)
            return resp

        def _call() -> httpx.Response:
            # 5xx counts as a breaker failure; permanent 4xx does not.
            return self.cbm.call(BREAKER_NAME, _once)

        try:
            return retry_with_backoff(
                _call,
                retries=self.max_retries if retries is None else retries,
                base_delay=self.retry_base_delay,
                cap=2.0,
                jitter=True,
                retry_on=(httpx.RequestError, ServiceUnavailableError),
            )
        except httpx.RequestError as exc:
            raise AnalysisServiceError(
                f"Failed to communicate with analysis service during {operation}",
                details={"operation": operation, "error": str(exc)},
            ) from exc

    @staticmethod
    def _json_object(resp: httpx.Response, *, operation: str) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise AnalysisServiceError(
                "Invalid JSON response from analysis service",
                details={"operation": operation},
            ) from exc
        if not isinstance(data, dict):
            raise AnalysisServiceError(
                "Invalid JSON response from analysis service",
                details={"operation": operation, "type": type(data).__name__},
            )
        return data

    # ------------------------------------------------------------------
    # Hot-path operations
    # ------------------------------------------------------------------

    def analyze(self, sql: str, params: Params = None) -> QueryAnalysis:
        """Classify a statement and compute its cache key."""
        resp = self._request(
            "POST",
            "/analyze",
            operation="analyze",
            json={"sql": sql, "params": serialize_params(params)},
        )
        data = self._json_object(resp, operation="analyze")
        try:
            return QueryAnalysis.model_validate(data)
        except ValidationError as exc:
            raise AnalysisServiceError(
                "Malformed analysis response",
                details={"operation": "analyze", "errors": exc.error_count()},
            ) from exc

    def register(self, sql: str, params: Params, rows: list[Row], ttl: int) -> None:
        """Tell the service a result was cached, for invalidation tracking."""
        self._request(
            "POST",
            "/register",
            operation="register",
            json={
                "sql": sql,
                "params": serialize_params(params),
                "result": encode_rows(rows),
                "ttl": ttl,
            },
            retries=0,
        )

    def get(self, fingerprint: str) -> list[Row] | None:
        """Fetch a result the service holds for ``fingerprint``.

        Any failure to reach or understand the service is reported as a miss.
        """
        try:
            resp = self._request(
                "GET",
                f"/cache/{quote(fingerprint, safe='')}",
                operation="get",
            )
            data = self._json_object(resp, operation="get")
        except IntegrationError as exc:
            if exc.status_code != 404:
                logger.warning("cache_lookup_failed", fingerprint=fingerprint, error=str(exc))
            return None
        except QueryCacheError as exc:
            logger.warning(
                "cache_lookup_failed",
                fingerprint=fingerprint,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        encoded = data.get("result")
        if not encoded or not isinstance(encoded, str):
            return None
        return decode_rows(encoded)

    def invalidate(self, sql: str, params: Params = None) -> bool:
        """Best-effort invalidation. Never raises; returns ``False`` on failure."""
        try:
            self._request(
                "POST",
                "/invalidate",
                operation="invalidate",
                json={"sql": sql, "params": serialize_params(params)},
                retries=0,
            )
        except QueryCacheError as exc:
            logger.warning(
                "invalidation_failed",
                sql=truncate_sql(sql),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    def invalidate_sync(self, sql: str, params: Params = None) -> None:
        """Invalidate and wait for the service to finish. Raises on failure."""
        self._request(
            "POST",
            "/invalidate",
            operation="invalidate_sync",
            json={"sql": sql, "params": serialize_params(params), "sync": True},
        )

    def should_invalidate(self, sql: str, params: Params = None) -> bool:
        resp = self._request(
            "POST",
            "/should-invalidate",
            operation="should_invalidate",
            json={"sql": sql, "params": serialize_params(params)},
        )
        data = self._json_object(resp, operation="should_invalidate")
        return bool(data.get("should_invalidate", False))

    def clear_table(self, table: str) -> None:
        """Drop every cached entry the service tracks for ``table``."""
        self._request(
            "DELETE",
            f"/table/{quote(table, safe='')}",
            operation="clear_table",
        )
        logger.info("analysis_table_cleared", table=table)

    def stats(self) -> dict[str, Any]:
        resp = self._request("GET", "/stats", operation="stats")
        return self._json_object(resp, operation="stats")

    def circuit_state(self) -> str:
        return self.cbm.state(BREAKER_NAME)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.http_client.close()

    def __enter__(self) -> "AnalysisServiceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "AnalysisServiceClient",
    "serialize_params",
    "BREAKER_NAME",
]
