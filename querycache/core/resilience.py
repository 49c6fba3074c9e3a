"""
Resilience primitives for calls to the analysis service.

These run inside synchronous DB-API ``execute`` calls, so they are
thread-based:

- ``CircuitBreaker``: after repeated transient failures the service is
  skipped outright until a recovery window has passed; callers see
  ``CircuitBreakerError`` and fall back to direct execution.
- ``retry_with_backoff``: tenacity retries with exponential backoff and
  jitter. Hot-path calls pass ``retries=0``.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from querycache.core.exceptions import CircuitBreakerError
from querycache.core.structured_logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ExceptionTypes = type[BaseException] | tuple[type[BaseException], ...]


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Only ``expected_exception`` instances count as failures, and never
    ``exclude_exceptions`` ones (permanent 4xx, validation errors)."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0  # seconds
    expected_exception: ExceptionTypes = Exception
    exclude_exceptions: tuple[type[BaseException], ...] = ()
    name: str = "default"


@dataclass
class CircuitBreakerMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    blocked_calls: int = 0
    consecutive_failures: int = 0
    state_changes: int = 0


class CircuitBreaker:
    """CLOSED -> OPEN after ``failure_threshold`` consecutive failures.

    Once ``recovery_timeout`` has elapsed the next call is let through as a
    HALF_OPEN trial: success closes the breaker, failure re-opens it.
    """

    def __init__(self, config: CircuitBreakerConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.state = CircuitBreakerState.CLOSED
        self.metrics = CircuitBreakerMetrics()
        self._clock = clock
        self._opened_at: float | None = None
        self._lock = threading.Lock()

    def _transition(self, new_state: CircuitBreakerState) -> None:
        if new_state is self.state:
            return
        previous, self.state = self.state, new_state
        self.metrics.state_changes += 1
        self._opened_at = self._clock() if new_state is CircuitBreakerState.OPEN else None
        log = logger.error if new_state is CircuitBreakerState.OPEN else logger.info
        log(
            f"circuit_breaker_{new_state.value}",
            name=self.config.name,
            previous=previous.value,
            consecutive_failures=self.metrics.consecutive_failures,
        )

    def _admit(self) -> None:
        with self._lock:
            self.metrics.total_calls += 1
            if self.state is not CircuitBreakerState.OPEN:
                return
            assert self._opened_at is not None
            if self._clock() - self._opened_at < self.config.recovery_timeout:
                self.metrics.blocked_calls += 1
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.config.name}' is OPEN",
                    details={"name": self.config.name},
                )
            self._transition(CircuitBreakerState.HALF_OPEN)

    def _counts_as_failure(self, exc: BaseException) -> bool:
        if self.config.exclude_exceptions and isinstance(exc, self.config.exclude_exceptions):
            return False
        return isinstance(exc, self.config.expected_exception)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``func`` through the breaker.

        Raises:
            CircuitBreakerError: when the breaker is open.
            Exception: whatever ``func`` raised, unchanged.
        """
        self._admit()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            if self._counts_as_failure(exc):
                self._record_failure()
            raise
        self._record_success()
        return result

    def _record_success(self) -> None:
        with self._lock:
            self.metrics.successful_calls += 1
            self.metrics.consecutive_failures = 0
            self._transition(CircuitBreakerState.CLOSED)

    def _record_failure(self) -> None:
        with self._lock:
            self.metrics.failed_calls += 1
            self.metrics.consecutive_failures += 1
            if (
                self.state is CircuitBreakerState.HALF_OPEN
                or self.metrics.consecutive_failures >= self.config.failure_threshold
            ):
                self._transition(CircuitBreakerState.OPEN)

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {"name": self.config.name, "state": self.state.value, **asdict(self.metrics)}


class CircuitBreakerManager:
    """Named breakers owned by one client."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}

    def register(
        self,
        name: str,
        *,
        fail_max: int = 5,
        reset_timeout: float = 60.0,
        expected_exception: ExceptionTypes = Exception,
        exclude: tuple[type[BaseException], ...] = (),
    ) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                CircuitBreakerConfig(
                    failure_threshold=fail_max,
                    recovery_timeout=reset_timeout,
                    expected_exception=expected_exception,
                    exclude_exceptions=exclude,
                    name=name,
                )
            )
            self._breakers[name] = breaker
        return breaker

    def get(self, name: str) -> CircuitBreaker:
        try:
            return self._breakers[name]
        except KeyError:
            raise KeyError(f"Circuit breaker '{name}' not registered") from None

    def call(self, name: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self.get(name).call(func, *args, **kwargs)

    def state(self, name: str) -> str:
        return self.get(name).state.value


def retry_with_backoff(
    op: Callable[[], T],
    *,
    retries: int = 3,
    base_delay: float = 0.5,
    cap: float = 5.0,
    jitter: bool = True,
    retry_on: Iterable[type[BaseException]] = (Exception,),
) -> T:
    """Run ``op`` with up to ``retries`` additional attempts."""
    if retries <= 0:
        return op()

    if jitter:
        wait = wait_random_exponential(multiplier=base_delay, max=cap)
    else:
        wait = wait_exponential(multiplier=base_delay, max=cap)

    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "analysis_call_retry_scheduled",
            attempt=retry_state.attempt_number,
            max_attempts=retries + 1,
            error=str(exc) if exc else None,
        )

    return Retrying(
        retry=retry_if_exception_type(tuple(retry_on)),
        stop=stop_after_attempt(retries + 1),
        wait=wait,
        before_sleep=_log_retry,
        reraise=True,
    )(op)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerManager",
    "CircuitBreakerMetrics",
    "CircuitBreakerState",
    "retry_with_backoff",
]
