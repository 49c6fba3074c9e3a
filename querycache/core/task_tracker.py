"""
Background Task Dispatch

Fire-and-forget execution for best-effort work (cache invalidation and
registration) that must never delay or fail the database call that
triggered it.

Key guarantees:
- ``submit`` never blocks on the work itself and never raises because of it.
- Backpressure cap: beyond ``max_pending`` in-flight tasks new work is
  rejected and logged instead of queueing without bound.
- Task exceptions are surfaced through the log, never re-raised.
- ``shutdown`` drains with bounded waiting.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from querycache.core.structured_logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_PENDING = 1000
DEFAULT_WORKERS = 4
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class BackgroundDispatcher:
    """Thread-pool backed dispatcher for detached tasks."""

    def __init__(
        self,
        *,
        max_workers: int = DEFAULT_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
        thread_name_prefix: str = "querycache-bg",
    ) -> None:
        if max_workers <= 0:
            raise ValueError(f"max_workers must be > 0, got: {max_workers!r}")
        if max_pending <= 0:
            raise ValueError(f"max_pending must be > 0, got: {max_pending!r}")

        self.max_pending = max_pending
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        self._lock = threading.Lock()
        self._pending: set[Future[Any]] = set()
        self._closed = False
        self.rejected = 0
        self.failed = 0

    def submit(self, fn: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> bool:
        """Schedule ``fn`` and return immediately.

        Returns ``True`` if the task was accepted, ``False`` if it was
        rejected (dispatcher closed or backpressure cap reached).
        """
        task_name = name or getattr(fn, "__name__", "task")
        with self._lock:
            if self._closed:
                self.rejected += 1
                logger.warning("background_task_rejected", task=task_name, reason="closed")
                return False
            if len(self._pending) >= self.max_pending:
                self.rejected += 1
                logger.warning(
                    "background_task_rejected",
                    task=task_name,
                    reason="backpressure",
                    limit=self.max_pending,
                )
                return False
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)

        future.add_done_callback(lambda f: self._on_done(f, task_name))
        return True

    def _on_done(self, future: Future[Any], task_name: str) -> None:
        with self._lock:
            self._pending.discard(future)

        if future.cancelled():
            return

        exc = future.exception()
        if exc is not None:
            with self._lock:
                self.failed += 1
            logger.error(
                "unhandled_background_task_error",
                task=task_name,
                error=str(exc),
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def drain(self, timeout: float | None = DEFAULT_SHUTDOWN_TIMEOUT) -> bool:
        """Wait for in-flight tasks. Returns ``True`` if all finished."""
        with self._lock:
            snapshot = set(self._pending)
        if not snapshot:
            return True
        _, not_done = wait(snapshot, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: float | None = DEFAULT_SHUTDOWN_TIMEOUT) -> None:
        """Stop accepting work, wait up to ``timeout`` and cancel the rest."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        finished = self.drain(timeout)
        if not finished:
            logger.warning("background_tasks_still_running", pending=self.pending)
        self._executor.shutdown(wait=finished, cancel_futures=True)

    def __enter__(self) -> "BackgroundDispatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class InlineDispatcher:
    """Runs tasks synchronously, logging failures. Used when fire-and-forget is off."""

    def __init__(self) -> None:
        self.failed = 0
        self.rejected = 0

    def submit(self, fn: Callable[..., Any], *args: Any, name: str | None = None, **kwargs: Any) -> bool:
        try:
            fn(*args, **kwargs)
        except Exception as exc:
            self.failed += 1
            logger.error(
                "inline_task_error",
                task=name or getattr(fn, "__name__", "task"),
                error=str(exc),
            )
        return True

    @property
    def pending(self) -> int:
        return 0

    def drain(self, timeout: float | None = None) -> bool:
        return True

    def shutdown(self, timeout: float | None = None) -> None:
        return None


__all__ = [
    "BackgroundDispatcher",
    "InlineDispatcher",
    "DEFAULT_MAX_PENDING",
    "DEFAULT_WORKERS",
    "DEFAULT_SHUTDOWN_TIMEOUT",
]
