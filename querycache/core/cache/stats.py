"""Counters shared by every connection and statement built from one driver."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields
from typing import Any


@dataclass
class InterceptorStats:
    hits: int = 0
    misses: int = 0
    bypasses: int = 0  # executed directly without a cache lookup
    fallbacks: int = 0  # caching apparatus failed, executed directly
    writes: int = 0
    invalidations_dispatched: int = 0
    invalidation_failures: int = 0
    registration_failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            data = {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}
        data["hit_rate"] = self.hit_rate
        return data

    def reset(self) -> None:
        with self._lock:
            for f in fields(self):
                if not f.name.startswith("_"):
                    setattr(self, f.name, 0)


__all__ = ["InterceptorStats"]
