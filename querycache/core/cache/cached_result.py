"""
In-memory result set served in place of a live cursor.

Callers (and ORMs built on DB-API) cannot tell it apart from a cursor that
just ran the query: it answers ``fetchone`` / ``fetchmany`` / ``fetchall`` /
``description`` / ``rowcount`` with the same shapes. It owns a private copy
of its rows and holds no reference to the cache store or the database.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any

from querycache.models.cache import Row


class CachedResult:
    """Fixed row set with a forward-only read cursor."""

    arraysize = 1

    def __init__(self, rows: Sequence[Row], columns: Sequence[str] | None = None) -> None:
        self._rows: list[Row] = [dict(row) for row in rows]
        if columns:
            self._columns: list[str] = list(columns)
        elif self._rows:
            self._columns = list(self._rows[0].keys())
        else:
            self._columns = []
        self._position = 0

    # ------------------------------------------------------------------
    # Mapping-style API
    # ------------------------------------------------------------------

    def fetch_associative(self) -> Row | None:
        """Next row as a mapping, or ``None`` when exhausted."""
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return dict(row)

    def fetch_numeric(self) -> list[Any] | None:
        row = self.fetch_associative()
        return list(row.values()) if row is not None else None

    def fetch_all_associative(self) -> list[Row]:
        """All rows, regardless of the cursor position."""
        return [dict(row) for row in self._rows]

    def fetch_all_numeric(self) -> list[list[Any]]:
        return [list(row.values()) for row in self._rows]

    def fetch_first_column(self) -> list[Any]:
        if not self._rows:
            return []
        return [next(iter(row.values()), None) for row in self._rows]

    def fetch_one(self) -> Any | None:
        """First column of the next row (a scalar), or ``None`` when exhausted."""
        row = self.fetch_numeric()
        if not row:
            return None
        return row[0]

    def row_count(self) -> int:
        return len(self._rows)

    def column_count(self) -> int:
        return len(self._rows[0]) if self._rows else 0

    def free(self) -> None:
        self._rows = []
        self._columns = []
        self._position = 0

    # ------------------------------------------------------------------
    # DB-API cursor read contract
    # ------------------------------------------------------------------

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    @property
    def description(self) -> tuple[tuple[Any, ...], ...] | None:
        if not self._columns:
            return None
        return tuple((name, None, None, None, None, None, None) for name in self._columns)

    @property
    def rowcount(self) -> int:
        return self.row_count()

    def _as_tuple(self, row: Row) -> tuple[Any, ...]:
        if self._columns and len(self._columns) == len(row):
            return tuple(row[name] for name in self._columns)
        return tuple(row.values())

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return self._as_tuple(row)

    def fetchmany(self, size: int | None = None) -> list[tuple[Any, ...]]:
        size = self.arraysize if size is None else size
        end = min(self._position + max(size, 0), len(self._rows))
        chunk = [self._as_tuple(row) for row in self._rows[self._position:end]]
        self._position = end
        return chunk

    def fetchall(self) -> list[tuple[Any, ...]]:
        """Remaining rows, advancing to the end like a live cursor."""
        chunk = [self._as_tuple(row) for row in self._rows[self._position:]]
        self._position = len(self._rows)
        return chunk

    def close(self) -> None:
        self.free()

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        while True:
            row = self.fetchone()
            if row is None:
                return
            yield row

    def __len__(self) -> int:
        return self.row_count()

    def __repr__(self) -> str:
        return f"CachedResult(rows={len(self._rows)}, position={self._position})"


__all__ = ["CachedResult"]
