"""
Cache entry type and its wire encodings.

Separated from the store implementations to allow lightweight imports and
better testing.

Rows are serialised with :mod:`pickle` so that driver values (``Decimal``,
``datetime``, ``bytes``) come back exactly as the database produced them.
Only the cache store and the analysis service this layer itself writes to
are ever decoded; never feed these functions untrusted input.
"""

from __future__ import annotations

import base64
import binascii
import pickle
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from querycache.core.exceptions import CacheStoreError

Row = dict[str, Any]

_UNPICKLE_ERRORS = (
    pickle.UnpicklingError,
    EOFError,
    AttributeError,
    ImportError,
    IndexError,
    KeyError,
    TypeError,
    ValueError,
)


@dataclass
class CacheEntry:
    """
    A materialised result set stored under ``{prefix}_{fingerprint}``.

    Attributes:
        rows: Rows as column -> value mappings, in result order
        columns: Column names in select-list order (kept separately so an
            empty result still knows its layout)
        ttl: Time-to-live in seconds the entry was written with
        created_at: When the rows were materialised
    """

    rows: list[Row]
    columns: list[str] = field(default_factory=list)
    ttl: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.columns and self.rows:
            self.columns = list(self.rows[0].keys())

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": self.rows,
            "columns": self.columns,
            "ttl": self.ttl,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        rows = data.get("rows")
        if not isinstance(rows, list):
            raise CacheStoreError("Cache entry has no row list", details={"keys": sorted(data)})

        raw_created = data.get("created_at")
        if isinstance(raw_created, datetime):
            created_at = raw_created
        else:
            try:
                created_at = (
                    datetime.fromisoformat(raw_created)
                    if raw_created
                    else datetime.now(timezone.utc)
                )
            except (TypeError, ValueError):
                created_at = datetime.now(timezone.utc)

        try:
            ttl = int(data.get("ttl", 0))
        except (TypeError, ValueError):
            ttl = 0

        return cls(
            rows=rows,
            columns=list(data.get("columns") or []),
            ttl=ttl,
            created_at=created_at,
        )

    def dumps(self) -> bytes:
        """Serialise for the cache store."""
        return pickle.dumps(self.to_dict(), protocol=pickle.HIGHEST_PROTOCOL)

    @classmethod
    def loads(cls, payload: bytes) -> "CacheEntry":
        try:
            data = pickle.loads(payload)
        except _UNPICKLE_ERRORS as exc:
            raise CacheStoreError("Undecodable cache entry", details={"error": str(exc)}) from exc
        if not isinstance(data, dict):
            raise CacheStoreError("Cache entry is not a mapping", details={"type": type(data).__name__})
        return cls.from_dict(data)


def encode_rows(rows: list[Row]) -> str:
    """Encode rows for the ``result`` field of ``POST /register``."""
    return base64.b64encode(pickle.dumps(rows, protocol=pickle.HIGHEST_PROTOCOL)).decode("ascii")


def decode_rows(encoded: str) -> list[Row] | None:
    """Decode a ``result`` field. Returns ``None`` on any malformed payload."""
    try:
        raw = base64.b64decode(encoded, validate=True)
        rows = pickle.loads(raw)
    except (binascii.Error, *_UNPICKLE_ERRORS):
        return None
    return rows if isinstance(rows, list) else None


__all__ = ["Row", "CacheEntry", "encode_rows", "decode_rows"]
