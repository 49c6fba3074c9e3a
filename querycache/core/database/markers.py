"""
Opt-in marker and statement classification.

A read is only ever considered for caching when its SQL carries the marker
comment. Cooperating query builders put it there; see :func:`cacheable`.
"""

from __future__ import annotations

import re
from typing import TypeVar

CACHE_MARKER = "/* QUERYCACHE:USE */"

_LEADING_COMMENTS = re.compile(r"^(?:\s*(?:/\*.*?\*/|--[^\n]*(?:\n|$)))*\s*", re.DOTALL)
_WRITE_KEYWORD = re.compile(r"(?:INSERT|UPDATE|DELETE)\b", re.IGNORECASE)

S = TypeVar("S")


def is_write_statement(sql: str) -> bool:
    """True if the statement starts with INSERT, UPDATE or DELETE.

    Leading comments (including the marker itself) are skipped first.
    """
    body = _LEADING_COMMENTS.sub("", sql, count=1)
    return _WRITE_KEYWORD.match(body) is not None


def has_marker(sql: str, marker: str = CACHE_MARKER) -> bool:
    return marker.lower() in sql.lower()


def mark_cacheable(sql: str, marker: str = CACHE_MARKER) -> str:
    """Prefix ``sql`` with the marker unless it already carries it."""
    if has_marker(sql, marker):
        return sql
    return f"{marker} {sql}"


def cacheable(statement: S, marker: str = CACHE_MARKER) -> S:
    """Opt a SQLAlchemy ``Select`` (or ORM ``Query``) into caching.

    Usage:
        stmt = cacheable(select(User).where(User.id == 1))
        session.execute(stmt)
    """
    return statement.prefix_with(marker)  # type: ignore[attr-defined]


__all__ = [
    "CACHE_MARKER",
    "cacheable",
    "has_marker",
    "is_write_statement",
    "mark_cacheable",
]
