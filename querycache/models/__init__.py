from querycache.models.analysis import CacheKey, OperationType, QueryAnalysis, TableRef
from querycache.models.cache import CacheEntry, decode_rows, encode_rows

__all__ = [
    "CacheEntry",
    "CacheKey",
    "OperationType",
    "QueryAnalysis",
    "TableRef",
    "decode_rows",
    "encode_rows",
]
