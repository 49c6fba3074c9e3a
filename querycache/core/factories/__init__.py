"""
Client factories.

Usage:
    from querycache.core.factories import create_sync_redis
"""

from querycache.core.factories.redis_factory import create_sync_redis

__all__ = ["create_sync_redis"]
