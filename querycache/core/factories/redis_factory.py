"""
Redis client factory for the cache store.

The interceptor talks to Redis synchronously from inside DB-API calls, so
only the sync client is built here, always with bounded socket timeouts.
"""

from __future__ import annotations

from redis import Redis

from querycache.core.exceptions import ConfigurationError
from querycache.core.structured_logger import get_logger
from querycache.settings import Settings

logger = get_logger(__name__)


def create_sync_redis(settings: Settings) -> Redis:
    """Build a sync Redis client from settings.

    Raises:
        ConfigurationError: if ``redis_url`` is not configured.
    """
    if settings.redis_url is None:
        raise ConfigurationError("QUERYCACHE_REDIS_URL not configured")

    client = Redis.from_url(
        settings.redis_url.get_secret_value(),
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        retry_on_timeout=False,
        decode_responses=False,
    )
    logger.info("redis_client_created", socket_timeout=settings.redis_socket_timeout)
    return client


__all__ = ["create_sync_redis"]
