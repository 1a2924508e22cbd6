"""Shared Redis client factory.

One lazily created connection is shared by the view cache and the pending
transaction cache. Every caller must cope with `None` (Redis unreachable).
"""
import logging
from typing import Optional

import redis

from market_engine.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or lazily connect the shared Redis client.

    Returns:
        Redis client (string responses) or None if the server is unreachable

    Example:
        >>> client = get_redis_client()
        >>> if client:
        ...     client.lrange("market:pending:0xabc", 0, -1)
    """
    global _redis_client

    if _redis_client is None:
        try:
            client = redis.from_url(settings.redis_url, decode_responses=True)
            client.ping()
            _redis_client = client
            logger.debug("Redis client initialized successfully")
        except redis.RedisError as e:
            logger.warning(f"Failed to initialize Redis client: {e}")
            _redis_client = None

    return _redis_client


def reset_redis_client() -> None:
    """Forget the shared client so the next call reconnects (used by tests)."""
    global _redis_client
    _redis_client = None


def close_redis_client() -> None:
    """Close the shared connection on application shutdown."""
    global _redis_client
    if _redis_client:
        try:
            _redis_client.close()
            logger.debug("Redis client closed successfully")
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis client: {e}")
        finally:
            _redis_client = None
