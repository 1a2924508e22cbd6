"""
View cache.

Redis-backed JSON cache with TTL for the last successfully built views
(portfolio snapshots, market pages), so a failed refresh can fall back to
previously known data.
"""
import json
import logging
from typing import Any, Optional, Type, TypeVar

import redis
from pydantic import BaseModel, ValidationError

from market_engine.config import settings
from market_engine.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class CacheService:
    """Manage last-known view caching with Redis."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        """Use the given client or the shared one; degrade to a no-op cache without Redis."""
        self.redis_client = redis_client or get_redis_client()
        self.available = self.redis_client is not None
        if self.available:
            logger.info("Cache service initialized successfully")
        else:
            logger.warning("Cache service unavailable, last-known views will not be kept")

    def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value (deserialized from JSON) or None if not found/cache unavailable
        """
        if not self.available:
            return None

        try:
            value = self.redis_client.get(key)
            if value is None:
                return None
            return json.loads(value)
        except (redis.RedisError, ValueError) as e:
            logger.debug(f"Cache get error for key {key}: {str(e)}")
            return None

    def set(self, key: str, value: Any, ttl_seconds: int = None) -> bool:
        """
        Set value in cache with TTL.

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl_seconds: Time to live in seconds (default: settings.view_cache_ttl)

        Returns:
            True if successful, False otherwise
        """
        if not self.available:
            return False

        try:
            serialized = json.dumps(value)
            self.redis_client.setex(key, ttl_seconds or settings.view_cache_ttl, serialized)
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.debug(f"Cache set error for key {key}: {str(e)}")
            return False

    def delete(self, key: str) -> bool:
        """Delete a key; True if something was removed."""
        if not self.available:
            return False

        try:
            return self.redis_client.delete(key) > 0
        except redis.RedisError as e:
            logger.debug(f"Cache delete error for key {key}: {str(e)}")
            return False

    def get_model(self, key: str, model: Type[ModelT]) -> Optional[ModelT]:
        """Get a cached pydantic model; None when missing or no longer valid."""
        data = self.get(key)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.debug(f"Discarding stale cache entry {key}: {e.error_count()} validation error(s)")
            return None

    def set_model(self, key: str, value: BaseModel, ttl_seconds: int = None) -> bool:
        """Cache a pydantic model as JSON."""
        return self.set(key, value.model_dump(mode="json"), ttl_seconds)
