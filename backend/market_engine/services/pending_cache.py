"""
Pending transaction cache.

Transactions submitted from this side are recorded per account before the
indexer has seen them, so that history and positions reflect them
immediately. Entries live in a Redis list (newest first, capped) and fall
back to an in-memory store when Redis is unreachable.
"""
from typing import Dict, Iterable, List, Optional
import json
import logging
import threading

import redis
from pydantic import ValidationError

from market_engine.config import settings
from market_engine.schemas.transaction import EntrySource, LedgerEntry
from market_engine.services.identifiers import normalize_id
from market_engine.services.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class PendingTransactionCache:
    """
    Per-account list of locally submitted, not yet confirmed transactions.

    Supports both Redis-backed and in-memory storage; every operation
    degrades to the in-memory store on a Redis error.
    """

    KEY_PREFIX = "market:pending"

    def __init__(self, redis_client: Optional[redis.Redis] = None, max_entries: int = None, ttl_seconds: int = None):
        self._redis_client = redis_client if redis_client is not None else get_redis_client()
        self.max_entries = max_entries or settings.pending_cache_max_entries
        self.ttl_seconds = ttl_seconds or settings.pending_cache_ttl
        self._memory_cache: Dict[str, List[LedgerEntry]] = {}
        self._lock = threading.Lock()

        if self._redis_client is None:
            logger.warning("Pending cache: Redis unavailable. Using in-memory storage only.")

    def _get_cache_key(self, account: str) -> str:
        return f"{self.KEY_PREFIX}:{normalize_id(account)}"

    @staticmethod
    def _decode(raw: str) -> Optional[LedgerEntry]:
        try:
            return LedgerEntry.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.debug(f"Dropping unreadable pending entry: {e}")
            return None

    def append(self, account: str, entry: LedgerEntry) -> LedgerEntry:
        """
        Record a pending transaction as the newest entry of an account.

        Args:
            account: Account address (case-insensitive)
            entry: Submitted transaction

        Returns:
            The stored entry, marked as PENDING
        """
        stored = entry.model_copy(update={"source": EntrySource.PENDING})
        key = self._get_cache_key(account)

        if self._redis_client is not None:
            try:
                pipe = self._redis_client.pipeline()
                pipe.lpush(key, stored.model_dump_json())
                pipe.ltrim(key, 0, self.max_entries - 1)
                pipe.expire(key, self.ttl_seconds)
                pipe.execute()
                logger.debug(f"Pending entry {stored.id} stored for {key}")
                return stored
            except redis.RedisError as e:
                logger.warning(f"Pending cache write failed, using memory: {e}")

        with self._lock:
            current = self._memory_cache.get(key, [])
            self._memory_cache[key] = [stored] + current[:self.max_entries - 1]
        return stored

    def _held_in_memory(self, key: str) -> List[LedgerEntry]:
        with self._lock:
            return list(self._memory_cache.get(key, []))

    def list(self, account: str) -> List[LedgerEntry]:
        """
        Pending entries of an account, newest first.

        Entries written to memory while Redis was failing are merged into
        the Redis contents until a prune writes them back.
        """
        if not account:
            return []
        key = self._get_cache_key(account)

        if self._redis_client is not None:
            try:
                raw_entries = self._redis_client.lrange(key, 0, -1)
                entries = [e for e in (self._decode(raw) for raw in raw_entries) if e is not None]
                held = self._held_in_memory(key)
                if not held:
                    return entries
                seen = {e.natural_key for e in entries}
                entries.extend(e for e in held if e.natural_key not in seen)
                entries.sort(key=lambda e: e.timestamp, reverse=True)
                return entries[:self.max_entries]
            except redis.RedisError as e:
                logger.warning(f"Pending cache read failed, using memory: {e}")

        return self._held_in_memory(key)

    def prune(self, account: str, confirmed_keys: Iterable[str]) -> int:
        """
        Drop pending entries that the remote history now contains.

        Args:
            account: Account address
            confirmed_keys: Lower-cased natural keys of confirmed transactions

        Returns:
            Number of entries removed
        """
        confirmed = {k.lower() for k in confirmed_keys}
        if not confirmed:
            return 0

        current = self.list(account)
        kept = [e for e in current if e.natural_key not in confirmed]
        removed = len(current) - len(kept)
        if removed == 0:
            return 0

        key = self._get_cache_key(account)
        if self._redis_client is not None:
            try:
                pipe = self._redis_client.pipeline()
                pipe.delete(key)
                if kept:
                    pipe.rpush(key, *[e.model_dump_json() for e in kept])
                    pipe.expire(key, self.ttl_seconds)
                pipe.execute()
                with self._lock:
                    self._memory_cache.pop(key, None)
                logger.info(f"Pruned {removed} confirmed pending entries for {key}")
                return removed
            except redis.RedisError as e:
                logger.warning(f"Pending cache prune failed, using memory: {e}")

        with self._lock:
            self._memory_cache[key] = kept
        return removed

    def clear(self, account: str) -> None:
        """Remove every pending entry of an account."""
        key = self._get_cache_key(account)
        if self._redis_client is not None:
            try:
                self._redis_client.delete(key)
            except redis.RedisError as e:
                logger.warning(f"Pending cache clear failed: {e}")
        with self._lock:
            self._memory_cache.pop(key, None)
